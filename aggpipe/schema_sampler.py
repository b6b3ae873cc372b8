"""Discovers the keys present in a semi-structured column by sampling recent rows."""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from typing import Any

from loguru import logger

from .engine import AnalyticsEngine
from .results import Result
from .sql_utils import escape_sql_identifier

DEFAULT_SAMPLE_SIZE = 200


def build_sample_sql(table_fqn: str, field: str, limit: int = DEFAULT_SAMPLE_SIZE) -> str:
    """Read the newest non-null values of ``field`` as text.

    ``field`` must be a STRING column holding JSON, the same contract the orders view
    relies on when it calls ``try_parse_json``. A STRUCT or MAP column would be cast to
    a non-JSON rendering and every sampled row would be skipped.
    """
    column = escape_sql_identifier(field)
    return (
        f"SELECT CAST({column} AS STRING) AS {column} FROM {table_fqn} "
        f"WHERE {column} IS NOT NULL ORDER BY created_at DESC LIMIT {int(limit)}"
    )


def decode_mapping(value: Any) -> Mapping[str, Any] | None:
    """Decode a sampled value into a key/value mapping.

    Mappings pass through; strings are parsed as JSON. Anything that does not decode
    to a mapping yields None.

    Raises:
        json.JSONDecodeError: If a string value is not valid JSON.
    """
    if isinstance(value, Mapping):
        return value
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8")
    if isinstance(value, str):
        parsed = json.loads(value)
        return parsed if isinstance(parsed, Mapping) else None
    return None


def extract_keys(rows: Iterable[Mapping[str, Any]], field: str) -> set[str]:
    """Union of the top-level keys of ``field`` across ``rows``; bad rows are skipped."""
    keys: set[str] = set()
    for index, row in enumerate(rows):
        value = row.get(field)
        if value is None:
            continue
        try:
            mapping = decode_mapping(value)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            logger.warning(f"Skipping sampled row {index}: '{field}' is not valid JSON ({exc})")
            continue
        if mapping is None:
            logger.debug(f"Skipping sampled row {index}: '{field}' is not a key/value object")
            continue
        keys.update(str(key) for key in mapping)
    return keys


def sample_extension_keys(
    engine: AnalyticsEngine,
    table_fqn: str,
    field: str,
    limit: int = DEFAULT_SAMPLE_SIZE,
) -> Result[set[str]]:
    """Sample up to ``limit`` recent rows of ``table_fqn`` and return the keys found in ``field``.

    A failed read is returned as a failed Result rather than raised.
    """
    statement = build_sample_sql(table_fqn, field, limit)
    try:
        rows = engine.query(statement)
    except Exception as exc:
        logger.error(f"Could not sample '{field}' from {table_fqn}: {exc}")
        return Result.failure(str(exc))

    keys = extract_keys(rows, field)
    logger.info(f"Discovered {len(keys)} extension key(s) across {len(rows)} sampled row(s).")
    return Result.success(keys)
