"""SQL utility functions for safe statement construction."""

from __future__ import annotations

import re

_DATASET_ID_PATTERN = re.compile(r"^[A-Za-z0-9_\-]+$")


def escape_sql_identifier(identifier: str) -> str:
    """Escape SQL identifier (catalog, schema, table, column names) for safe use in statements.

    Args:
        identifier: The identifier to escape

    Returns:
        Escaped identifier wrapped in backticks

    Raises:
        ValueError: If identifier contains invalid characters
    """
    if not identifier or not re.match(r"^[\w\-\.`]+$", identifier):
        raise ValueError(f"Invalid SQL identifier: {identifier}")

    # Block obvious SQL comment/termination patterns
    if "--" in identifier or ";" in identifier:
        raise ValueError(f"Invalid SQL identifier: {identifier}")

    escaped = identifier.replace("`", "``")
    return f"`{escaped}`"


def escape_sql_string(value: str) -> str:
    """Escape a string value for use as a Databricks SQL string literal.

    Databricks string literals treat backslash as an escape character, so
    backslashes are doubled before single quotes are escaped.

    Args:
        value: The string value to escape

    Returns:
        Escaped string value wrapped in single quotes
    """
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def format_fully_qualified_name(catalog: str, schema: str, table: str) -> str:
    """Quote catalog/schema/table segments safely for use in SQL statements."""

    return ".".join(
        [
            escape_sql_identifier(catalog),
            escape_sql_identifier(schema),
            escape_sql_identifier(table),
        ]
    )


def validate_dataset_id(dataset_id: str) -> str:
    """Validate a dataset (schema) identifier before it reaches statement templates.

    Args:
        dataset_id: The dataset identifier to validate

    Returns:
        The validated dataset identifier

    Raises:
        ValueError: If the dataset identifier is empty or contains invalid characters
    """
    if not dataset_id or not dataset_id.strip():
        raise ValueError("Dataset ID cannot be empty.")
    if not _DATASET_ID_PATTERN.match(dataset_id):
        raise ValueError(
            f"Invalid dataset ID: {dataset_id}. "
            "Only letters, digits, underscores, and dashes are allowed."
        )
    if len(dataset_id) > 255:
        raise ValueError(f"Dataset ID too long: {dataset_id}. Maximum 255 characters allowed.")
    return dataset_id

