"""Turns discovered extension keys into safely named, addressable output columns."""

from __future__ import annotations

import re
from collections.abc import Iterable

from loguru import logger
from pydantic import BaseModel, ConfigDict

MAX_EXTENSION_COLUMNS = 100
EXTENSION_ALIAS_PREFIX = "ext_"

# Output columns of the orders flattened view that derived columns must not shadow.
BASE_ORDER_COLUMNS: frozenset[str] = frozenset(
    {
        "entity_id",
        "increment_id",
        "order_date",
        "order_created_at",
        "website_id",
        "customer_id",
        "customer_email",
        "customer_firstname",
        "customer_lastname",
        "customer_is_guest",
        "status",
        "state",
        "grand_total",
        "subtotal",
        "base_grand_total",
        "base_subtotal",
        "tax_amount",
        "base_tax_amount",
        "shipping_amount",
        "base_shipping_amount",
        "discount_amount",
        "base_discount_amount",
        "total_qty_ordered",
        "total_item_count",
        "shipping_description",
        "created_at",
        "updated_at",
        "extension_attributes_raw",
    }
)

_SIMPLE_KEY = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class ExtensionColumn(BaseModel):
    """
    A derived column extracted from the semi-structured extension field.

    Attributes:
        raw_key (str): The key exactly as found in the sampled data.
        alias (str): Output column name, unique within one generation run.
        access_path (str): JSON path addressing ``raw_key`` inside the extension field.
    """

    model_config = ConfigDict(frozen=True)

    raw_key: str
    alias: str
    access_path: str


def is_addressable(key: str) -> bool:
    """Whether ``key`` can be written as a variant path segment.

    Path segments have no escape syntax: a quoted segment cannot contain its own quote
    character or ``?``, so keys with ``?`` or with both quote characters cannot be reached.
    """
    return "?" not in key and not ("'" in key and '"' in key)


def build_access_path(key: str) -> str:
    """Return a JSON path for ``key``.

    Plain identifiers use dotted notation (``$.key``); anything else uses a bracket
    segment quoted with whichever quote character the key does not contain. Backslashes
    are taken literally by the path parser and are left as is.

    Raises:
        ValueError: If ``key`` is not addressable.
    """
    if not is_addressable(key):
        raise ValueError(f"Extension key cannot be addressed by a JSON path: {key!r}")
    if _SIMPLE_KEY.match(key):
        return f"$.{key}"
    if "'" in key:
        return f'$["{key}"]'
    return f"$['{key}']"


def build_alias(key: str) -> str:
    normalized = re.sub(r"[^a-z0-9]+", "_", key.lower()).strip("_")
    return f"{EXTENSION_ALIAS_PREFIX}{normalized or 'field'}"


def synthesize_extension_columns(
    keys: Iterable[str],
    max_columns: int = MAX_EXTENSION_COLUMNS,
    reserved: Iterable[str] = BASE_ORDER_COLUMNS,
) -> list[ExtensionColumn]:
    """Build the extension columns for a set of discovered keys.

    Keys are sorted before truncation to ``max_columns`` so the selected subset is stable
    across runs over the same data. Aliases that collide with a reserved column or an
    earlier alias receive a numeric suffix (``_2``, ``_3``, ...). Keys that no path can
    address are dropped with a warning before the cap is applied.
    """
    addressable: set[str] = set()
    for key in sorted(set(keys)):
        if is_addressable(key):
            addressable.add(key)
        else:
            logger.warning(f"Skipping extension key {key!r}: it cannot be addressed by a JSON path")
    ordered = sorted(addressable)[:max_columns]
    taken: set[str] = {name.lower() for name in reserved}
    columns: list[ExtensionColumn] = []
    for key in ordered:
        base_alias = build_alias(key)
        alias = base_alias
        suffix = 2
        while alias in taken:
            alias = f"{base_alias}_{suffix}"
            suffix += 1
        taken.add(alias)
        columns.append(
            ExtensionColumn(raw_key=key, alias=alias, access_path=build_access_path(key))
        )
    return columns
