"""The fixed catalog of aggregation kinds.

Each entry ties an aggregation kind to its statement builder, the physical object it
replaces inside the dataset, and whether that object is an incrementally refreshed
materialized view (as opposed to a fully recomputed table).
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict

from . import sql_generator
from .sql_utils import format_fully_qualified_name, validate_dataset_id

if TYPE_CHECKING:
    from .columns import ExtensionColumn
    from .config import AggPipeConfig


class AggregationKind(str, Enum):
    SALES_OVERVIEW = "sales_overview"
    SALES_OVERVIEW_HOURLY = "sales_overview_hourly"
    SALES_OVERVIEW_MONTHLY = "sales_overview_monthly"
    CUSTOMER_METRICS = "customer_metrics"
    PRODUCT_PERFORMANCE = "product_performance"
    SEO_PERFORMANCE = "seo_performance"
    SALES_ITEMS_VIEW = "sales_items_view"
    PRODUCTS_FLATTENED_VIEW = "products_flattened_view"
    ORDERS_FLATTENED_VIEW = "orders_flattened_view"
    ALL = "all"


class CatalogEntry(BaseModel):
    """
    A single aggregation kind in the catalog.

    Attributes:
        kind (AggregationKind): The aggregation kind this entry builds.
        target_name (str): Name of the table or materialized view inside the dataset.
        builder (Callable[..., str]): Renders the ``CREATE OR REPLACE`` statement.
        materialized_view (bool): True when the target is a materialized view that needs an
            explicit refresh after a successful build.
        uses_extension_columns (bool): True when the builder needs freshly sampled extension keys.
        description (str): Human readable summary used by the CLI plan output.
    """

    model_config = ConfigDict(frozen=True)

    kind: AggregationKind
    target_name: str
    builder: Callable[..., str]
    materialized_view: bool = False
    uses_extension_columns: bool = False
    description: str = ""


CATALOG: dict[AggregationKind, CatalogEntry] = {
    entry.kind: entry
    for entry in (
        CatalogEntry(
            kind=AggregationKind.SALES_OVERVIEW,
            target_name="mv_agg_sales_overview_daily",
            builder=sql_generator.render_sales_overview_daily_sql,
            description="Daily sales rollup by website",
        ),
        CatalogEntry(
            kind=AggregationKind.SALES_OVERVIEW_HOURLY,
            target_name="mv_agg_sales_overview_hourly",
            builder=sql_generator.render_sales_overview_hourly_sql,
            description="Hourly sales rollup by website",
        ),
        CatalogEntry(
            kind=AggregationKind.SALES_OVERVIEW_MONTHLY,
            target_name="mv_agg_sales_overview_monthly",
            builder=sql_generator.render_sales_overview_monthly_sql,
            description="Monthly sales rollup by website",
        ),
        CatalogEntry(
            kind=AggregationKind.CUSTOMER_METRICS,
            target_name="mv_agg_customer_metrics_daily",
            builder=sql_generator.render_customer_metrics_sql,
            description="Daily registered/guest customer metrics",
        ),
        CatalogEntry(
            kind=AggregationKind.PRODUCT_PERFORMANCE,
            target_name="mv_agg_product_performance_daily",
            builder=sql_generator.render_product_performance_sql,
            description="Daily per-SKU product performance",
        ),
        CatalogEntry(
            kind=AggregationKind.SEO_PERFORMANCE,
            target_name="mv_agg_seo_performance_daily",
            builder=sql_generator.render_seo_performance_sql,
            description="Daily search query performance",
        ),
        CatalogEntry(
            kind=AggregationKind.SALES_ITEMS_VIEW,
            target_name="mv_adobe_commerce_sales_items",
            builder=sql_generator.render_sales_items_view_sql,
            materialized_view=True,
            description="One row per order line item",
        ),
        CatalogEntry(
            kind=AggregationKind.PRODUCTS_FLATTENED_VIEW,
            target_name="mv_adobe_commerce_products_flattened",
            builder=sql_generator.render_products_flattened_view_sql,
            materialized_view=True,
            description="Products with custom attributes as columns",
        ),
        CatalogEntry(
            kind=AggregationKind.ORDERS_FLATTENED_VIEW,
            target_name="mv_adobe_commerce_orders_flattened",
            builder=sql_generator.render_orders_flattened_view_sql,
            materialized_view=True,
            uses_extension_columns=True,
            description="Orders with discovered extension attributes as columns",
        ),
    )
}


def parse_kind(value: str | AggregationKind) -> AggregationKind:
    """Return the catalog kind for ``value``; raises ValueError for unknown kinds."""
    try:
        return AggregationKind(value)
    except ValueError as exc:
        raise ValueError(f"Unknown aggregation kind: {value}") from exc


def resolve_kinds(kind: str | AggregationKind) -> list[AggregationKind]:
    """Expand ``all`` into every catalog kind in catalog order."""
    resolved = parse_kind(kind)
    if resolved is AggregationKind.ALL:
        return list(CATALOG)
    return [resolved]


def get_entry(kind: str | AggregationKind) -> CatalogEntry:
    resolved = parse_kind(kind)
    if resolved is AggregationKind.ALL:
        raise ValueError("'all' is not a single aggregation kind.")
    return CATALOG[resolved]


def target_fqn(kind: str | AggregationKind, dataset_id: str, config: AggPipeConfig) -> str:
    """Fully qualified, quoted name of the object ``kind`` writes into."""
    entry = get_entry(kind)
    return format_fully_qualified_name(config.catalog, dataset_id, entry.target_name)


def build_query(
    kind: str | AggregationKind,
    dataset_id: str,
    config: AggPipeConfig,
    extension_columns: list[ExtensionColumn] | None = None,
) -> str:
    """Render the full replace-target statement for ``kind`` against ``dataset_id``."""
    entry = get_entry(kind)
    validate_dataset_id(dataset_id)
    return entry.builder(
        target_fqn(entry.kind, dataset_id, config),
        dataset_id,
        config,
        extension_columns if entry.uses_extension_columns else None,
    )
