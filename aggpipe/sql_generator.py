"""SQL generation utilities for aggpipe.

This module centralizes rendering of aggregation statements from Jinja templates.
Every builder returns a complete ``CREATE OR REPLACE`` statement so that re-running a
build against the same dataset replaces the target object instead of appending to it.
"""

from __future__ import annotations

from functools import lru_cache
from typing import TYPE_CHECKING

from jinja2 import Environment, PackageLoader

from .sql_utils import escape_sql_identifier, escape_sql_string, format_fully_qualified_name

if TYPE_CHECKING:
    from .columns import ExtensionColumn
    from .config import AggPipeConfig

ORDER_TIMESTAMP_FORMAT = "yyyy-MM-dd HH:mm:ss"


@lru_cache(maxsize=1)
def sql_environment() -> Environment:
    """Return the shared Jinja2 environment configured for SQL template rendering."""
    env = Environment(
        loader=PackageLoader("aggpipe", "templates"),
        autoescape=False,
        trim_blocks=True,
        lstrip_blocks=True,
        extensions=["jinja2.ext.do"],
    )
    return env


def _source_context(dataset_id: str, config: AggPipeConfig) -> dict[str, str]:
    tables = config.source_tables
    return {
        "orders_table": format_fully_qualified_name(config.catalog, dataset_id, tables.orders),
        "products_table": format_fully_qualified_name(config.catalog, dataset_id, tables.products),
        "search_table": format_fully_qualified_name(
            config.catalog, dataset_id, tables.search_queries
        ),
        "timestamp_format": escape_sql_string(ORDER_TIMESTAMP_FORMAT),
    }


def _render(
    template_name: str,
    target_fqn: str,
    dataset_id: str,
    config: AggPipeConfig,
    **extra: object,
) -> str:
    template = sql_environment().get_template(template_name)
    context: dict[str, object] = {**_source_context(dataset_id, config)}
    context["target"] = target_fqn
    context.update(extra)
    return template.render(**context).strip()


def render_sales_overview_daily_sql(
    target_fqn: str,
    dataset_id: str,
    config: AggPipeConfig,
    extension_columns: list[ExtensionColumn] | None = None,
) -> str:
    """Daily order/revenue rollup per website."""
    return _render("sales_overview_daily.sql.j2", target_fqn, dataset_id, config)


def render_sales_overview_hourly_sql(
    target_fqn: str,
    dataset_id: str,
    config: AggPipeConfig,
    extension_columns: list[ExtensionColumn] | None = None,
) -> str:
    """Hourly order/revenue rollup per website for intraday analysis."""
    return _render("sales_overview_hourly.sql.j2", target_fqn, dataset_id, config)


def render_sales_overview_monthly_sql(
    target_fqn: str,
    dataset_id: str,
    config: AggPipeConfig,
    extension_columns: list[ExtensionColumn] | None = None,
) -> str:
    """Monthly order/revenue rollup per website for long-term trends."""
    return _render("sales_overview_monthly.sql.j2", target_fqn, dataset_id, config)


def render_customer_metrics_sql(
    target_fqn: str,
    dataset_id: str,
    config: AggPipeConfig,
    extension_columns: list[ExtensionColumn] | None = None,
) -> str:
    """Registered vs guest customer counts and revenue per customer."""
    return _render("customer_metrics_daily.sql.j2", target_fqn, dataset_id, config)


def render_product_performance_sql(
    target_fqn: str,
    dataset_id: str,
    config: AggPipeConfig,
    extension_columns: list[ExtensionColumn] | None = None,
) -> str:
    """Per-SKU daily quantities, revenue and price statistics from exploded order items."""
    return _render("product_performance_daily.sql.j2", target_fqn, dataset_id, config)


def render_seo_performance_sql(
    target_fqn: str,
    dataset_id: str,
    config: AggPipeConfig,
    extension_columns: list[ExtensionColumn] | None = None,
) -> str:
    """Query-level search clicks, impressions, CTR and position per day and website."""
    return _render("seo_performance_daily.sql.j2", target_fqn, dataset_id, config)


def render_sales_items_view_sql(
    target_fqn: str,
    dataset_id: str,
    config: AggPipeConfig,
    extension_columns: list[ExtensionColumn] | None = None,
) -> str:
    return _render("sales_items_view.sql.j2", target_fqn, dataset_id, config)


def render_products_flattened_view_sql(
    target_fqn: str,
    dataset_id: str,
    config: AggPipeConfig,
    extension_columns: list[ExtensionColumn] | None = None,
) -> str:
    attributes = [
        {
            "alias": escape_sql_identifier(f"attr_{code.lower()}"),
            "path": escape_sql_string(f"$.{code}"),
        }
        for code in config.product_attributes
    ]
    return _render(
        "products_flattened_view.sql.j2",
        target_fqn,
        dataset_id,
        config,
        product_attributes=attributes,
    )


def render_orders_flattened_view_sql(
    target_fqn: str,
    dataset_id: str,
    config: AggPipeConfig,
    extension_columns: list[ExtensionColumn] | None = None,
) -> str:
    """Order header view with one derived column per discovered extension key.

    Each derived column prefers the scalar value at the key's path and falls back to
    the serialized JSON of a nested structure.
    """
    columns = [
        {
            "alias": escape_sql_identifier(column.alias),
            "path": escape_sql_string(column.access_path),
        }
        for column in extension_columns or []
    ]
    return _render(
        "orders_flattened_view.sql.j2",
        target_fqn,
        dataset_id,
        config,
        extension_field=escape_sql_identifier(config.extension_field),
        extension_columns=columns,
    )
