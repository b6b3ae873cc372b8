"""
This module defines Pydantic models for configuring aggpipe runs and requests.

Classes:
    SourceTables: Names of the raw source tables the aggregations read from.
    AggPipeConfig: The root configuration model (target catalog, source tables, sampling,
        timeouts, and refresh settings).
    AggregationRequest: A validated request to build one aggregation kind (or all of them)
        for a dataset.

These models are intended to be used for parsing and validating aggpipe YAML configuration
files and inbound aggregation requests.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .catalog import AggregationKind
from .sql_utils import escape_sql_identifier, validate_dataset_id

DEFAULT_PRODUCT_ATTRIBUTES: list[str] = [
    "sdb_collection_name",
    "sdb_design_name",
    "sdb_parent_title",
    "sdb_product_collection_data",
    "brand",
    "color",
    "size",
    "material",
    "pattern",
    "width",
    "length",
    "height",
    "weight",
    "price",
    "special_price",
    "cost",
    "manufacturer",
    "country_of_manufacture",
    "description",
    "short_description",
    "meta_title",
    "meta_description",
    "meta_keyword",
    "url_key",
    "url_path",
    "image",
    "small_image",
    "thumbnail",
    "status",
    "visibility",
    "tax_class_id",
]


class SourceTables(BaseModel):
    """
    Names of the raw source tables inside a dataset.

    Attributes:
        orders (str): Order header table holding the `items` and `extension_attributes` JSON fields.
        products (str): Product catalog table holding the `attributes` JSON map.
        search_queries (str): Query-level search analytics export.
    """

    orders: str = "adobe_commerce_orders"
    products: str = "adobe_commerce_products"
    search_queries: str = "gsc_search_analytics_by_query"

    @field_validator("orders", "products", "search_queries")
    @classmethod
    def validate_table_name(cls, value: str) -> str:
        """Reject table names that cannot be safely quoted."""

        escape_sql_identifier(value)
        return value


class AggPipeConfig(BaseModel):
    """
    Configuration model for aggpipe.

    Attributes:
        catalog (str): Unity Catalog catalog that holds every dataset (schema).
        source_tables (SourceTables): Source table names read by the aggregation statements.
        extension_field (str): STRING order column holding JSON text, sampled for dynamic keys.
        sample_size (int): Number of recent orders inspected when discovering extension keys.
        max_extension_columns (int): Upper bound on derived extension columns.
        job_timeout_minutes (float): Deadline for a single aggregation statement.
        poll_interval_seconds (float): Initial wait between statement status polls.
        max_poll_interval_seconds (float): Upper bound for the backoff between polls.
        refresh_stale_after_minutes (int): Age after which a materialized view refresh is reported as stale.
        product_attributes (list[str]): Custom attribute codes projected by the products flattened view.
    """

    catalog: str = "main"
    source_tables: SourceTables = Field(default_factory=SourceTables)
    extension_field: str = "extension_attributes"
    sample_size: int = 200
    max_extension_columns: int = 100
    job_timeout_minutes: float = 30.0
    poll_interval_seconds: float = 5.0
    max_poll_interval_seconds: float = 30.0
    refresh_stale_after_minutes: int = 120
    product_attributes: list[str] = Field(default_factory=lambda: list(DEFAULT_PRODUCT_ATTRIBUTES))

    @field_validator("catalog", "extension_field")
    @classmethod
    def validate_identifier(cls, value: str) -> str:
        """Ensure names interpolated into statements are quotable identifiers."""

        escape_sql_identifier(value)
        return value

    @field_validator("sample_size", "max_extension_columns")
    @classmethod
    def validate_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("Value must be greater than 0")
        return value

    @field_validator("job_timeout_minutes", "poll_interval_seconds", "max_poll_interval_seconds")
    @classmethod
    def validate_positive_duration(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("Durations must be greater than 0")
        return value

    @field_validator("product_attributes")
    @classmethod
    def validate_product_attributes(cls, value: list[str]) -> list[str]:
        """Attribute codes become column suffixes, so they must be plain identifiers."""

        seen: set[str] = set()
        for code in value:
            if not code or not code.replace("_", "a").isalnum():
                raise ValueError(
                    f"Invalid product attribute code: '{code}'. "
                    "Only letters, digits, and underscores are allowed."
                )
            lowered = code.lower()
            if lowered in seen:
                raise ValueError(f"Duplicate product attribute code: '{code}'.")
            seen.add(lowered)
        return value

    @model_validator(mode="after")
    def validate_poll_intervals(self) -> "AggPipeConfig":
        if self.max_poll_interval_seconds < self.poll_interval_seconds:
            raise ValueError(
                "max_poll_interval_seconds must be greater than or equal to poll_interval_seconds"
            )
        return self


class AggregationRequest(BaseModel):
    """
    A request to build one aggregation kind, or the whole catalog, for a dataset.

    Attributes:
        dataset_id (str): Target dataset (schema); wire name ``datasetId``.
        kind (AggregationKind): Aggregation kind or ``all``; wire name ``aggregationKind``
            (``aggregationType`` is accepted for older callers).
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    dataset_id: str = Field(alias="datasetId")
    kind: AggregationKind = Field(alias="aggregationKind")

    @model_validator(mode="before")
    @classmethod
    def accept_legacy_kind_field(cls, data):
        if isinstance(data, dict) and "aggregationKind" not in data and "kind" not in data:
            legacy = data.get("aggregationType")
            if legacy is not None:
                data = {**data, "aggregationKind": legacy}
        return data

    @field_validator("dataset_id")
    @classmethod
    def validate_dataset(cls, value: str) -> str:
        return validate_dataset_id(value.strip())
