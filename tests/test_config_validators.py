import pytest
from pydantic import ValidationError

from aggpipe.catalog import AggregationKind
from aggpipe.config import DEFAULT_PRODUCT_ATTRIBUTES, AggPipeConfig, AggregationRequest, SourceTables


def test_defaults():
    config = AggPipeConfig()
    assert config.catalog == "main"
    assert config.source_tables == SourceTables()
    assert config.sample_size == 200
    assert config.max_extension_columns == 100
    assert config.job_timeout_minutes == 30.0
    assert config.product_attributes == DEFAULT_PRODUCT_ATTRIBUTES
    assert config.product_attributes is not DEFAULT_PRODUCT_ATTRIBUTES


@pytest.mark.parametrize(
    "overrides",
    [
        {"catalog": "main; DROP"},
        {"extension_field": "extension attributes"},
        {"source_tables": {"orders": "orders--x"}},
    ],
)
def test_unsafe_names_are_rejected(overrides):
    with pytest.raises(ValidationError, match="Invalid SQL identifier"):
        AggPipeConfig(**overrides)


@pytest.mark.parametrize("field", ["sample_size", "max_extension_columns"])
def test_counts_must_be_positive(field):
    with pytest.raises(ValidationError, match="greater than 0"):
        AggPipeConfig(**{field: 0})


@pytest.mark.parametrize("field", ["job_timeout_minutes", "poll_interval_seconds"])
def test_durations_must_be_positive(field):
    with pytest.raises(ValidationError, match="Durations must be greater than 0"):
        AggPipeConfig(**{field: -1})


def test_max_poll_interval_not_below_initial():
    with pytest.raises(ValidationError, match="max_poll_interval_seconds"):
        AggPipeConfig(poll_interval_seconds=10, max_poll_interval_seconds=5)


@pytest.mark.parametrize(
    "attributes,message",
    [
        (["brand", "bad-code"], "Invalid product attribute code"),
        ([""], "Invalid product attribute code"),
        (["brand", "Brand"], "Duplicate product attribute code"),
    ],
)
def test_product_attribute_codes(attributes, message):
    with pytest.raises(ValidationError, match=message):
        AggPipeConfig(product_attributes=attributes)


def test_request_accepts_wire_and_python_names():
    wire = AggregationRequest(datasetId=" shop ", aggregationKind="sales_overview")
    assert wire.dataset_id == "shop"
    assert wire.kind is AggregationKind.SALES_OVERVIEW
    assert AggregationRequest(dataset_id="shop", kind="all").kind is AggregationKind.ALL


def test_request_accepts_legacy_kind_field():
    request = AggregationRequest.model_validate(
        {"datasetId": "shop", "aggregationType": "customer_metrics"}
    )
    assert request.kind is AggregationKind.CUSTOMER_METRICS


def test_request_rejects_unknown_kind():
    with pytest.raises(ValidationError):
        AggregationRequest(datasetId="shop", aggregationKind="not_a_real_kind")


def test_request_is_immutable():
    request = AggregationRequest(datasetId="shop", aggregationKind="all")
    with pytest.raises(ValidationError):
        request.dataset_id = "other"
