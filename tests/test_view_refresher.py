from datetime import datetime, timezone

import pytest
from loguru import logger

from aggpipe.catalog import AggregationKind
from aggpipe.view_refresher import ViewRefresher, build_last_refresh_sql, parse_last_refreshed


@pytest.fixture
def warnings():
    messages: list[str] = []
    handler_id = logger.add(lambda message: messages.append(str(message)), level="WARNING")
    yield messages
    logger.remove(handler_id)


def test_refresh_materialized_view(engine, config):
    result = ViewRefresher(engine, config).refresh(AggregationKind.SALES_ITEMS_VIEW, "shop")
    assert result.ok
    assert engine.refreshed == ["`analytics`.`shop`.`mv_adobe_commerce_sales_items`"]


def test_refresh_rejects_plain_tables(engine, config):
    result = ViewRefresher(engine, config).refresh("sales_overview", "shop")
    assert not result.ok
    assert "does not build a materialized view" in result.error
    assert engine.refreshed == []


def test_refresh_failure_is_returned(engine, config):
    engine.refresh_error = RuntimeError("Too many refreshes in progress")
    result = ViewRefresher(engine, config).refresh("orders_flattened_view", "shop")
    assert not result.ok
    assert result.error == "Too many refreshes in progress"


NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def _describe_rows(last_refreshed: str) -> list[dict[str, str]]:
    return [
        {"col_name": "order_id", "data_type": "bigint", "comment": ""},
        {"col_name": "", "data_type": "", "comment": ""},
        {"col_name": "# Refresh Information", "data_type": "", "comment": ""},
        {"col_name": "Last Refreshed", "data_type": last_refreshed, "comment": ""},
        {"col_name": "Type", "data_type": "Materialized View", "comment": ""},
    ]


def _refresher(engine, config) -> ViewRefresher:
    return ViewRefresher(engine, config, now_fn=lambda: NOW)


def test_last_refresh_reads_extended_description():
    sql = build_last_refresh_sql("`analytics`.`shop`.`mv_adobe_commerce_sales_items`")
    assert sql == "DESCRIBE TABLE EXTENDED `analytics`.`shop`.`mv_adobe_commerce_sales_items`"


@pytest.mark.parametrize(
    "value,expected",
    [
        ("2026-01-01T09:00:00Z", datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)),
        ("2026-01-01 09:00:00", datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)),
        ("not a timestamp", None),
    ],
)
def test_parse_last_refreshed(value, expected):
    assert parse_last_refreshed(_describe_rows(value)) == expected


def test_parse_last_refreshed_without_refresh_section():
    assert parse_last_refreshed([{"col_name": "order_id", "data_type": "bigint"}]) is None


def test_stale_view_is_reported(engine, config, warnings):
    engine.query_rows = {"DESCRIBE TABLE EXTENDED": _describe_rows("2026-01-01T09:00:00Z")}
    result = _refresher(engine, config).minutes_since_refresh("sales_items_view", "shop")
    assert result.ok and result.value == 180
    assert engine.queries == [
        "DESCRIBE TABLE EXTENDED `analytics`.`shop`.`mv_adobe_commerce_sales_items`"
    ]
    assert any("has not been refreshed in 180 minutes" in message for message in warnings)


def test_fresh_view_is_not_reported(engine, config, warnings):
    engine.query_rows = {"DESCRIBE TABLE EXTENDED": _describe_rows("2026-01-01T11:45:00Z")}
    result = _refresher(engine, config).minutes_since_refresh("sales_items_view", "shop")
    assert result.value == 15
    assert warnings == []


def test_missing_refresh_history(engine, config):
    result = _refresher(engine, config).minutes_since_refresh("sales_items_view", "shop")
    assert not result.ok
    assert "No refresh history" in result.error


def test_unreadable_description_is_reported(engine, config, warnings):
    engine.sample_rows = RuntimeError("TABLE_OR_VIEW_NOT_FOUND")
    result = _refresher(engine, config).minutes_since_refresh("sales_items_view", "shop")
    assert not result.ok
    assert any("Could not check last refresh time" in message for message in warnings)


def test_refresh_all_skips_missing_views(engine, config):
    engine.existing_tables = {"mv_adobe_commerce_sales_items"}
    results = ViewRefresher(engine, config).refresh_all("shop")
    assert list(results) == [
        "mv_adobe_commerce_sales_items",
        "mv_adobe_commerce_products_flattened",
        "mv_adobe_commerce_orders_flattened",
    ]
    assert results["mv_adobe_commerce_sales_items"].ok
    assert results["mv_adobe_commerce_orders_flattened"].error == "View does not exist."
    assert engine.refreshed == ["`analytics`.`shop`.`mv_adobe_commerce_sales_items`"]


def test_refresh_all_assumes_existence_when_check_fails(engine, config, monkeypatch):
    def broken_describe(dataset_id, table_name):
        raise RuntimeError("permission denied")

    monkeypatch.setattr(engine, "describe_table", broken_describe)
    results = ViewRefresher(engine, config).refresh_all("shop")
    assert all(result.ok for result in results.values())
    assert len(engine.refreshed) == 3
