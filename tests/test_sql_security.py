"""Test SQL security functions to prevent injection through interpolated names."""

import pytest

from aggpipe.catalog import build_query
from aggpipe.config import AggPipeConfig
from aggpipe.sql_utils import (
    escape_sql_identifier,
    escape_sql_string,
    format_fully_qualified_name,
    validate_dataset_id,
)


class TestSQLSecurity:
    """Test suite for SQL injection prevention."""

    def test_escape_sql_identifier_valid(self):
        """Test escaping valid SQL identifiers."""
        assert escape_sql_identifier("table_name") == "`table_name`"
        assert escape_sql_identifier("col-name") == "`col-name`"
        assert escape_sql_identifier("table`with`ticks") == "`table``with``ticks`"

    def test_escape_sql_identifier_invalid(self):
        """Test that invalid identifiers raise errors."""
        with pytest.raises(ValueError, match="Invalid SQL identifier"):
            escape_sql_identifier("table; DROP TABLE users")
        with pytest.raises(ValueError, match="Invalid SQL identifier"):
            escape_sql_identifier("table' OR '1'='1")
        with pytest.raises(ValueError, match="Invalid SQL identifier"):
            escape_sql_identifier("")

    def test_escape_sql_string(self):
        """Backslashes and single quotes are escaped for Databricks string literals."""
        assert escape_sql_string("normal string") == "'normal string'"
        assert escape_sql_string("O'Reilly") == "'O\\'Reilly'"
        assert escape_sql_string("a\\b") == "'a\\\\b'"
        assert escape_sql_string("$['x\\'y']") == "'$[\\'x\\\\\\'y\\']'"

    def test_format_fully_qualified_name(self):
        assert format_fully_qualified_name("main", "shop", "orders") == "`main`.`shop`.`orders`"
        with pytest.raises(ValueError):
            format_fully_qualified_name("main", "shop; DROP", "orders")

    def test_validate_dataset_id(self):
        assert validate_dataset_id("sanderson_design_group") == "sanderson_design_group"
        assert validate_dataset_id("shop-eu") == "shop-eu"
        with pytest.raises(ValueError, match="Invalid dataset ID"):
            validate_dataset_id("shop.orders")
        with pytest.raises(ValueError, match="Invalid dataset ID"):
            validate_dataset_id("shop`; DROP TABLE x; --")
        with pytest.raises(ValueError, match="cannot be empty"):
            validate_dataset_id("   ")
        with pytest.raises(ValueError, match="too long"):
            validate_dataset_id("x" * 256)

    def test_build_query_rejects_unsafe_dataset(self):
        with pytest.raises(ValueError):
            build_query("sales_overview", "shop` WHERE 1=1 --", AggPipeConfig())
