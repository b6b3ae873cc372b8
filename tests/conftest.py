"""Pytest configuration and shared fixtures for aggpipe tests.

``FakeEngine`` stands in for the analytics engine: it records every statement and
lets each test decide, per statement, whether it succeeds, fails inside the engine,
times out, or is rejected at submission.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import timedelta
from typing import Any

import pytest
from databricks.sdk.service import sql as sql_service

from aggpipe.config import AggPipeConfig
from aggpipe.engine import JobTimeoutError


def succeeded_status() -> sql_service.StatementStatus:
    return sql_service.StatementStatus(state=sql_service.StatementState.SUCCEEDED)


def failed_status(message: str) -> sql_service.StatementStatus:
    return sql_service.StatementStatus(
        state=sql_service.StatementState.FAILED,
        error=sql_service.ServiceError(message=message),
    )


class FakeJob:
    def __init__(self, statement_id: str, outcome: Any) -> None:
        self.statement_id = statement_id
        self._outcome = outcome
        self.timeouts: list[timedelta] = []

    def await_completion(self, timeout: timedelta):
        self.timeouts.append(timeout)
        if isinstance(self._outcome, BaseException):
            raise self._outcome
        return [], self._outcome


class FakeEngine:
    """In-memory analytics engine double."""

    def __init__(self) -> None:
        self.submitted: list[str] = []
        self.queries: list[str] = []
        self.refreshed: list[str] = []
        self.described: list[tuple[str, str]] = []
        self.sample_rows: list[dict[str, Any]] | Exception = []
        self.query_rows: dict[str, list[dict[str, Any]]] = {}
        self.existing_tables: set[str] | None = None
        self.refresh_error: Exception | None = None
        # Maps a statement to a terminal status, an exception raised while awaiting,
        # or (for submit_error) an exception raised at submission.
        self.job_outcome: Callable[[str], Any] = lambda statement: succeeded_status()
        self.submit_error: Callable[[str], Exception | None] = lambda statement: None

    def query(self, statement: str) -> list[dict[str, Any]]:
        self.queries.append(statement)
        for marker, rows in self.query_rows.items():
            if marker in statement:
                return rows
        if isinstance(self.sample_rows, Exception):
            raise self.sample_rows
        return self.sample_rows

    def submit_job(self, statement: str) -> FakeJob:
        error = self.submit_error(statement)
        if error is not None:
            raise error
        self.submitted.append(statement)
        return FakeJob(f"stmt-{len(self.submitted)}", self.job_outcome(statement))

    def refresh_materialized_view(self, view_fqn: str) -> None:
        self.refreshed.append(view_fqn)
        if self.refresh_error is not None:
            raise self.refresh_error

    def describe_table(self, dataset_id: str, table_name: str) -> bool:
        self.described.append((dataset_id, table_name))
        if self.existing_tables is None:
            return True
        return table_name in self.existing_tables


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def config() -> AggPipeConfig:
    return AggPipeConfig(catalog="analytics")


@pytest.fixture
def timeout_error() -> JobTimeoutError:
    return JobTimeoutError("Statement stmt-1 did not finish within 0:30:00.")
