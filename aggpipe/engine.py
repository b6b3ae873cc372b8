"""Analytics engine adapter.

Defines the interface the orchestrator needs from the analytical engine and its
implementation on a Databricks SQL warehouse through the Statement Execution API.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any, Protocol

from databricks.sdk import WorkspaceClient
from databricks.sdk.service import sql as sql_service
from loguru import logger

from .sql_utils import format_fully_qualified_name

TERMINAL_STATES: list[sql_service.StatementState] = [
    sql_service.StatementState.SUCCEEDED,
    sql_service.StatementState.FAILED,
    sql_service.StatementState.CANCELED,
    sql_service.StatementState.CLOSED,
]


class StatementExecutionError(RuntimeError):
    """Raised when the engine reports a failed statement to a caller that expects rows."""


class JobTimeoutError(TimeoutError):
    """Raised when a submitted statement does not reach a terminal state before its deadline."""


class JobHandle(Protocol):
    statement_id: str

    def await_completion(
        self, timeout: timedelta
    ) -> tuple[list[dict[str, Any]], sql_service.StatementStatus]: ...


class AnalyticsEngine(Protocol):
    def query(self, statement: str) -> list[dict[str, Any]]: ...

    def submit_job(self, statement: str) -> JobHandle: ...

    def refresh_materialized_view(self, view_fqn: str) -> None: ...

    def describe_table(self, dataset_id: str, table_name: str) -> bool: ...


def rows_from_response(response: Any) -> list[dict[str, Any]]:
    """Convert a statement response (manifest + inline result) into a list of dicts."""
    manifest = getattr(response, "manifest", None)
    schema = getattr(manifest, "schema", None)
    columns = [column.name for column in (getattr(schema, "columns", None) or [])]
    result = getattr(response, "result", None)
    data = getattr(result, "data_array", None) or []
    return [dict(zip(columns, row)) for row in data]


class StatementJob:
    """A submitted statement whose completion is awaited by polling."""

    def __init__(
        self,
        w: WorkspaceClient,
        statement_id: str,
        *,
        now_fn: Callable[[], datetime] | None = None,
        sleep_fn: Callable[[float], None] | None = None,
        poll_interval_seconds: float = 5.0,
        max_poll_interval_seconds: float = 30.0,
    ) -> None:
        self.w = w
        self.statement_id = statement_id
        self._now_fn = now_fn or datetime.now
        self._sleep_fn = sleep_fn or time.sleep
        self._poll_interval_seconds = poll_interval_seconds
        self._max_poll_interval_seconds = max_poll_interval_seconds

    def _poll(self) -> tuple[Any, sql_service.StatementStatus]:
        response = self.w.statement_execution.get_statement(self.statement_id)
        status = response.status
        if status is None:
            raise RuntimeError("Statement status is None. Cannot determine execution state.")
        return response, status

    def await_completion(
        self, timeout: timedelta
    ) -> tuple[list[dict[str, Any]], sql_service.StatementStatus]:
        """Poll until the statement is terminal and return its rows and terminal status.

        A FAILED/CANCELED/CLOSED statement is returned, not raised: the caller decides
        how to interpret the terminal status.

        Raises:
            JobTimeoutError: If the deadline elapses first. Cancellation of the statement
                is requested before raising.
        """
        deadline: datetime = self._now_fn() + timeout
        current_interval = max(self._poll_interval_seconds, 0.1)
        capped_interval = max(current_interval, self._max_poll_interval_seconds)
        while self._now_fn() < deadline:
            response, status = self._poll()
            if status.state in TERMINAL_STATES:
                return rows_from_response(response), status
            logger.debug(f"Statement {self.statement_id} state: {status.state}")
            self._sleep_fn(current_interval)
            current_interval = min(capped_interval, current_interval * 1.5)

        # The statement may have finished during the last sleep.
        response, status = self._poll()
        if status.state in TERMINAL_STATES:
            return rows_from_response(response), status

        try:
            self.w.statement_execution.cancel_execution(self.statement_id)
        except Exception as exc:
            logger.warning(f"Could not cancel statement {self.statement_id}: {exc}")
        raise JobTimeoutError(
            f"Statement {self.statement_id} did not finish within {timeout}."
        )


class DatabricksEngine:
    """
    Runs aggregation statements on a Databricks SQL warehouse.

    Args:
        w (WorkspaceClient): Authenticated workspace client.
        warehouse_id (str): SQL warehouse executing every statement.
        catalog (str): Unity Catalog catalog that holds the datasets (schemas).
        query_timeout (timedelta): Deadline for synchronous reads and view refreshes.
    """

    def __init__(
        self,
        w: WorkspaceClient,
        warehouse_id: str,
        catalog: str,
        *,
        query_timeout: timedelta = timedelta(minutes=5),
        now_fn: Callable[[], datetime] | None = None,
        sleep_fn: Callable[[float], None] | None = None,
        poll_interval_seconds: float = 5.0,
        max_poll_interval_seconds: float = 30.0,
    ) -> None:
        self.w = w
        self.warehouse_id = warehouse_id
        self.catalog = catalog
        self.query_timeout = query_timeout
        self._now_fn = now_fn
        self._sleep_fn = sleep_fn
        self._poll_interval_seconds = poll_interval_seconds
        self._max_poll_interval_seconds = max_poll_interval_seconds

    def submit_job(self, statement: str) -> StatementJob:
        """Submit ``statement`` asynchronously and return a handle to await it."""
        resp = self.w.statement_execution.execute_statement(
            statement=statement, warehouse_id=self.warehouse_id, wait_timeout="0s"
        )
        statement_id = resp.statement_id
        if statement_id is None:
            raise ValueError("Statement ID is None. Cannot poll statement status.")
        logger.debug(f"Submitted statement {statement_id}")
        return StatementJob(
            self.w,
            statement_id,
            now_fn=self._now_fn,
            sleep_fn=self._sleep_fn,
            poll_interval_seconds=self._poll_interval_seconds,
            max_poll_interval_seconds=self._max_poll_interval_seconds,
        )

    def _execute(self, statement: str) -> list[dict[str, Any]]:
        job = self.submit_job(statement)
        rows, status = job.await_completion(self.query_timeout)
        if status.state != sql_service.StatementState.SUCCEEDED or status.error is not None:
            message = status.error.message if status.error else "Unknown"
            raise StatementExecutionError(f"SQL execution failed ({status.state}): {message}")
        return rows

    def query(self, statement: str) -> list[dict[str, Any]]:
        """Run a read statement and return its rows; raises on failure."""
        return self._execute(statement)

    def refresh_materialized_view(self, view_fqn: str) -> None:
        self._execute(f"REFRESH MATERIALIZED VIEW {view_fqn}")

    def describe_table(self, dataset_id: str, table_name: str) -> bool:
        format_fully_qualified_name(self.catalog, dataset_id, table_name)  # rejects unsafe segments
        full_name = f"{self.catalog}.{dataset_id}.{table_name}"
        response = self.w.tables.exists(full_name=full_name)
        return bool(getattr(response, "table_exists", False))


def resolve_warehouse_id(w: WorkspaceClient, name: str) -> str:
    """Find a SQL warehouse by display name, start it if needed, and return its ID.

    Raises:
        ValueError: If the warehouse is not found or has no ID.
        RuntimeError: If the warehouse is being deleted.
        TimeoutError: If the warehouse does not reach RUNNING in time.
    """
    logger.info(f"Looking for SQL Warehouse '{name}'...")
    warehouse: sql_service.EndpointInfo | None = next(
        (wh for wh in w.warehouses.list() if wh.name == name), None
    )
    if not warehouse:
        raise ValueError(f"SQL Warehouse '{name}' not found.")
    if warehouse.id is None:
        raise ValueError(f"Warehouse '{name}' has no ID.")

    logger.info(f"Found warehouse '{name}' (ID: {warehouse.id}). State: {warehouse.state}")
    if warehouse.state in (sql_service.State.RUNNING, sql_service.State.STARTING):
        return warehouse.id

    logger.info(f"Warehouse '{name}' is {warehouse.state}. Attempting to start...")
    w.warehouses.start(warehouse.id)
    deadline = datetime.now() + timedelta(minutes=10)
    while datetime.now() < deadline:
        state = getattr(w.warehouses.get(warehouse.id), "state", None)
        if state == sql_service.State.RUNNING:
            logger.success(f"Warehouse '{name}' started successfully.")
            return warehouse.id
        if state in (sql_service.State.DELETING, sql_service.State.DELETED):
            raise RuntimeError(f"Warehouse '{name}' failed to start. State: {state}")
        time.sleep(5)
    raise TimeoutError(f"Timed out waiting for warehouse '{name}' to start.")
