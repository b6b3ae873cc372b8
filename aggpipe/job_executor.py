"""Runs one generated statement as an asynchronous engine job and classifies the outcome."""

from __future__ import annotations

from datetime import timedelta

from databricks.sdk.service import sql as sql_service
from loguru import logger

from .engine import AnalyticsEngine, JobTimeoutError
from .results import JobOutcome, OutcomeStatus


def embedded_error(status: sql_service.StatementStatus) -> str | None:
    """Return the error text recorded in a terminal status, or None for a clean success.

    The engine can report a terminal state while still carrying an error payload, so the
    error field is checked independently of the state.
    """
    if status.error is not None:
        return status.error.message or f"Statement failed with error code {status.error.error_code}"
    if status.state != sql_service.StatementState.SUCCEEDED:
        return f"Statement finished in state {status.state}"
    return None


class JobExecutor:
    """Submits statements and blocks until they finish or the deadline elapses."""

    def __init__(self, engine: AnalyticsEngine, timeout: timedelta = timedelta(minutes=30)) -> None:
        self.engine = engine
        self.timeout = timeout

    def run(self, kind: str, statement: str) -> JobOutcome:
        try:
            handle = self.engine.submit_job(statement)
        except Exception as exc:
            logger.error(f"[{kind}] Statement was not accepted: {exc}")
            return JobOutcome(kind=kind, status=OutcomeStatus.NOT_RUN, error_message=str(exc))

        logger.info(f"[{kind}] Submitted statement {handle.statement_id}; waiting for completion...")
        try:
            _, status = handle.await_completion(self.timeout)
        except JobTimeoutError as exc:
            logger.error(f"[{kind}] {exc}")
            return JobOutcome(
                kind=kind,
                status=OutcomeStatus.TIMED_OUT,
                error_message=str(exc),
                statement_id=handle.statement_id,
            )

        error = embedded_error(status)
        if error is not None:
            logger.error(f"[{kind}] Engine reported a failure: {error}")
            return JobOutcome(
                kind=kind,
                status=OutcomeStatus.FAILED,
                error_message=error,
                statement_id=handle.statement_id,
            )

        logger.success(f"[{kind}] Statement {handle.statement_id} completed.")
        return JobOutcome(
            kind=kind, status=OutcomeStatus.SUCCEEDED, statement_id=handle.statement_id
        )
