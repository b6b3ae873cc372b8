"""
The aggregation orchestrator.

This module validates aggregation requests, resolves ``all`` into the ordered catalog,
and runs every requested kind through statement generation, job execution and (for
materialized views) a best-effort refresh. Single-kind requests produce one
``JobOutcome``; batch requests produce a ``BatchReport`` in which one kind's failure
never prevents the remaining kinds from running.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import timedelta
from typing import Any

from loguru import logger
from pydantic import ValidationError

from .catalog import CATALOG, AggregationKind, CatalogEntry, build_query, get_entry, resolve_kinds
from .columns import ExtensionColumn, synthesize_extension_columns
from .config import AggPipeConfig, AggregationRequest
from .engine import AnalyticsEngine
from .job_executor import JobExecutor
from .results import BatchReport, JobOutcome, OutcomeStatus
from .schema_sampler import sample_extension_keys
from .sql_utils import format_fully_qualified_name
from .view_refresher import ViewRefresher

__all__ = ["AggregationOrchestrator", "RequestValidationError"]


class RequestValidationError(ValueError):
    """Raised for malformed requests; no statement is ever submitted for them."""


class AggregationOrchestrator:
    """
    Runs aggregation kinds against a dataset on an analytics engine.

    Args:
        engine (AnalyticsEngine): Engine used for sampling, job execution and refreshes.
        config (AggPipeConfig | None): Catalog, source tables and timing settings.

    Typical usage example:
        orchestrator = AggregationOrchestrator(engine, config)
        report = orchestrator.run_all("sales_dataset")
    """

    def __init__(
        self,
        engine: AnalyticsEngine,
        config: AggPipeConfig | None = None,
        *,
        executor: JobExecutor | None = None,
        refresher: ViewRefresher | None = None,
    ) -> None:
        self.engine = engine
        self.config = config or AggPipeConfig()
        self.executor = executor or JobExecutor(
            engine, timeout=timedelta(minutes=self.config.job_timeout_minutes)
        )
        self.refresher = refresher or ViewRefresher(engine, self.config)

    @staticmethod
    def validate(payload: Any) -> AggregationRequest:
        """Validate an inbound request payload.

        Raises:
            RequestValidationError: If the body is not an object, ``datasetId`` or
                ``aggregationKind`` is missing, the kind is unknown, or the dataset ID is not a
                safe identifier.
        """
        if not isinstance(payload, Mapping):
            raise RequestValidationError("Request body must be a JSON object.")
        dataset_id = payload.get("datasetId") or payload.get("dataset_id")
        kind = (
            payload.get("aggregationKind")
            or payload.get("aggregationType")
            or payload.get("kind")
        )
        missing = [
            name
            for name, value in (("datasetId", dataset_id), ("aggregationKind", kind))
            if value is None or (isinstance(value, str) and not value.strip())
        ]
        if missing:
            raise RequestValidationError(f"Missing required fields: {', '.join(missing)}")
        if not isinstance(kind, str) or kind not in {member.value for member in AggregationKind}:
            raise RequestValidationError(f"Unknown aggregation kind: {kind}")
        try:
            return AggregationRequest(datasetId=dataset_id, aggregationKind=kind)
        except ValidationError as exc:
            messages = "; ".join(str(error["msg"]) for error in exc.errors())
            raise RequestValidationError(messages) from exc

    def extension_columns(self, dataset_id: str) -> list[ExtensionColumn]:
        """Sample the orders table and synthesize the extension columns for this run.

        A failed sample is downgraded to "no extension columns"; the view is still built.
        """
        orders_fqn = format_fully_qualified_name(
            self.config.catalog, dataset_id, self.config.source_tables.orders
        )
        sampled = sample_extension_keys(
            self.engine, orders_fqn, self.config.extension_field, self.config.sample_size
        )
        if not sampled.ok:
            logger.warning(
                f"Extension key discovery failed ({sampled.error}); "
                "building the orders view without extension columns."
            )
            return []
        columns = synthesize_extension_columns(
            sampled.value or set(), max_columns=self.config.max_extension_columns
        )
        logger.info(f"Projecting {len(columns)} extension column(s).")
        return columns

    def build_statement(self, entry: CatalogEntry, dataset_id: str) -> str:
        columns = self.extension_columns(dataset_id) if entry.uses_extension_columns else None
        return build_query(entry.kind, dataset_id, self.config, columns)

    def _execute(self, entry: CatalogEntry, dataset_id: str, statement: str) -> JobOutcome:
        outcome = self.executor.run(entry.kind.value, statement)
        if not (outcome.succeeded and entry.materialized_view):
            return outcome

        refreshed = self.refresher.refresh(entry.kind, dataset_id)
        if not refreshed.ok:
            logger.warning(
                f"[{entry.kind.value}] View was built but the refresh failed: {refreshed.error}. "
                "Keeping the successful build outcome."
            )
        try:
            if not self.engine.describe_table(dataset_id, entry.target_name):
                logger.warning(f"[{entry.kind.value}] {entry.target_name} not found after build.")
        except Exception as exc:
            logger.debug(f"[{entry.kind.value}] Existence check skipped: {exc}")
        return outcome

    def run_kind(self, dataset_id: str, kind: str | AggregationKind) -> JobOutcome:
        """Build a single aggregation kind. Build errors propagate to the caller."""
        entry = get_entry(kind)
        logger.info(f"Building '{entry.kind.value}' into {entry.target_name}...")
        statement = self.build_statement(entry, dataset_id)
        return self._execute(entry, dataset_id, statement)

    def run_all(self, dataset_id: str) -> BatchReport:
        """Build every catalog kind sequentially, isolating each kind's failures."""
        outcomes: list[JobOutcome] = []
        for kind in resolve_kinds(AggregationKind.ALL):
            entry = CATALOG[kind]
            logger.info(f"Building '{kind.value}' into {entry.target_name}...")
            try:
                statement = self.build_statement(entry, dataset_id)
            except Exception as exc:
                logger.error(f"[{kind.value}] Could not generate statement: {exc}")
                outcomes.append(
                    JobOutcome(kind=kind.value, status=OutcomeStatus.NOT_RUN, error_message=str(exc))
                )
                continue
            try:
                outcomes.append(self._execute(entry, dataset_id, statement))
            except Exception as exc:
                logger.error(f"[{kind.value}] Execution raised: {exc}")
                outcomes.append(
                    JobOutcome(kind=kind.value, status=OutcomeStatus.FAILED, error_message=str(exc))
                )

        report = BatchReport(outcomes=tuple(outcomes))
        succeeded = len(outcomes) - len(report.failed_kinds)
        logger.info(f"Batch finished: {succeeded}/{len(outcomes)} kind(s) succeeded.")
        if report.failed_kinds:
            logger.error(f"Failed kinds: {', '.join(report.failed_kinds)}")
        else:
            logger.success("✅ All aggregations built successfully.")
        return report

    def run(self, request: AggregationRequest) -> JobOutcome | BatchReport:
        if request.kind is AggregationKind.ALL:
            return self.run_all(request.dataset_id)
        return self.run_kind(request.dataset_id, request.kind)

    def handle_request(self, payload: Any) -> tuple[int, dict[str, Any]]:
        """Serve an aggregation request and return ``(status_code, body)``."""
        try:
            request = self.validate(payload)
        except RequestValidationError as exc:
            logger.warning(f"Rejected aggregation request: {exc}")
            return 400, {"success": False, "error": str(exc)}

        try:
            result = self.run(request)
        except Exception as exc:
            logger.exception(f"Error creating aggregation for '{request.kind.value}': {exc}")
            return 500, {"success": False, "error": str(exc)}

        if isinstance(result, BatchReport):
            return 200, result.to_payload()
        if result.succeeded:
            return 200, {"success": True}
        return 500, {
            "success": False,
            "error": result.error_message or "Aggregation failed.",
            "results": [result.to_payload()],
        }
