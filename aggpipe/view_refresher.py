"""Best-effort refresh of materialized views after a successful build.

Refresh failures are returned as failed ``Result`` values; they never change the outcome
of the build that preceded them.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from loguru import logger

from .catalog import CATALOG, AggregationKind, CatalogEntry, get_entry, target_fqn
from .engine import AnalyticsEngine
from .results import Result

if TYPE_CHECKING:
    from .config import AggPipeConfig

LAST_REFRESHED_LABEL = "Last Refreshed"


def build_last_refresh_sql(view_fqn: str) -> str:
    return f"DESCRIBE TABLE EXTENDED {view_fqn}"


def parse_last_refreshed(rows: Iterable[Mapping[str, Any]]) -> datetime | None:
    """Find the "Last Refreshed" entry of a ``DESCRIBE TABLE EXTENDED`` result.

    The value sits in ``data_type`` (``comment`` on some runtimes). Naive timestamps are
    taken as UTC. Returns None when the entry is absent or unparsable.
    """
    for row in rows:
        if str(row.get("col_name") or "").strip() != LAST_REFRESHED_LABEL:
            continue
        value = str(row.get("data_type") or row.get("comment") or "").strip()
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


class ViewRefresher:
    """Issues explicit refreshes for the catalog's materialized views."""

    def __init__(
        self,
        engine: AnalyticsEngine,
        config: AggPipeConfig,
        *,
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        self.engine = engine
        self.config = config
        self._now_fn = now_fn or (lambda: datetime.now(timezone.utc))

    def refresh(self, kind: str | AggregationKind, dataset_id: str) -> Result[None]:
        """Refresh the materialized view built by ``kind``.

        Returns a failed Result (never raises) when the kind is not a materialized view or
        the engine rejects the refresh, e.g. because the view does not exist yet or the
        refresh was rate limited.
        """
        entry = get_entry(kind)
        if not entry.materialized_view:
            return Result.failure(f"'{entry.kind.value}' does not build a materialized view.")

        view_fqn = target_fqn(entry.kind, dataset_id, self.config)
        logger.info(f"🔄 Refreshing materialized view {view_fqn}...")
        try:
            self.engine.refresh_materialized_view(view_fqn)
        except Exception as exc:
            logger.warning(f"Refresh of {view_fqn} failed: {exc}")
            return Result.failure(str(exc))
        logger.success(f"Refreshed {view_fqn}")
        return Result.success()

    def minutes_since_refresh(self, kind: str | AggregationKind, dataset_id: str) -> Result[int]:
        """Minutes since the view was last refreshed, read from ``DESCRIBE TABLE EXTENDED``."""
        entry = get_entry(kind)
        statement = build_last_refresh_sql(target_fqn(entry.kind, dataset_id, self.config))
        try:
            rows = self.engine.query(statement)
        except Exception as exc:
            logger.warning(f"Could not check last refresh time of {entry.target_name}: {exc}")
            return Result.failure(str(exc))
        last_refreshed = parse_last_refreshed(rows)
        if last_refreshed is None:
            return Result.failure(f"No refresh history for {entry.target_name}.")
        minutes = int((self._now_fn() - last_refreshed).total_seconds() // 60)
        if minutes > self.config.refresh_stale_after_minutes:
            logger.warning(
                f"⚠️ {entry.target_name} has not been refreshed in {minutes} minutes "
                f"(last refresh: {last_refreshed.isoformat()})."
            )
        else:
            logger.info(f"{entry.target_name} last refreshed {minutes} minutes ago.")
        return Result.success(minutes)

    def materialized_view_entries(self) -> list[CatalogEntry]:
        return [entry for entry in CATALOG.values() if entry.materialized_view]

    def refresh_all(self, dataset_id: str) -> dict[str, Result[None]]:
        """Refresh every existing materialized view of the dataset.

        Views that do not exist are reported as failures without issuing a refresh.
        """
        results: dict[str, Result[None]] = {}
        for entry in self.materialized_view_entries():
            self.minutes_since_refresh(entry.kind, dataset_id)
            try:
                exists = self.engine.describe_table(dataset_id, entry.target_name)
            except Exception as exc:
                logger.warning(f"Could not check whether {entry.target_name} exists: {exc}")
                exists = True
            if not exists:
                logger.error(f"❌ {entry.target_name} does not exist in dataset '{dataset_id}'.")
                results[entry.target_name] = Result.failure("View does not exist.")
                continue
            results[entry.target_name] = self.refresh(entry.kind, dataset_id)

        refreshed = sum(1 for result in results.values() if result.ok)
        logger.info(f"{refreshed} of {len(results)} views refreshed successfully")
        return results
