"""
The main entry point for the aggpipe Command-Line Interface (CLI).
"""

import argparse
import os
import sys
import textwrap
from datetime import timedelta
from pathlib import Path

import yaml  # type: ignore[import]
from databricks.sdk import WorkspaceClient
from loguru import logger
from pydantic import ValidationError

from .catalog import CATALOG, AggregationKind, build_query, resolve_kinds
from .config import AggPipeConfig
from .engine import DatabricksEngine, resolve_warehouse_id
from .orchestrator import AggregationOrchestrator, RequestValidationError
from .results import BatchReport
from .view_refresher import ViewRefresher

DEFAULT_CONFIG_TEMPLATE = (
    textwrap.dedent(
        """
        # aggpipe starter configuration
        # Update the catalog and source table names to match your environment.
        catalog: "main"
        source_tables:
          orders: "adobe_commerce_orders"
          products: "adobe_commerce_products"
          search_queries: "gsc_search_analytics_by_query"
        extension_field: "extension_attributes"
        sample_size: 200
        max_extension_columns: 100
        job_timeout_minutes: 30
        poll_interval_seconds: 5
        max_poll_interval_seconds: 30
        refresh_stale_after_minutes: 120
        """
    ).strip()
    + "\n"
)


def resolve_warehouse_name(
    workspace_client: WorkspaceClient,
    *,
    explicit_name: str | None = None,
) -> str:
    """Resolve the SQL warehouse name using CLI args, env vars, or Databricks config."""

    warehouse_name = explicit_name or os.getenv("AGGPIPE_WAREHOUSE")
    if warehouse_name:
        return warehouse_name

    config = getattr(workspace_client, "config", None)
    config_value = getattr(config, "aggpipe_warehouse", None) if config else None
    if config_value:
        return config_value

    raise ValueError(
        "A warehouse must be provided via the --warehouse flag, the AGGPIPE_WAREHOUSE "
        "environment variable, or an 'aggpipe_warehouse' key in your Databricks config profile."
    )


def _load_config(config_path: str | None) -> AggPipeConfig:
    if config_path is None:
        return AggPipeConfig()
    with open(config_path, encoding="utf-8") as config_file:
        raw_config = yaml.safe_load(config_file) or {}
    return AggPipeConfig(**raw_config)


def _scaffold_config(output_path: str, force: bool) -> None:
    target = Path(output_path).expanduser().resolve()
    if target.exists() and not force:
        logger.error(
            f"Cannot scaffold config: file already exists at {target}. Pass --force to overwrite."
        )
        sys.exit(1)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(DEFAULT_CONFIG_TEMPLATE, encoding="utf-8")
    logger.success(f"✨ Created starter config at {target}")


def _print_plan(config: AggPipeConfig, dataset_id: str, kind: str) -> None:
    kinds = resolve_kinds(kind)
    logger.info(f"Plan for dataset '{dataset_id}' in catalog '{config.catalog}':")
    for planned in kinds:
        entry = CATALOG[planned]
        object_type = "materialized view" if entry.materialized_view else "table"
        logger.info(f" • {planned.value}: {entry.target_name} ({object_type}) - {entry.description}")
        if entry.uses_extension_columns:
            logger.info("   Extension columns are discovered at run time and omitted from the plan.")
        print(build_query(planned, dataset_id, config) + ";\n")


def _build_engine(args: argparse.Namespace, config: AggPipeConfig) -> DatabricksEngine:
    profile_name: str = args.profile or os.getenv("DATABRICKS_PROFILE", "DEFAULT")
    logger.info(f"Initializing WorkspaceClient with profile '{profile_name}'...")
    w = WorkspaceClient(profile=profile_name)
    warehouse_name = resolve_warehouse_name(workspace_client=w, explicit_name=args.warehouse)
    warehouse_id = resolve_warehouse_id(w, warehouse_name)
    return DatabricksEngine(
        w,
        warehouse_id,
        config.catalog,
        poll_interval_seconds=config.poll_interval_seconds,
        max_poll_interval_seconds=config.max_poll_interval_seconds,
        query_timeout=timedelta(minutes=config.job_timeout_minutes),
    )


def main() -> None:
    """The main function that executes when the `aggpipe` command is run."""
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="aggpipe: build aggregation tables and materialized views on Databricks.",
        formatter_class=argparse.RawTextHelpFormatter,
    )
    parser.add_argument(
        "command", choices=["run", "plan", "refresh", "init"], help="The command to execute."
    )
    parser.add_argument("--config", help="Path to an aggpipe YAML config (defaults apply if omitted).")
    parser.add_argument("--dataset", help="Target dataset (schema) for run/plan/refresh.")
    parser.add_argument(
        "--kind",
        default=AggregationKind.ALL.value,
        help="Aggregation kind to build, or 'all' (default: %(default)s).\n"
        + "Kinds: "
        + ", ".join(kind.value for kind in CATALOG),
    )
    parser.add_argument(
        "--warehouse",
        help="Name of the SQL Warehouse. Overrides all other settings.",
    )
    parser.add_argument(
        "--profile",
        help="Databricks CLI profile. Overrides DATABRICKS_PROFILE env var.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate inputs and show the plan without submitting statements.",
    )
    parser.add_argument(
        "--output",
        default="aggpipe_config.yml",
        help="Target path for the `init` command (default: %(default)s).",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite any existing file when using the `init` command.",
    )

    args: argparse.Namespace = parser.parse_args()

    if args.command == "init":
        _scaffold_config(args.output, args.force)
        return

    if not args.dataset:
        parser.error("--dataset is required for the run, plan and refresh commands.")

    try:
        config: AggPipeConfig = _load_config(args.config)
    except FileNotFoundError:
        logger.critical(f"Configuration file not found at: {args.config}")
        sys.exit(1)
    except ValidationError as exc:
        logger.critical(
            f"Configuration file '{args.config}' is invalid. Please fix the following errors:"
        )
        logger.error(exc)
        sys.exit(1)
    except yaml.YAMLError as exc:
        logger.critical(f"An error occurred while parsing the YAML config: {exc}")
        sys.exit(1)

    try:
        request = AggregationOrchestrator.validate(
            {"datasetId": args.dataset, "aggregationKind": args.kind}
        )
    except RequestValidationError as exc:
        logger.critical(str(exc))
        sys.exit(2)

    if args.command == "plan" or args.dry_run:
        if args.dry_run:
            logger.info("Dry run requested – statements will not be submitted.")
        _print_plan(config, request.dataset_id, request.kind.value)
        return

    engine = _build_engine(args, config)

    if args.command == "refresh":
        results = ViewRefresher(engine, config).refresh_all(request.dataset_id)
        if not all(result.ok for result in results.values()):
            logger.error("⚠️ Some views failed to refresh. Check the errors above for details.")
            sys.exit(1)
        logger.success("✅ All materialized views refreshed!")
        return

    orchestrator = AggregationOrchestrator(engine, config)
    result = orchestrator.run(request)
    if isinstance(result, BatchReport):
        if not result.all_succeeded:
            sys.exit(1)
        return
    if not result.succeeded:
        logger.error(f"❌ {result.kind} failed: {result.error_message}")
        sys.exit(1)
    logger.success(f"✅ {result.kind} built successfully.")


if __name__ == "__main__":
    main()
