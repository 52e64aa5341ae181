"""CLI for the attribute sales pipeline."""

from __future__ import annotations

import argparse
import os
from collections.abc import Sequence

from dotenv import load_dotenv
from filelock import Timeout
from pydantic import ValidationError as PydanticValidationError

from sales_ingestion.config import AppConfig, load_config
from sales_ingestion.currency import CurrencyTable
from sales_ingestion.export import export_sales
from sales_ingestion.logging import get_logger
from sales_ingestion.metadata import MetadataError, load_metadata_index
from sales_ingestion.models import PipelineState
from sales_ingestion.normalizer import SaleNormalizer
from sales_ingestion.pipeline_backfill import BackfillError, run_backfill
from sales_ingestion.pipeline_incremental import run_incremental_update
from sales_ingestion.reporting import build_stats_report, write_stats_report
from sales_ingestion.resolver import CollectionMatcher
from sales_ingestion.sources.dexie import DexieAPIError, UrllibDexieClient
from sales_ingestion.store import StoreError, load_state
from sales_ingestion.validation import ValidationError, validate_state

FATAL_ERRORS = (
    BackfillError,
    DexieAPIError,
    MetadataError,
    StoreError,
    ValidationError,
    Timeout,
)


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--stats-path", default=None)
    parser.add_argument("--log-level", default=None)


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser for pipeline commands."""
    parser = argparse.ArgumentParser(prog="sales-ingestion")
    subparsers = parser.add_subparsers(dest="command", required=True)

    backfill = subparsers.add_parser(
        "backfill",
        help="Build the statistics document from the historical sales CSV.",
    )
    _add_common_arguments(backfill)
    backfill.add_argument("--csv-path", default=None)
    backfill.add_argument("--xch-usd-rate", default=None, type=float)
    backfill.add_argument(
        "--force",
        action="store_true",
        help="Rebuild even when a statistics document already exists.",
    )

    update = subparsers.add_parser(
        "update",
        help="Fetch new Dexie trades and merge them into the statistics document.",
    )
    _add_common_arguments(update)
    update.add_argument("--metadata-path", default=None)
    update.add_argument("--api-base-url", default=None)
    update.add_argument("--collection-id", default=None)
    update.add_argument("--xch-usd-rate", default=None, type=float)
    update.add_argument("--page-size", default=None, type=int)
    update.add_argument("--page-delay-seconds", default=None, type=float)
    update.add_argument("--lookback-days", default=None, type=int)

    validate = subparsers.add_parser(
        "validate",
        help="Check cached aggregates and trade fan-out in the statistics document.",
    )
    _add_common_arguments(validate)
    validate.add_argument("--fail-on-warnings", action="store_true")

    report = subparsers.add_parser(
        "report",
        help="Summarize top attributes and currency breakdown.",
    )
    _add_common_arguments(report)
    report.add_argument("--output-json", default=None)
    report.add_argument("--top-n", default=10, type=int)

    export = subparsers.add_parser(
        "export-sales",
        help="Export flattened attribute sales to Parquet + metadata JSON.",
    )
    _add_common_arguments(export)
    export.add_argument("--output-dir", default="data/processed")
    export.add_argument("--dataset-name", default="attribute_sales")

    return parser


def _env_float(name: str) -> float | None:
    raw = os.getenv(name)
    return float(raw) if raw else None


def build_config(args: argparse.Namespace) -> AppConfig:
    """Merge CLI flags over environment variables over defaults."""
    return load_config(
        stats_path=args.stats_path or os.getenv("ATTRIBUTE_STATS_PATH"),
        metadata_path=getattr(args, "metadata_path", None)
        or os.getenv("NFT_METADATA_PATH"),
        backfill_csv_path=getattr(args, "csv_path", None)
        or os.getenv("ATTRIBUTE_SALES_CSV"),
        api_base_url=getattr(args, "api_base_url", None)
        or os.getenv("DEXIE_API_BASE_URL"),
        collection_id=getattr(args, "collection_id", None),
        xch_usd_rate=getattr(args, "xch_usd_rate", None) or _env_float("XCH_USD_RATE"),
        page_size=getattr(args, "page_size", None),
        page_delay_seconds=getattr(args, "page_delay_seconds", None),
        lookback_days=getattr(args, "lookback_days", None),
        log_level=args.log_level,
    )


def _currency_table(config: AppConfig) -> CurrencyTable:
    return CurrencyTable(
        canonical_code=config.canonical_currency,
        rates=dict(config.currency_rates),
    )


def run_backfill_command(args: argparse.Namespace, config: AppConfig) -> int:
    """Bulk-initialize the statistics document from CSV."""
    logger = get_logger(level=config.log_level)
    result = run_backfill(
        csv_path=config.backfill_csv_path,
        stats_path=config.stats_path,
        currency_table=_currency_table(config),
        fiat_rate=config.xch_usd_rate,
        force=args.force,
        lock_timeout_seconds=config.lock_timeout_seconds,
    )
    logger.info(
        "backfill completed attributes=%s sales=%s skipped=%s watermark=%s",
        result.total_attributes,
        result.total_sales_records,
        result.rows_skipped,
        result.last_processed_date,
    )
    return 0


def run_update_command(args: argparse.Namespace, config: AppConfig) -> int:
    """Run one incremental update against the Dexie API."""
    del args
    logger = get_logger(level=config.log_level)
    client = UrllibDexieClient(
        base_url=config.api_base_url,
        timeout_seconds=config.request_timeout_seconds,
    )
    result = run_incremental_update(
        stats_path=config.stats_path,
        client=client,
        collection_id=config.collection_id,
        matcher=CollectionMatcher(
            collection_id=config.collection_id,
            name_aliases=tuple(config.collection_name_aliases),
        ),
        metadata_loader=lambda: load_metadata_index(config.metadata_path),
        normalizer=SaleNormalizer(
            currency_table=_currency_table(config),
            fiat_rate=config.xch_usd_rate,
        ),
        page_size=config.page_size,
        page_delay_seconds=config.page_delay_seconds,
        lookback_days=config.lookback_days,
        lock_timeout_seconds=config.lock_timeout_seconds,
    )
    logger.info(
        "update completed applied=%s skipped=%s persisted=%s watermark=%s",
        result.sales_applied,
        result.skipped,
        result.persisted,
        result.watermark_after,
    )
    return 0


def _require_state(config: AppConfig) -> PipelineState:
    state = load_state(config.stats_path)
    if state is None:
        raise StoreError(f"statistics document {config.stats_path} not found")
    return state


def run_validate_command(args: argparse.Namespace, config: AppConfig) -> int:
    """Report consistency issues in the persisted document."""
    logger = get_logger(level=config.log_level)
    issues = validate_state(_require_state(config))
    for issue in issues:
        log = logger.error if issue.severity == "error" else logger.warning
        log("[%s:%s] %s", issue.severity, issue.code, issue.message)

    has_error = any(issue.severity == "error" for issue in issues)
    if has_error or (args.fail_on_warnings and issues):
        logger.error("validation failed with %s issues", len(issues))
        return 1
    logger.info("validation passed for %s (%s issues)", config.stats_path, len(issues))
    return 0


def run_report_command(args: argparse.Namespace, config: AppConfig) -> int:
    """Build the operator summary report."""
    logger = get_logger(level=config.log_level)
    report = build_stats_report(_require_state(config), top_n=args.top_n)
    if args.output_json:
        write_stats_report(args.output_json, report)
        logger.info("report written to %s", args.output_json)
        return 0

    logger.info(
        "total attributes=%s sales records=%s",
        report["total_attributes"],
        report["total_sales_records"],
    )
    for rank, row in enumerate(report["top_by_sales"], start=1):
        logger.info(
            "  %s. %s: %s - %s sales, avg %.4f XCH",
            rank,
            row["category"],
            row["value"],
            row["totalSales"],
            row["avgPrice"],
        )
    for currency, summary in report["currency_breakdown"].items():
        logger.info(
            "  %s: %s sales, %.2f XCH total",
            currency,
            summary["sales"],
            summary["total_xch"],
        )
    return 0


def run_export_command(args: argparse.Namespace, config: AppConfig) -> int:
    """Export the flattened sales table."""
    logger = get_logger(level=config.log_level)
    result = export_sales(
        _require_state(config),
        output_dir=args.output_dir,
        dataset_name=args.dataset_name,
        config={"stats_path": config.stats_path, "command": "export-sales"},
    )
    logger.info(
        "export wrote parquet=%s metadata=%s rows=%s",
        result.parquet_path,
        result.metadata_path,
        result.metadata["row_count"],
    )
    return 0


COMMANDS = {
    "backfill": run_backfill_command,
    "update": run_update_command,
    "validate": run_validate_command,
    "report": run_report_command,
    "export-sales": run_export_command,
}


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entrypoint."""
    parser = build_parser()
    args = parser.parse_args(argv)
    load_dotenv()

    handler = COMMANDS.get(args.command)
    if handler is None:
        parser.error(f"unsupported command: {args.command}")
        return 2

    try:
        config = build_config(args)
    except (PydanticValidationError, ValueError) as exc:
        get_logger().error("invalid configuration: %s", exc)
        return 1

    logger = get_logger(level=config.log_level)
    try:
        return handler(args, config)
    except FATAL_ERRORS as exc:
        logger.error("%s failed: %s", args.command, exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
