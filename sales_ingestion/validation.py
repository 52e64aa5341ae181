"""Consistency checks for the statistics document."""

from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import dataclass

from sales_ingestion.models import PipelineState
from sales_ingestion.stats import compute_aggregates


class ValidationError(RuntimeError):
    """Raised when hard consistency checks fail."""


@dataclass(frozen=True)
class ValidationIssue:
    """One validation issue with severity and message."""

    severity: str
    code: str
    message: str


def validate_state(state: PipelineState) -> list[ValidationIssue]:
    """Check cached aggregates, bucket keys, ordering, and trade fan-out."""
    issues: list[ValidationIssue] = []
    trade_buckets: Counter[str] = Counter()
    trade_editions: dict[str, set[int]] = defaultdict(set)

    for key, stats in state.attributes.items():
        if key != stats.key:
            issues.append(
                ValidationIssue(
                    severity="error",
                    code="bucket_key_mismatch",
                    message=f"bucket {key} holds {stats.key}",
                )
            )

        if stats.total_sales != len(stats.sales):
            issues.append(
                ValidationIssue(
                    severity="error",
                    code="total_sales_mismatch",
                    message=(
                        f"bucket {key} totalSales={stats.total_sales} "
                        f"but has {len(stats.sales)} sales"
                    ),
                )
            )

        expected = compute_aggregates(stats.sales)
        cached = (
            stats.min_price,
            stats.max_price,
            stats.avg_price,
            stats.last_sale_date,
            stats.last_sale_price,
        )
        fresh = (
            expected.min_price,
            expected.max_price,
            expected.avg_price,
            expected.last_sale_date,
            expected.last_sale_price,
        )
        if cached != fresh:
            issues.append(
                ValidationIssue(
                    severity="error",
                    code="aggregate_drift",
                    message=f"bucket {key} cached aggregates {cached} != {fresh}",
                )
            )

        dates = [sale.date for sale in stats.sales]
        if dates != sorted(dates, reverse=True):
            issues.append(
                ValidationIssue(
                    severity="warning",
                    code="sales_not_sorted",
                    message=f"bucket {key} sales are not newest-first",
                )
            )

        seen_in_bucket: set[str] = set()
        for sale in stats.sales:
            if not sale.trade_id:
                continue
            if sale.trade_id in seen_in_bucket:
                issues.append(
                    ValidationIssue(
                        severity="error",
                        code="duplicate_trade",
                        message=f"trade {sale.trade_id} stored twice in bucket {key}",
                    )
                )
            seen_in_bucket.add(sale.trade_id)
            trade_editions[sale.trade_id].add(sale.nft_edition)
        trade_buckets.update(seen_in_bucket)

    for trade_id, bucket_count in sorted(trade_buckets.items()):
        editions = trade_editions[trade_id]
        if len(editions) > 1:
            issues.append(
                ValidationIssue(
                    severity="error",
                    code="conflicting_trade",
                    message=(
                        f"trade {trade_id} spans {bucket_count} buckets "
                        f"with editions {sorted(editions)}"
                    ),
                )
            )

    return issues


def enforce_state_consistency(
    state: PipelineState,
    *,
    fail_on_warnings: bool = False,
) -> list[ValidationIssue]:
    """Validate the document and raise ValidationError on configured failure modes."""
    issues = validate_state(state)

    has_error = any(issue.severity == "error" for issue in issues)
    has_warning = any(issue.severity == "warning" for issue in issues)

    if has_error or (fail_on_warnings and has_warning):
        summary = "; ".join(f"[{i.severity}:{i.code}] {i.message}" for i in issues)
        raise ValidationError(summary)

    return issues
