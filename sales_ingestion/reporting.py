"""Reporting utilities for attribute statistics summaries."""

from __future__ import annotations

import json
from collections import defaultdict
from pathlib import Path
from typing import Any

from sales_ingestion.currency import CANONICAL_PLACES, round_price
from sales_ingestion.models import AttributeStats, PipelineState
from sales_ingestion.utils_time import format_utc


def _attribute_row(stats: AttributeStats) -> dict[str, Any]:
    return {
        "category": stats.category,
        "value": stats.value,
        "totalSales": stats.total_sales,
        "avgPrice": stats.avg_price,
    }


def top_attributes_by_sales(
    state: PipelineState, limit: int = 10
) -> list[dict[str, Any]]:
    ranked = sorted(
        state.attributes.values(),
        key=lambda stats: (-stats.total_sales, stats.key),
    )
    return [_attribute_row(stats) for stats in ranked[:limit]]


def top_attributes_by_avg_price(
    state: PipelineState, limit: int = 10
) -> list[dict[str, Any]]:
    ranked = sorted(
        state.attributes.values(),
        key=lambda stats: (-stats.avg_price, stats.key),
    )
    return [_attribute_row(stats) for stats in ranked[:limit]]


def currency_breakdown(state: PipelineState) -> dict[str, dict[str, Any]]:
    """Count distinct sales and XCH volume per original payment currency.

    Sales without a trade id (backfilled rows) are counted per attribute row.
    """
    seen_trades: set[str] = set()
    rows: dict[str, int] = defaultdict(int)
    volume: dict[str, float] = defaultdict(float)

    for stats in state.attributes.values():
        for sale in stats.sales:
            if sale.trade_id:
                if sale.trade_id in seen_trades:
                    continue
                seen_trades.add(sale.trade_id)
            rows[sale.original_currency] += 1
            volume[sale.original_currency] += sale.price_xch

    return {
        currency: {
            "sales": rows[currency],
            "total_xch": round_price(volume[currency], CANONICAL_PLACES),
        }
        for currency in sorted(rows)
    }


def build_stats_report(state: PipelineState, *, top_n: int = 10) -> dict[str, Any]:
    """Summarize the document for operators."""
    return {
        "generated_at": state.generated_at,
        "last_processed_date": (
            format_utc(state.last_processed_date)
            if state.last_processed_date
            else None
        ),
        "total_attributes": state.total_attributes,
        "total_sales_records": state.total_sales_records,
        "xch_usd_rate": state.xch_usd_rate,
        "top_by_sales": top_attributes_by_sales(state, top_n),
        "top_by_avg_price": top_attributes_by_avg_price(state, top_n),
        "currency_breakdown": currency_breakdown(state),
    }


def write_stats_report(path: str, report: dict[str, Any]) -> None:
    """Write the summary report JSON to disk."""
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(
        json.dumps(report, indent=2, sort_keys=True, ensure_ascii=False),
        encoding="utf-8",
    )
