"""Attribute bucket maintenance and aggregate recomputation."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass

from sales_ingestion.currency import CANONICAL_PLACES, round_price
from sales_ingestion.models import AttributeStats, PipelineState, SaleRecord, Trait

# Extension point for outlier handling (median, trimmed mean, stddev bands).
# Filters receive the full sales list and return the subset used for pricing.
PriceFilter = Callable[[list[SaleRecord]], list[SaleRecord]]


@dataclass(frozen=True)
class BucketAggregates:
    """Derived values cached on an attribute bucket."""

    min_price: float
    max_price: float
    avg_price: float
    last_sale_date: str
    last_sale_price: float


EMPTY_AGGREGATES = BucketAggregates(
    min_price=0.0,
    max_price=0.0,
    avg_price=0.0,
    last_sale_date="",
    last_sale_price=0.0,
)


def sort_sales_newest_first(sales: Iterable[SaleRecord]) -> list[SaleRecord]:
    """Stable sort by day, newest first; same-day sales keep ingestion order."""
    return sorted(sales, key=lambda sale: sale.date, reverse=True)


def compute_aggregates(
    sales: list[SaleRecord],
    *,
    price_filter: PriceFilter | None = None,
) -> BucketAggregates:
    """Compute min/max/avg and last sale from the full sales list."""
    if not sales:
        return EMPTY_AGGREGATES

    priced = price_filter(sales) if price_filter is not None else sales
    if not priced:
        priced = sales

    prices = [sale.price_xch for sale in priced]
    last_sale = sort_sales_newest_first(sales)[0]
    return BucketAggregates(
        min_price=round_price(min(prices), CANONICAL_PLACES),
        max_price=round_price(max(prices), CANONICAL_PLACES),
        avg_price=round_price(sum(prices) / len(prices), CANONICAL_PLACES),
        last_sale_date=last_sale.date,
        last_sale_price=round_price(last_sale.price_xch, CANONICAL_PLACES),
    )


def recompute_bucket(
    stats: AttributeStats,
    *,
    price_filter: PriceFilter | None = None,
) -> AttributeStats:
    """Re-sort a bucket's sales and refresh every cached aggregate in place."""
    stats.sales = sort_sales_newest_first(stats.sales)
    aggregates = compute_aggregates(stats.sales, price_filter=price_filter)
    stats.min_price = aggregates.min_price
    stats.max_price = aggregates.max_price
    stats.avg_price = aggregates.avg_price
    stats.last_sale_date = aggregates.last_sale_date
    stats.last_sale_price = aggregates.last_sale_price
    stats.total_sales = len(stats.sales)
    return stats


def recompute_all(
    state: PipelineState,
    *,
    price_filter: PriceFilter | None = None,
) -> None:
    """Refresh aggregates on every bucket."""
    for stats in state.attributes.values():
        recompute_bucket(stats, price_filter=price_filter)


def collect_trade_ids(state: PipelineState) -> set[str]:
    """Return every trade id already stored in any bucket."""
    trade_ids: set[str] = set()
    for stats in state.attributes.values():
        for sale in stats.sales:
            if sale.trade_id:
                trade_ids.add(sale.trade_id)
    return trade_ids


def append_sale(
    state: PipelineState,
    traits: Iterable[Trait],
    sale: SaleRecord,
) -> list[str]:
    """Fan a sale out to each distinct trait bucket; return the touched keys."""
    touched: list[str] = []
    for trait in traits:
        key = trait.key
        if key in touched:
            continue
        stats = state.attributes.get(key)
        if stats is None:
            stats = AttributeStats(category=trait.trait_type, value=trait.value)
            state.attributes[key] = stats
        stats.sales.append(sale)
        stats.total_sales = len(stats.sales)
        touched.append(key)
    return touched
