"""Tests for attribute bucket maintenance and aggregates."""

from __future__ import annotations

from sales_ingestion.models import AttributeStats, PipelineState, SaleRecord, Trait
from sales_ingestion.stats import (
    EMPTY_AGGREGATES,
    append_sale,
    collect_trade_ids,
    compute_aggregates,
    recompute_bucket,
    sort_sales_newest_first,
)


def _sale(
    price: float,
    day: str,
    *,
    edition: int = 1,
    trade_id: str | None = None,
) -> SaleRecord:
    return SaleRecord(
        nft_edition=edition,
        price_xch=price,
        price_usd=round(price * 5.25, 2),
        date=day,
        original_price=price,
        original_currency="XCH",
        trade_id=trade_id,
    )


def test_compute_aggregates_over_full_history() -> None:
    sales = [
        _sale(1.0, "2024-01-01"),
        _sale(3.0, "2024-01-03"),
        _sale(2.0, "2024-01-02"),
    ]

    aggregates = compute_aggregates(sales)

    assert aggregates.min_price == 1.0
    assert aggregates.max_price == 3.0
    assert aggregates.avg_price == 2.0
    assert aggregates.last_sale_date == "2024-01-03"
    assert aggregates.last_sale_price == 3.0


def test_compute_aggregates_rounds_average() -> None:
    aggregates = compute_aggregates(
        [_sale(1.0, "2024-01-01"), _sale(1.0, "2024-01-01"), _sale(2.0, "2024-01-01")]
    )
    assert aggregates.avg_price == 1.3333


def test_compute_aggregates_empty_bucket() -> None:
    assert compute_aggregates([]) == EMPTY_AGGREGATES


def test_price_filter_limits_pricing_but_not_last_sale() -> None:
    sales = [_sale(100.0, "2024-01-05"), _sale(1.0, "2024-01-01"), _sale(3.0, "2024-01-02")]

    aggregates = compute_aggregates(
        sales,
        price_filter=lambda rows: [row for row in rows if row.price_xch < 50],
    )

    assert aggregates.max_price == 3.0
    assert aggregates.avg_price == 2.0
    assert aggregates.last_sale_price == 100.0


def test_same_day_sales_keep_ingestion_order() -> None:
    first = _sale(1.0, "2024-01-02", trade_id="A")
    second = _sale(2.0, "2024-01-02", trade_id="B")
    older = _sale(3.0, "2024-01-01", trade_id="C")

    ordered = sort_sales_newest_first([older, first, second])

    assert [sale.trade_id for sale in ordered] == ["A", "B", "C"]
    assert compute_aggregates([older, first, second]).last_sale_price == 1.0


def test_append_sale_fans_out_to_every_trait() -> None:
    state = PipelineState(generated_at="", xch_usd_rate=5.25)
    state.attributes["Background|Forest"] = AttributeStats(
        category="Background",
        value="Forest",
        sales=[_sale(1.0, "2024-01-01", trade_id="OLD")],
        total_sales=1,
    )
    sale = _sale(2.0, "2024-01-02", edition=7, trade_id="T1")

    touched = append_sale(
        state,
        [Trait("Background", "Forest"), Trait("Hat", "Crown")],
        sale,
    )

    assert touched == ["Background|Forest", "Hat|Crown"]
    assert state.attributes["Background|Forest"].total_sales == 2
    assert state.attributes["Hat|Crown"].sales == [sale]
    assert state.attributes["Hat|Crown"].category == "Hat"
    assert state.total_sales_records == 3
    assert collect_trade_ids(state) == {"OLD", "T1"}


def test_recompute_bucket_sorts_and_refreshes() -> None:
    stats = AttributeStats(
        category="Hat",
        value="Crown",
        sales=[_sale(1.0, "2024-01-01"), _sale(4.0, "2024-02-01")],
    )

    recompute_bucket(stats)

    assert [sale.date for sale in stats.sales] == ["2024-02-01", "2024-01-01"]
    assert stats.total_sales == 2
    assert stats.avg_price == 2.5
    assert stats.last_sale_date == "2024-02-01"
    assert stats.last_sale_price == 4.0


def test_append_sale_ignores_repeated_traits() -> None:
    state = PipelineState(generated_at="", xch_usd_rate=5.25)
    sale = _sale(2.0, "2024-01-02", edition=7, trade_id="T1")

    touched = append_sale(
        state,
        [Trait("Hat", "Crown"), Trait("Hat", "Crown"), Trait("Mouth", "Smile")],
        sale,
    )

    assert touched == ["Hat|Crown", "Mouth|Smile"]
    assert state.attributes["Hat|Crown"].sales == [sale]
    assert state.total_sales_records == 2
