"""Tests for statistics document consistency checks."""

from __future__ import annotations

import pytest

from sales_ingestion.models import PipelineState, SaleRecord, Trait
from sales_ingestion.stats import append_sale, recompute_all
from sales_ingestion.validation import (
    ValidationError,
    enforce_state_consistency,
    validate_state,
)


def _sale(price: float, day: str, trade_id: str | None, edition: int = 1) -> SaleRecord:
    return SaleRecord(
        nft_edition=edition,
        price_xch=price,
        price_usd=round(price * 5.25, 2),
        date=day,
        original_price=price,
        original_currency="XCH",
        trade_id=trade_id,
    )


def _state() -> PipelineState:
    state = PipelineState(generated_at="", xch_usd_rate=5.25)
    traits = [Trait("Background", "Forest"), Trait("Hat", "Crown")]
    append_sale(state, traits, _sale(1.0, "2024-01-01", "T1"))
    append_sale(state, traits, _sale(2.0, "2024-01-02", "T2", edition=2))
    recompute_all(state)
    return state


def _codes(state: PipelineState) -> set[str]:
    return {issue.code for issue in validate_state(state)}


def test_consistent_state_has_no_issues() -> None:
    assert validate_state(_state()) == []


def test_detects_aggregate_drift() -> None:
    state = _state()
    state.attributes["Hat|Crown"].avg_price = 9.0

    assert "aggregate_drift" in _codes(state)
    with pytest.raises(ValidationError):
        enforce_state_consistency(state)


def test_detects_total_sales_mismatch() -> None:
    state = _state()
    state.attributes["Hat|Crown"].total_sales = 5

    assert "total_sales_mismatch" in _codes(state)


def test_detects_bucket_key_mismatch() -> None:
    state = _state()
    state.attributes["Hat|Cap"] = state.attributes.pop("Hat|Crown")

    assert "bucket_key_mismatch" in _codes(state)


def test_detects_duplicate_trade_in_bucket() -> None:
    state = _state()
    bucket = state.attributes["Hat|Crown"]
    bucket.sales.append(bucket.sales[0])
    recompute_all(state)

    assert "duplicate_trade" in _codes(state)


def test_detects_trade_mapped_to_two_editions() -> None:
    state = _state()
    append_sale(state, [Trait("Mouth", "Smile")], _sale(3.0, "2024-01-03", "T1", edition=9))
    recompute_all(state)

    assert "conflicting_trade" in _codes(state)


def test_unsorted_sales_warn_and_fail_only_when_configured() -> None:
    state = _state()
    state.attributes["Hat|Crown"].sales.reverse()

    issues = enforce_state_consistency(state)
    assert [issue.code for issue in issues] == ["sales_not_sorted"]
    assert issues[0].severity == "warning"

    with pytest.raises(ValidationError):
        enforce_state_consistency(state, fail_on_warnings=True)


def test_backfilled_sales_without_trade_ids_pass() -> None:
    state = PipelineState(generated_at="", xch_usd_rate=5.25)
    append_sale(state, [Trait("Hat", "Crown")], _sale(1.0, "2024-01-01", None))
    append_sale(state, [Trait("Hat", "Crown")], _sale(1.0, "2024-01-01", None))
    recompute_all(state)

    assert validate_state(state) == []
