"""Tests for the CSV backfill pipeline."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest

from sales_ingestion.currency import CurrencyTable
from sales_ingestion.pipeline_backfill import (
    BackfillError,
    BackfillResult,
    SalesCsvRow,
    read_sales_csv,
    row_to_sale,
    run_backfill,
)

HEADER = "Category,Attribute,Price,Currency,XCH value,Dollar value,NFT_Edition,Trade_Date"
TABLE = CurrencyTable(canonical_code="XCH", rates={"HOA": 0.0003176})
NOW = datetime(2024, 6, 10, 8, 0, tzinfo=UTC)


def _write_csv(path: Path, lines: list[str]) -> Path:
    path.write_text("\n".join([HEADER, *lines]) + "\n", encoding="utf-8")
    return path


def _run(tmp_path: Path, csv_path: Path, **kwargs: Any) -> BackfillResult:
    return run_backfill(
        csv_path=str(csv_path),
        stats_path=str(tmp_path / "attribute_stats.json"),
        currency_table=TABLE,
        fiat_rate=5.25,
        now=NOW,
        **kwargs,
    )


def test_backfill_builds_bucket_aggregates(tmp_path: Path) -> None:
    csv_path = _write_csv(
        tmp_path / "sales.csv",
        [
            "Background,Forest,1,XCH,1,5.25,10,2024-01-01",
            "Background,Forest,2,XCH,2,10.5,11,2024-01-03",
            "Background,Forest,3,XCH,3,15.75,12,2024-01-02",
            "Hat,Crown,2,XCH,2,10.5,11,2024-01-03",
        ],
    )

    result = _run(tmp_path, csv_path)

    document = json.loads((tmp_path / "attribute_stats.json").read_text(encoding="utf-8"))
    forest = document["attributes"]["Background|Forest"]
    assert forest["totalSales"] == 3
    assert forest["minPrice"] == 1.0
    assert forest["maxPrice"] == 3.0
    assert forest["avgPrice"] == 2.0
    assert forest["lastSaleDate"] == "2024-01-03"
    assert forest["lastSalePrice"] == 2.0
    assert [sale["date"] for sale in forest["sales"]] == [
        "2024-01-03",
        "2024-01-02",
        "2024-01-01",
    ]
    assert "tradeId" not in forest["sales"][0]
    assert document["totalAttributes"] == 2
    assert document["totalSalesRecords"] == 4
    assert document["generatedAt"] == "2024-06-10T08:00:00Z"
    assert document["lastProcessedDate"] == "2024-01-03T23:59:59.999999Z"

    assert result.rows_read == 4
    assert result.rows_applied == 4
    assert result.rows_skipped == 0


def test_backfill_fills_missing_values_and_skips_unknown(tmp_path: Path) -> None:
    csv_path = _write_csv(
        tmp_path / "sales.csv",
        [
            "Hat,Crown,10000,HOA,0,0,1,2024-01-01",
            "Hat,Crown,5,BEPE,0,0,2,2024-01-02",
            "Hat,Crown,oops,XCH,1,5.25,not-a-number,2024-01-02",
            "",
        ],
    )

    result = _run(tmp_path, csv_path)

    document = json.loads((tmp_path / "attribute_stats.json").read_text(encoding="utf-8"))
    sales = document["attributes"]["Hat|Crown"]["sales"]
    assert len(sales) == 1
    assert sales[0]["priceXCH"] == 3.176
    assert sales[0]["priceUSD"] == 16.67
    assert sales[0]["originalCurrency"] == "HOA"
    assert result.skip_reasons == {"invalid_row": 1, "unknown_currency": 1}
    assert result.rows_read == 3


def test_backfill_refuses_to_overwrite_without_force(tmp_path: Path) -> None:
    csv_path = _write_csv(tmp_path / "sales.csv", ["Hat,Crown,1,XCH,1,5.25,1,2024-01-01"])
    _run(tmp_path, csv_path)
    stats_path = tmp_path / "attribute_stats.json"
    before = stats_path.read_text(encoding="utf-8")

    with pytest.raises(BackfillError, match="already exists"):
        _run(tmp_path, csv_path)
    assert stats_path.read_text(encoding="utf-8") == before

    _write_csv(csv_path, ["Hat,Cap,1,XCH,1,5.25,1,2024-01-05"])
    _run(tmp_path, csv_path, force=True)
    document = json.loads(stats_path.read_text(encoding="utf-8"))
    assert list(document["attributes"]) == ["Hat|Cap"]


def test_backfill_rejects_unusable_csv(tmp_path: Path) -> None:
    missing_column = tmp_path / "missing.csv"
    missing_column.write_text("Category,Attribute,Price\nHat,Crown,1\n", encoding="utf-8")
    with pytest.raises(BackfillError, match="missing columns"):
        read_sales_csv(missing_column)

    header_only = _write_csv(tmp_path / "header.csv", [])
    with pytest.raises(BackfillError, match="no usable rows"):
        _run(tmp_path, header_only)
    assert not (tmp_path / "attribute_stats.json").exists()


def test_row_to_sale_keeps_existing_values() -> None:
    row = SalesCsvRow(
        category="Hat",
        attribute="Crown",
        price=2.0,
        currency="XCH",
        xch_value=2.0,
        dollar_value=11.0,
        nft_edition=4,
        trade_date=datetime(2024, 1, 1).date(),
    )

    sale = row_to_sale(row, currency_table=TABLE, fiat_rate=5.25)

    assert sale is not None
    assert sale.price_xch == 2.0
    assert sale.price_usd == 11.0
    assert sale.trade_id is None


def test_backfill_accepts_rows_missing_trailing_extra_columns(tmp_path: Path) -> None:
    csv_path = tmp_path / "sales.csv"
    csv_path.write_text(
        "\n".join(
            [
                f"{HEADER},Notes",
                "Hat,Crown,1,XCH,1,5.25,1,2024-01-01,listed twice",
                "Hat,Crown,2,XCH,2,10.5,2,2024-01-02",
                "Hat,Crown,3,XCH,3",
            ]
        )
        + "\n",
        encoding="utf-8",
    )

    rows, skipped = read_sales_csv(csv_path)

    assert [row.nft_edition for row in rows] == [1, 2]
    assert skipped == {"invalid_row": 1}
