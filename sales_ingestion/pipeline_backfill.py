"""One-time bulk initialization of the statistics document from a CSV export."""

from __future__ import annotations

import csv
from collections import Counter
from dataclasses import dataclass
from datetime import UTC, date, datetime
from pathlib import Path

from sales_ingestion.currency import (
    CANONICAL_PLACES,
    FIAT_PLACES,
    CurrencyTable,
    round_price,
    to_fiat,
)
from sales_ingestion.logging import get_logger
from sales_ingestion.models import PipelineState, SaleRecord, Trait
from sales_ingestion.stats import append_sale, recompute_all
from sales_ingestion.store import load_state, store_lock, write_state_atomic
from sales_ingestion.utils_time import end_of_utc_day, format_utc
from sales_ingestion.validation import enforce_state_consistency

CSV_COLUMNS = (
    "Category",
    "Attribute",
    "Price",
    "Currency",
    "XCH value",
    "Dollar value",
    "NFT_Edition",
    "Trade_Date",
)


class BackfillError(RuntimeError):
    """Raised when the backfill input is unusable or the store already exists."""


@dataclass(frozen=True)
class SalesCsvRow:
    """One flattened attribute sale from the historical export."""

    category: str
    attribute: str
    price: float
    currency: str
    xch_value: float
    dollar_value: float
    nft_edition: int
    trade_date: date


@dataclass(frozen=True)
class BackfillResult:
    """Summary of one backfill run."""

    stats_path: str
    rows_read: int
    rows_applied: int
    rows_skipped: int
    skip_reasons: dict[str, int]
    total_attributes: int
    total_sales_records: int
    last_processed_date: str


def _to_float(value: str | None) -> float:
    if value is None or not value.strip():
        return 0.0
    try:
        return float(value)
    except ValueError:
        return 0.0


def read_sales_csv(path: str | Path) -> tuple[list[SalesCsvRow], Counter[str]]:
    """Parse the export; malformed rows are counted under `invalid_row`."""
    csv_path = Path(path)
    skipped: Counter[str] = Counter()
    rows: list[SalesCsvRow] = []

    try:
        with csv_path.open(encoding="utf-8-sig", newline="") as handle:
            reader = csv.reader(handle)
            header = next(reader, None)
            if header is None:
                raise BackfillError(f"backfill CSV {csv_path} is empty")
            columns = [name.strip() for name in header]
            missing = [name for name in CSV_COLUMNS if name not in columns]
            if missing:
                raise BackfillError(
                    f"backfill CSV {csv_path} missing columns: {', '.join(missing)}"
                )
            positions = {name: columns.index(name) for name in CSV_COLUMNS}
            min_width = max(positions.values()) + 1

            for raw in reader:
                if not any(cell.strip() for cell in raw):
                    continue
                if len(raw) < min_width:
                    skipped["invalid_row"] += 1
                    continue
                fields = {name: raw[index].strip() for name, index in positions.items()}
                try:
                    edition = int(fields["NFT_Edition"])
                    trade_date = date.fromisoformat(fields["Trade_Date"])
                except ValueError:
                    skipped["invalid_row"] += 1
                    continue
                if not fields["Category"] or not fields["Attribute"]:
                    skipped["invalid_row"] += 1
                    continue
                rows.append(
                    SalesCsvRow(
                        category=fields["Category"],
                        attribute=fields["Attribute"],
                        price=_to_float(fields["Price"]),
                        currency=fields["Currency"],
                        xch_value=_to_float(fields["XCH value"]),
                        dollar_value=_to_float(fields["Dollar value"]),
                        nft_edition=edition,
                        trade_date=trade_date,
                    )
                )
    except OSError as exc:
        raise BackfillError(f"cannot read backfill CSV {csv_path}: {exc}") from exc

    return rows, skipped


def row_to_sale(
    row: SalesCsvRow,
    *,
    currency_table: CurrencyTable,
    fiat_rate: float,
) -> SaleRecord | None:
    """Build a sale from a CSV row, filling missing XCH/USD values."""
    xch_value = row.xch_value
    if xch_value == 0 and row.price > 0:
        converted = currency_table.to_canonical(row.price, row.currency)
        if converted is None:
            return None
        xch_value = converted

    dollar_value = row.dollar_value
    if dollar_value == 0 and xch_value > 0:
        dollar_value = to_fiat(xch_value, fiat_rate)

    return SaleRecord(
        nft_edition=row.nft_edition,
        price_xch=round_price(xch_value, CANONICAL_PLACES),
        price_usd=round_price(dollar_value, FIAT_PLACES),
        date=row.trade_date.isoformat(),
        original_price=row.price,
        original_currency=row.currency,
    )


def build_state_from_rows(
    rows: list[SalesCsvRow],
    *,
    currency_table: CurrencyTable,
    fiat_rate: float,
) -> tuple[PipelineState, Counter[str]]:
    """Group rows into attribute buckets and compute every aggregate."""
    skipped: Counter[str] = Counter()
    state = PipelineState(generated_at="", xch_usd_rate=fiat_rate)
    latest: date | None = None

    for row in rows:
        sale = row_to_sale(row, currency_table=currency_table, fiat_rate=fiat_rate)
        if sale is None:
            skipped["unknown_currency"] += 1
            continue
        append_sale(state, [Trait(trait_type=row.category, value=row.attribute)], sale)
        if latest is None or row.trade_date > latest:
            latest = row.trade_date

    recompute_all(state)
    if latest is not None:
        state.last_processed_date = end_of_utc_day(latest)
    return state, skipped


def run_backfill(
    *,
    csv_path: str,
    stats_path: str,
    currency_table: CurrencyTable,
    fiat_rate: float,
    force: bool = False,
    lock_timeout_seconds: float = 10.0,
    now: datetime | None = None,
) -> BackfillResult:
    """Build a fresh statistics document from the historical CSV and persist it."""
    logger = get_logger()

    with store_lock(stats_path, timeout=lock_timeout_seconds):
        if not force and load_state(stats_path) is not None:
            raise BackfillError(
                f"statistics document {stats_path} already exists; use --force to rebuild"
            )

        logger.info("reading backfill CSV %s", csv_path)
        rows, skipped = read_sales_csv(csv_path)
        logger.info("parsed %s rows", len(rows))

        state, build_skipped = build_state_from_rows(
            rows,
            currency_table=currency_table,
            fiat_rate=fiat_rate,
        )
        skipped.update(build_skipped)
        if not state.attributes:
            raise BackfillError(f"backfill CSV {csv_path} has no usable rows")

        enforce_state_consistency(state)
        write_state_atomic(stats_path, state, now=now or datetime.now(UTC))

    rows_skipped = sum(skipped.values())
    last_processed = (
        format_utc(state.last_processed_date) if state.last_processed_date else ""
    )
    logger.info(
        "backfill wrote %s attributes and %s sales records to %s (skipped %s rows)",
        state.total_attributes,
        state.total_sales_records,
        stats_path,
        rows_skipped,
    )
    return BackfillResult(
        stats_path=stats_path,
        rows_read=len(rows) + skipped["invalid_row"],
        rows_applied=state.total_sales_records,
        rows_skipped=rows_skipped,
        skip_reasons=dict(skipped),
        total_attributes=state.total_attributes,
        total_sales_records=state.total_sales_records,
        last_processed_date=last_processed,
    )
