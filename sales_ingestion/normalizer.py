"""Turn resolved trades into canonical sale records."""

from __future__ import annotations

from dataclasses import dataclass

from sales_ingestion.currency import CANONICAL_PLACES, CurrencyTable, round_price, to_fiat
from sales_ingestion.models import SaleRecord
from sales_ingestion.resolver import ResolvedTrade, TradeSkipped
from sales_ingestion.utils_time import utc_day


@dataclass(frozen=True)
class SaleNormalizer:
    """Values a resolved trade in canonical and fiat units."""

    currency_table: CurrencyTable
    fiat_rate: float

    def normalize(self, trade: ResolvedTrade) -> SaleRecord:
        canonical = self.currency_table.to_canonical(trade.amount, trade.currency_code)
        if canonical is None:
            if trade.amount > 0:
                raise TradeSkipped(
                    "unknown_currency",
                    f"unknown currency {trade.currency_code} for offer {trade.trade_id}",
                )
            canonical = 0.0

        return SaleRecord(
            nft_edition=trade.edition,
            price_xch=round_price(canonical, CANONICAL_PLACES),
            price_usd=to_fiat(canonical, self.fiat_rate),
            date=utc_day(trade.completed_at),
            original_price=trade.amount,
            original_currency=trade.currency_code,
            trade_id=trade.trade_id,
        )
