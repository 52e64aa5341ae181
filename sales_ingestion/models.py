"""Typed records for marketplace offers, metadata, and attribute statistics."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

from sales_ingestion.utils_time import format_utc, parse_utc_datetime


@dataclass(frozen=True)
class CollectionRef:
    """Collection reference attached to an NFT item."""

    id: str
    name: str


@dataclass(frozen=True)
class NFTItem:
    """One NFT on either side of an offer."""

    id: str
    name: str
    collection: CollectionRef | None = None
    kind: Literal["nft"] = "nft"


@dataclass(frozen=True)
class CurrencyItem:
    """One fungible payment (XCH or a CAT token) on either side of an offer."""

    id: str
    code: str
    name: str
    amount: float
    kind: Literal["currency"] = "currency"


@dataclass(frozen=True)
class OtherItem:
    """Item shape the pipeline does not interpret."""

    raw: dict[str, Any]
    kind: Literal["other"] = "other"


OfferItem = NFTItem | CurrencyItem | OtherItem


def parse_offer_item(raw: dict[str, Any]) -> OfferItem:
    """Classify a raw Dexie item dict into the tagged item union."""
    if raw.get("is_nft") is True:
        collection_raw = raw.get("collection")
        collection = None
        if isinstance(collection_raw, dict):
            collection = CollectionRef(
                id=str(collection_raw.get("id") or ""),
                name=str(collection_raw.get("name") or ""),
            )
        return NFTItem(
            id=str(raw.get("id") or ""),
            name=str(raw.get("name") or ""),
            collection=collection,
        )

    if "amount" in raw and raw["amount"] is not None:
        return CurrencyItem(
            id=str(raw.get("id") or ""),
            code=str(raw.get("code") or ""),
            name=str(raw.get("name") or ""),
            amount=float(raw["amount"]),
        )

    return OtherItem(raw=dict(raw))


@dataclass(frozen=True)
class TradeOffer:
    """Completed trade offer as received from the marketplace."""

    id: str
    status: int
    date_completed: datetime
    offered: tuple[OfferItem, ...]
    requested: tuple[OfferItem, ...]

    @classmethod
    def from_record(cls, raw: dict[str, Any]) -> TradeOffer:
        """Build an offer from a decoded API record."""
        return cls(
            id=str(raw["id"]),
            status=int(raw.get("status", 0)),
            date_completed=parse_utc_datetime(raw["date_completed"]),
            offered=tuple(parse_offer_item(item) for item in raw.get("offered") or []),
            requested=tuple(
                parse_offer_item(item) for item in raw.get("requested") or []
            ),
        )


@dataclass(frozen=True)
class Trait:
    """One `trait_type`/`value` pair from NFT metadata."""

    trait_type: str
    value: str

    @property
    def key(self) -> str:
        return attribute_key(self.trait_type, self.value)


@dataclass(frozen=True)
class NFTMetadata:
    """Published metadata for one collection member."""

    edition: int
    attributes: tuple[Trait, ...]


def attribute_key(category: str, value: str) -> str:
    """Return the `category|value` bucket key."""
    return f"{category}|{value}"


@dataclass(frozen=True)
class SaleRecord:
    """Canonical sale observation shared by every trait bucket of one NFT."""

    nft_edition: int
    price_xch: float
    price_usd: float
    date: str
    original_price: float
    original_currency: str
    trade_id: str | None = None

    def to_record(self) -> dict[str, object]:
        """Convert the sale into its persisted JSON shape."""
        record: dict[str, object] = {
            "nftEdition": self.nft_edition,
            "priceXCH": self.price_xch,
            "priceUSD": self.price_usd,
            "date": self.date,
            "originalPrice": self.original_price,
            "originalCurrency": self.original_currency,
        }
        if self.trade_id is not None:
            record["tradeId"] = self.trade_id
        return record

    @classmethod
    def from_record(cls, raw: dict[str, Any]) -> SaleRecord:
        trade_id = raw.get("tradeId")
        return cls(
            nft_edition=int(raw["nftEdition"]),
            price_xch=float(raw["priceXCH"]),
            price_usd=float(raw["priceUSD"]),
            date=str(raw["date"]),
            original_price=float(raw["originalPrice"]),
            original_currency=str(raw["originalCurrency"]),
            trade_id=str(trade_id) if trade_id else None,
        )


@dataclass
class AttributeStats:
    """Sales bucket and cached aggregates for one attribute key."""

    category: str
    value: str
    min_price: float = 0.0
    max_price: float = 0.0
    avg_price: float = 0.0
    total_sales: int = 0
    last_sale_date: str = ""
    last_sale_price: float = 0.0
    sales: list[SaleRecord] = field(default_factory=list)

    @property
    def key(self) -> str:
        return attribute_key(self.category, self.value)

    def to_record(self) -> dict[str, object]:
        return {
            "category": self.category,
            "value": self.value,
            "minPrice": self.min_price,
            "maxPrice": self.max_price,
            "avgPrice": self.avg_price,
            "totalSales": self.total_sales,
            "lastSaleDate": self.last_sale_date,
            "lastSalePrice": self.last_sale_price,
            "sales": [sale.to_record() for sale in self.sales],
        }

    @classmethod
    def from_record(cls, raw: dict[str, Any]) -> AttributeStats:
        return cls(
            category=str(raw["category"]),
            value=str(raw["value"]),
            min_price=float(raw.get("minPrice", 0.0)),
            max_price=float(raw.get("maxPrice", 0.0)),
            avg_price=float(raw.get("avgPrice", 0.0)),
            total_sales=int(raw.get("totalSales", 0)),
            last_sale_date=str(raw.get("lastSaleDate", "")),
            last_sale_price=float(raw.get("lastSalePrice", 0.0)),
            sales=[SaleRecord.from_record(sale) for sale in raw.get("sales") or []],
        )


OUTLIER_NOTE = (
    "Currently using simple average. If outliers become an issue, "
    "supply a price filter to exclude values beyond 2 standard deviations."
)


@dataclass
class PipelineState:
    """Top-level persisted statistics document."""

    generated_at: str
    xch_usd_rate: float
    attributes: dict[str, AttributeStats] = field(default_factory=dict)
    last_processed_date: datetime | None = None
    last_processed_timestamp: int | None = None
    outlier_note: str = OUTLIER_NOTE

    @property
    def total_attributes(self) -> int:
        return len(self.attributes)

    @property
    def total_sales_records(self) -> int:
        return sum(stats.total_sales for stats in self.attributes.values())

    def to_document(self) -> dict[str, object]:
        """Serialize to the JSON document read by downstream consumers."""
        document: dict[str, object] = {
            "generatedAt": self.generated_at,
            "totalAttributes": self.total_attributes,
            "totalSalesRecords": self.total_sales_records,
            "xchUsdRate": self.xch_usd_rate,
            "outlierNote": self.outlier_note,
        }
        if self.last_processed_date is not None:
            document["lastProcessedDate"] = format_utc(self.last_processed_date)
        if self.last_processed_timestamp is not None:
            document["lastProcessedTimestamp"] = self.last_processed_timestamp
        document["attributes"] = {
            key: stats.to_record() for key, stats in self.attributes.items()
        }
        return document

    @classmethod
    def from_document(cls, raw: dict[str, Any]) -> PipelineState:
        last_date = raw.get("lastProcessedDate")
        last_ts = raw.get("lastProcessedTimestamp")
        attributes_raw = raw.get("attributes") or {}
        if not isinstance(attributes_raw, dict):
            raise ValueError("attributes must be an object keyed by category|value")
        return cls(
            generated_at=str(raw.get("generatedAt", "")),
            xch_usd_rate=float(raw.get("xchUsdRate", 0.0)),
            attributes={
                str(key): AttributeStats.from_record(value)
                for key, value in attributes_raw.items()
            },
            last_processed_date=parse_utc_datetime(last_date) if last_date else None,
            last_processed_timestamp=int(last_ts) if last_ts is not None else None,
            outlier_note=str(raw.get("outlierNote", OUTLIER_NOTE)),
        )
