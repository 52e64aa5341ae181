"""Resolve a raw trade offer into an NFT edition, its traits, and a payment."""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime

from sales_ingestion.models import (
    CurrencyItem,
    NFTItem,
    NFTMetadata,
    TradeOffer,
    Trait,
)

EDITION_PATTERN = re.compile(r"#0*(\d+)")


class TradeSkipped(Exception):
    """Raised for a trade that cannot be turned into a sale record."""

    def __init__(self, reason: str, message: str | None = None) -> None:
        super().__init__(message or reason)
        self.reason = reason
        self.message = message


@dataclass(frozen=True)
class TradeSides:
    """The NFT and payment items of one offer."""

    nft: NFTItem
    payment: CurrencyItem | None


@dataclass(frozen=True)
class ResolvedTrade:
    """A trade mapped to a collection edition and a payment amount."""

    trade_id: str
    edition: int
    traits: tuple[Trait, ...]
    amount: float
    currency_code: str
    completed_at: datetime
    nft_name: str


@dataclass(frozen=True)
class CollectionMatcher:
    """Decides whether an NFT item belongs to the tracked collection."""

    collection_id: str
    name_aliases: tuple[str, ...] = ()

    def matches(self, nft: NFTItem) -> bool:
        if nft.collection is None:
            return False
        if self.collection_id and nft.collection.id == self.collection_id:
            return True
        name = nft.collection.name.casefold()
        return any(alias.casefold() in name for alias in self.name_aliases if alias)


def _first_nft(items: Iterable[object]) -> NFTItem | None:
    for item in items:
        if isinstance(item, NFTItem):
            return item
    return None


def _first_currency(items: Iterable[object]) -> CurrencyItem | None:
    for item in items:
        if isinstance(item, CurrencyItem):
            return item
    return None


def match_trade_sides(offer: TradeOffer) -> TradeSides | None:
    """Find the NFT and the payment on the opposite side of the offer."""
    nft = _first_nft((*offer.offered, *offer.requested))
    if nft is None:
        return None

    nft_in_offered = any(isinstance(item, NFTItem) for item in offer.offered)
    payment_side = offer.requested if nft_in_offered else offer.offered
    return TradeSides(nft=nft, payment=_first_currency(payment_side))


def extract_edition(name: str) -> int | None:
    """Parse the edition number from a display name like `Wojak #0123`."""
    match = EDITION_PATTERN.search(name)
    if match is None:
        return None
    edition = int(match.group(1))
    return edition if edition >= 1 else None


def resolve_trade(
    offer: TradeOffer,
    *,
    matcher: CollectionMatcher,
    metadata_index: Mapping[int, NFTMetadata],
    canonical_code: str = "XCH",
) -> ResolvedTrade:
    """Resolve an offer or raise TradeSkipped with a reason code."""
    sides = match_trade_sides(offer)
    if sides is None:
        raise TradeSkipped("no_nft")

    if not matcher.matches(sides.nft):
        raise TradeSkipped("foreign_collection")

    edition = extract_edition(sides.nft.name)
    if edition is None:
        raise TradeSkipped(
            "unparseable_edition",
            f"could not extract edition from name: {sides.nft.name}",
        )

    metadata = metadata_index.get(edition)
    if metadata is None:
        raise TradeSkipped("missing_metadata", f"no metadata found for edition {edition}")

    if sides.payment is None:
        raise TradeSkipped("no_payment", f"could not extract price from offer {offer.id}")

    return ResolvedTrade(
        trade_id=offer.id,
        edition=edition,
        traits=metadata.attributes,
        amount=sides.payment.amount,
        currency_code=sides.payment.code or canonical_code,
        completed_at=offer.date_completed,
        nft_name=sides.nft.name,
    )
