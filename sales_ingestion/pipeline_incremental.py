"""Incremental merge of newly completed marketplace trades into the statistics store.

One run moves through these stages::

    LOAD_STATE -> DETERMINE_WATERMARK -> FETCH_NEW_TRADES -> (none: EXIT)
    -> DEDUP_AND_RESOLVE -> NORMALIZE_AND_APPEND -> RECOMPUTE_AGGREGATES
    -> VALIDATE -> PERSIST -> EXIT

The loaded state is mutated in memory only; PERSIST is the single write point,
so any failure before it leaves the document on disk untouched.
"""

from __future__ import annotations

import time
from collections import Counter
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sales_ingestion.logging import get_logger
from sales_ingestion.models import NFTMetadata, PipelineState, TradeOffer
from sales_ingestion.normalizer import SaleNormalizer
from sales_ingestion.resolver import CollectionMatcher, TradeSkipped, resolve_trade
from sales_ingestion.sources.dexie import DexieClientProtocol, fetch_completed_offers
from sales_ingestion.stats import append_sale, collect_trade_ids, recompute_all
from sales_ingestion.store import (
    StoreError,
    load_state,
    store_lock,
    write_state_atomic,
)
from sales_ingestion.utils_time import format_utc
from sales_ingestion.validation import enforce_state_consistency

DEFAULT_LOOKBACK_DAYS = 30


@dataclass(frozen=True)
class IncrementalRunResult:
    """Summary of one incremental update run."""

    trades_fetched: int
    sales_applied: int
    duplicates: int
    skipped: int
    skip_reasons: dict[str, int]
    touched_attributes: int
    total_attributes: int
    total_sales_records: int
    watermark_before: str
    watermark_after: str
    persisted: bool


@dataclass(frozen=True)
class MergeOutcome:
    """In-memory effect of folding a batch of offers into a state."""

    applied: int
    duplicates: int
    skip_reasons: dict[str, int]
    touched_keys: frozenset[str]
    watermark: datetime


def determine_watermark(
    state: PipelineState,
    *,
    now: datetime,
    lookback_days: int = DEFAULT_LOOKBACK_DAYS,
) -> datetime:
    """Pick the fetch cursor: persisted date, legacy timestamp, or a lookback."""
    if state.last_processed_date is not None:
        return state.last_processed_date
    if state.last_processed_timestamp is not None:
        return datetime.fromtimestamp(state.last_processed_timestamp, tz=UTC)
    return now - timedelta(days=lookback_days)


def merge_offers(
    state: PipelineState,
    offers: list[TradeOffer],
    *,
    watermark: datetime,
    matcher: CollectionMatcher,
    metadata_index: Mapping[int, NFTMetadata],
    normalizer: SaleNormalizer,
) -> MergeOutcome:
    """Dedup, resolve, normalize, and fan out new sales into `state` in place."""
    logger = get_logger()
    known_trade_ids = collect_trade_ids(state)
    skip_reasons: Counter[str] = Counter()
    touched: set[str] = set()
    applied = 0
    duplicates = 0
    latest = watermark

    for offer in offers:
        if offer.id in known_trade_ids:
            duplicates += 1
            continue

        try:
            resolved = resolve_trade(
                offer,
                matcher=matcher,
                metadata_index=metadata_index,
                canonical_code=normalizer.currency_table.canonical_code,
            )
            sale = normalizer.normalize(resolved)
        except TradeSkipped as skip:
            skip_reasons[skip.reason] += 1
            if skip.message:
                logger.warning("%s", skip.message)
            continue

        logger.info(
            "  #%s: %s %s = %s XCH (%s)",
            resolved.edition,
            resolved.amount,
            resolved.currency_code,
            sale.price_xch,
            resolved.nft_name,
        )
        touched.update(append_sale(state, resolved.traits, sale))
        known_trade_ids.add(offer.id)
        applied += 1
        if offer.date_completed > latest:
            latest = offer.date_completed

    return MergeOutcome(
        applied=applied,
        duplicates=duplicates,
        skip_reasons=dict(skip_reasons),
        touched_keys=frozenset(touched),
        watermark=latest,
    )


def run_incremental_update(
    *,
    stats_path: str,
    client: DexieClientProtocol,
    collection_id: str,
    matcher: CollectionMatcher,
    metadata_loader: Callable[[], Mapping[int, NFTMetadata]],
    normalizer: SaleNormalizer,
    page_size: int = 100,
    page_delay_seconds: float = 0.5,
    lookback_days: int = DEFAULT_LOOKBACK_DAYS,
    lock_timeout_seconds: float = 10.0,
    sleep: Callable[[float], None] = time.sleep,
    now: datetime | None = None,
) -> IncrementalRunResult:
    """Fetch trades newer than the watermark and fold them into the store."""
    logger = get_logger()
    run_time = now or datetime.now(UTC)

    with store_lock(stats_path, timeout=lock_timeout_seconds):
        logger.info("loading existing attribute stats from %s", stats_path)
        state = load_state(stats_path)
        if state is None:
            raise StoreError(
                f"statistics document {stats_path} not found; run backfill first"
            )

        logger.info("loading NFT metadata")
        metadata_index = metadata_loader()

        watermark = determine_watermark(
            state, now=run_time, lookback_days=lookback_days
        )
        offers = fetch_completed_offers(
            client,
            collection_id=collection_id,
            since=watermark,
            page_size=page_size,
            page_delay_seconds=page_delay_seconds,
            sleep=sleep,
        )

        if not offers:
            logger.info("no new trades found; store unchanged")
            result = _result(
                state, offers, None, watermark, watermark, persisted=False
            )
            log_run_summary(result)
            return result

        outcome = merge_offers(
            state,
            offers,
            watermark=watermark,
            matcher=matcher,
            metadata_index=metadata_index,
            normalizer=normalizer,
        )
        logger.info(
            "processed %s new sales (skipped %s, duplicates %s)",
            outcome.applied,
            sum(outcome.skip_reasons.values()),
            outcome.duplicates,
        )

        if outcome.applied == 0:
            logger.info("no new collection sales after filtering; store unchanged")
            result = _result(
                state, offers, outcome, watermark, watermark, persisted=False
            )
            log_run_summary(result)
            return result

        logger.info(
            "recalculating statistics (%s attributes touched)",
            len(outcome.touched_keys),
        )
        recompute_all(state)

        state.last_processed_date = outcome.watermark
        state.last_processed_timestamp = None
        state.xch_usd_rate = normalizer.fiat_rate

        enforce_state_consistency(state)
        write_state_atomic(stats_path, state, now=run_time)

    result = _result(
        state, offers, outcome, watermark, outcome.watermark, persisted=True
    )
    log_run_summary(result)
    return result


def _result(
    state: PipelineState,
    offers: list[TradeOffer],
    outcome: MergeOutcome | None,
    watermark_before: datetime,
    watermark_after: datetime,
    *,
    persisted: bool,
) -> IncrementalRunResult:
    skip_reasons = dict(outcome.skip_reasons) if outcome else {}
    return IncrementalRunResult(
        trades_fetched=len(offers),
        sales_applied=outcome.applied if outcome else 0,
        duplicates=outcome.duplicates if outcome else 0,
        skipped=sum(skip_reasons.values()),
        skip_reasons=skip_reasons,
        touched_attributes=len(outcome.touched_keys) if outcome else 0,
        total_attributes=state.total_attributes,
        total_sales_records=state.total_sales_records,
        watermark_before=format_utc(watermark_before),
        watermark_after=format_utc(watermark_after),
        persisted=persisted,
    )


def log_run_summary(result: IncrementalRunResult) -> None:
    logger = get_logger()
    logger.info("=== update summary ===")
    logger.info("trades fetched: %s", result.trades_fetched)
    logger.info("new sales processed: %s", result.sales_applied)
    logger.info("duplicates skipped: %s", result.duplicates)
    logger.info("skipped: %s %s", result.skipped, result.skip_reasons)
    logger.info("total attributes: %s", result.total_attributes)
    logger.info("total sales records: %s", result.total_sales_records)
    logger.info(
        "last processed: %s -> %s", result.watermark_before, result.watermark_after
    )
