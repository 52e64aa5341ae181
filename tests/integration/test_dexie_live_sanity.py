"""Opt-in live sanity checks against the Dexie offers API.

These tests hit the network and only run when explicitly selected.
Run with: `pytest -m integration tests/integration/test_dexie_live_sanity.py`
"""

from __future__ import annotations

import os
from datetime import UTC, datetime, timedelta

import pytest
from dotenv import load_dotenv

from sales_ingestion.config import DEFAULT_COLLECTION_ID, DEXIE_API_BASE_URL
from sales_ingestion.sources.dexie import (
    DexieAPIError,
    UrllibDexieClient,
    fetch_completed_offers,
    parse_offers,
)

load_dotenv()


def _collection_id() -> str:
    return os.getenv("DEXIE_COLLECTION_ID", "").strip() or DEFAULT_COLLECTION_ID


def _client() -> UrllibDexieClient:
    base_url = os.getenv("DEXIE_API_BASE_URL", "").strip() or DEXIE_API_BASE_URL
    return UrllibDexieClient(base_url=base_url, timeout_seconds=30)


@pytest.mark.integration
def test_dexie_offers_page_parses() -> None:
    try:
        payload = _client().get_json(
            "offers",
            {
                "offered_or_requested": _collection_id(),
                "status": "4",
                "page": "1",
                "page_size": "5",
                "sort": "date_completed",
                "order": "desc",
            },
        )
    except DexieAPIError as exc:
        pytest.skip(f"Dexie unavailable: {exc}")

    offers = parse_offers(payload)
    assert len(offers) <= 5
    for offer in offers:
        assert offer.status == 4
        assert offer.date_completed.tzinfo is not None


@pytest.mark.integration
def test_dexie_recent_trades_are_newer_than_cursor() -> None:
    since = datetime.now(UTC) - timedelta(days=7)
    try:
        offers = fetch_completed_offers(
            _client(),
            collection_id=_collection_id(),
            since=since,
            page_size=20,
            page_delay_seconds=0.5,
        )
    except DexieAPIError as exc:
        pytest.skip(f"Dexie unavailable: {exc}")

    assert all(offer.date_completed > since for offer in offers)
