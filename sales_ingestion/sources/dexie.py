"""Dexie marketplace offer ingestion."""

from __future__ import annotations

import json
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from urllib import error, parse, request

from sales_ingestion.config import DEXIE_API_BASE_URL
from sales_ingestion.logging import get_logger
from sales_ingestion.models import TradeOffer
from sales_ingestion.utils_time import format_utc, to_utc

COMPLETED_STATUS = 4
DEFAULT_PAGE_SIZE = 100
DEFAULT_PAGE_DELAY_SECONDS = 0.5


class DexieAPIError(RuntimeError):
    """Raised when Dexie fails or responds with an invalid payload."""


class DexieClientProtocol:
    """Protocol-like base for Dexie HTTP clients."""

    def get_json(self, path: str, query_params: Mapping[str, str]) -> Any:
        """Submit an HTTP GET and return decoded JSON."""
        raise NotImplementedError


@dataclass
class UrllibDexieClient(DexieClientProtocol):
    """Dexie REST client.

    Requests are not retried. A failed page aborts the run and the next
    scheduled run starts again from the persisted watermark.
    """

    base_url: str = DEXIE_API_BASE_URL
    timeout_seconds: int = 30
    user_agent: str = "nft-attribute-sales/0.1 (+https://local)"

    def get_json(self, path: str, query_params: Mapping[str, str]) -> Any:
        query = parse.urlencode(dict(query_params))
        url = f"{self.base_url.rstrip('/')}/{path.lstrip('/')}?{query}"
        req = request.Request(
            url,
            method="GET",
            headers={
                "Accept": "application/json",
                "User-Agent": self.user_agent,
            },
        )

        try:
            with request.urlopen(req, timeout=self.timeout_seconds) as response:
                body = response.read().decode("utf-8")
        except error.HTTPError as exc:
            raise DexieAPIError(f"Dexie API error: {exc.code}") from exc
        except (error.URLError, TimeoutError) as exc:
            raise DexieAPIError(f"Dexie request failed: {exc}") from exc

        try:
            return json.loads(body)
        except json.JSONDecodeError as exc:
            raise DexieAPIError("Dexie returned a non-JSON body") from exc


def parse_offers(payload: Any) -> list[TradeOffer]:
    """Parse a Dexie offers page into typed offers."""
    if not isinstance(payload, dict):
        raise DexieAPIError("unexpected Dexie payload type")
    if payload.get("success") is False:
        raise DexieAPIError(f"Dexie reported failure: {payload.get('error')}")

    rows = payload.get("offers") or []
    if not isinstance(rows, list):
        raise DexieAPIError("unexpected Dexie offers shape")

    offers: list[TradeOffer] = []
    for row in rows:
        if not isinstance(row, dict):
            raise DexieAPIError("unexpected Dexie offer row shape")
        try:
            offers.append(TradeOffer.from_record(row))
        except (KeyError, TypeError, ValueError) as exc:
            raise DexieAPIError(f"malformed Dexie offer: {exc}") from exc
    return offers


def fetch_completed_offers(
    client: DexieClientProtocol,
    *,
    collection_id: str,
    since: datetime,
    page_size: int = DEFAULT_PAGE_SIZE,
    page_delay_seconds: float = DEFAULT_PAGE_DELAY_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
) -> list[TradeOffer]:
    """Fetch completed offers newer than `since`, newest first."""
    if page_size <= 0:
        raise ValueError("page_size must be positive")

    logger = get_logger()
    since_utc = to_utc(since)
    logger.info("fetching trades since %s", format_utc(since_utc))

    collected: list[TradeOffer] = []
    page = 1
    while True:
        logger.info("fetching page %s", page)
        payload = client.get_json(
            path="offers",
            query_params={
                "offered_or_requested": collection_id,
                "status": str(COMPLETED_STATUS),
                "page": str(page),
                "page_size": str(page_size),
                "sort": "date_completed",
                "order": "desc",
            },
        )
        offers = parse_offers(payload)
        if not offers:
            break

        fresh = [offer for offer in offers if offer.date_completed > since_utc]
        collected.extend(fresh)

        # A short page means the watermark boundary (or the end) was crossed.
        if len(fresh) < page_size:
            break

        page += 1
        sleep(page_delay_seconds)

    logger.info("found %s new trades", len(collected))
    return collected
