"""Configuration contract for the sales pipeline."""

from typing import Any

from pydantic import BaseModel, Field, field_validator

from sales_ingestion.logging import LOG_LEVELS

DEXIE_API_BASE_URL = "https://api.dexie.space/v1"

# Collection ID for BigPulp Wojak.Ink (bech32m).
DEFAULT_COLLECTION_ID = (
    "col1m8m3tdxqt74u0ka5g3t9vtxjfx52muz7sstaqmqs6h2e9mncm5wsx57nrn"
)

# TibetSwap pool rates, XCH per token.
DEFAULT_CURRENCY_RATES: dict[str, float] = {
    "✨❤️‍🔥🧙‍♂️": 2.926,  # Caster
    "❤️": 0.0001178,  # LOVE
    "🪄⚡️": 0.0001381,  # Spell Power
    "HOA": 0.0003176,
    "NeckCoin": 3.006,
    "BEPE": 0.0000204,
}


class AppConfig(BaseModel):
    """Typed runtime settings for backfill and incremental runs."""

    collection_id: str = Field(default=DEFAULT_COLLECTION_ID)
    collection_name_aliases: list[str] = Field(
        default_factory=lambda: ["BigPulp", "Wojak"]
    )
    canonical_currency: str = Field(default="XCH")
    fiat_currency: str = Field(default="USD")
    xch_usd_rate: float = Field(default=5.25)
    currency_rates: dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_CURRENCY_RATES)
    )
    api_base_url: str = Field(default=DEXIE_API_BASE_URL)
    page_size: int = Field(default=100)
    page_delay_seconds: float = Field(default=0.5)
    request_timeout_seconds: int = Field(default=30)
    lookback_days: int = Field(default=30)
    stats_path: str = Field(default="public/assets/nft-data/attribute_stats.json")
    metadata_path: str = Field(default="public/assets/nft-data/metadata.json")
    backfill_csv_path: str = Field(default="data/attribute_sales_filled.csv")
    lock_timeout_seconds: float = Field(default=10.0)
    log_level: str = Field(default="INFO")

    @field_validator("xch_usd_rate")
    @classmethod
    def _positive_rate(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("xch_usd_rate must be positive")
        return value

    @field_validator("currency_rates")
    @classmethod
    def _positive_currency_rates(cls, value: dict[str, float]) -> dict[str, float]:
        bad = sorted(code for code, rate in value.items() if rate <= 0)
        if bad:
            raise ValueError(f"currency rates must be positive: {', '.join(bad)}")
        return value

    @field_validator("page_size", "lookback_days", "request_timeout_seconds")
    @classmethod
    def _positive_int(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("value must be a positive integer")
        return value

    @field_validator("page_delay_seconds", "lock_timeout_seconds")
    @classmethod
    def _non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("value must not be negative")
        return value

    @field_validator("log_level")
    @classmethod
    def _known_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        return level


def load_config(**kwargs: Any) -> AppConfig:
    """Build and validate application configuration.

    Keyword arguments set to ``None`` are dropped so callers can pass
    optional CLI values straight through and fall back to defaults.
    """
    settings = {key: value for key, value in kwargs.items() if value is not None}
    return AppConfig(**settings)
