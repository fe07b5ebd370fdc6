"""Configuration management for the obligation ledger."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache

from dotenv import load_dotenv


@dataclass(frozen=True)
class Settings:
    """Application settings loaded from environment."""

    database_url: str
    database_echo: bool
    log_level: str
    default_payment_method: str

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment variables."""
        load_dotenv()

        return cls(
            database_url=os.getenv("DATABASE_URL", "sqlite:///obligation_ledger.db"),
            database_echo=os.getenv("DATABASE_ECHO", "false").lower() == "true",
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            default_payment_method=os.getenv("DEFAULT_PAYMENT_METHOD", "ach"),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings.from_env()


@dataclass(frozen=True)
class EngineConfig:
    """
    Ledger engine policy.

    Passed explicitly to each service. Immutable after creation.

    Attributes:
        currency: ISO currency code recorded on reports. Default USD.
        sweep_kinds: Obligation kinds the late-fee sweep evaluates.
            Default rent only; expense obligations are materialized by
            the expense ledger instead.
        interest_days_in_year: Day-count basis used only for display of
            daily rates on statements. Monthly interest itself is
            annual rate / 12.
        aging_buckets: Upper bounds (in days past due) of the aging
            report buckets. Anything beyond the last bound lands in the
            open-ended final bucket.
    """

    currency: str = "USD"
    sweep_kinds: tuple[str, ...] = ("rent",)
    interest_days_in_year: int = 365
    aging_buckets: tuple[int, ...] = field(default=(30, 60, 90))

    def __post_init__(self) -> None:
        """Validate configuration."""
        if len(self.currency) != 3:
            raise ValueError(f"currency must be a 3-letter code, got {self.currency!r}")
        if not self.sweep_kinds:
            raise ValueError("sweep_kinds must name at least one obligation kind")
        for kind in self.sweep_kinds:
            if kind not in ("rent", "expense"):
                raise ValueError(f"Unknown obligation kind in sweep_kinds: {kind}")
        if self.interest_days_in_year not in (360, 365):
            raise ValueError("interest_days_in_year must be 360 or 365")
        if list(self.aging_buckets) != sorted(set(self.aging_buckets)) or not self.aging_buckets:
            raise ValueError("aging_buckets must be strictly increasing")
        if self.aging_buckets[0] <= 0:
            raise ValueError("aging_buckets must be positive")
