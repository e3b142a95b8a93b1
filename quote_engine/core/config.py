from decimal import Decimal
from functools import lru_cache
from typing import Dict, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    # ─────────── APP ───────────
    app_name: str = "Quote Pricing & Lifecycle Engine"
    environment: str = "dev"
    log_level: str = "INFO"

    # ─────────── API ───────────
    api_prefix: str = "/api/v1"
    request_id_header: str = "X-Request-Id"

    # ─────────── DATABASE ───────────
    database_url: str = "sqlite:///./quote_engine.db"
    # SERIALIZABLE in production so concurrent quote-number scans conflict
    database_isolation_level: Optional[str] = None

    # ─────────── CACHE ───────────
    redis_url: Optional[str] = None
    cache_key_prefix: str = "quote-engine"
    rate_card_cache_ttl: int = 60
    rate_item_cache_ttl: int = 300
    redis_socket_timeout: float = 0.2
    redis_connect_timeout: float = 0.2
    memory_cache_max_entries: int = 10_000

    # ─────────── IDEMPOTENCY ───────────
    idempotency_ttl_hours: int = 24

    # ─────────── QUOTE NUMBERS ───────────
    quote_number_default_prefix: str = "Q"
    quote_number_prefixes: Dict[str, str] = Field(default_factory=dict)
    quote_number_max_retries: int = 3

    # ─────────── PRICING ───────────
    default_tax_rate: Decimal = Decimal("0.15")
    default_unit: str = "hour"
    tax_class_rates: Dict[str, Decimal] = Field(
        default_factory=lambda: {
            "standard": Decimal("0.15"),
            "exempt": Decimal("0"),
            "zero": Decimal("0"),
        }
    )

    # ─────────── JWT / AUTH ───────────
    jwt_secret_key: str = "change-me"
    jwt_algorithm: str = "HS256"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
