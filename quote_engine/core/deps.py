#quote_engine/core/deps.py
from __future__ import annotations

from functools import lru_cache

from fastapi import Depends

from quote_engine.core.cache import SafeCache, build_cache
from quote_engine.core.config import Settings, get_settings
from quote_engine.services.audit_service import AuditSink, DatabaseAuditSink
from quote_engine.services.idempotency_service import IdempotencyService
from quote_engine.services.pricing_resolver import PricingResolver
from quote_engine.services.quote_number import QuoteNumberGenerator
from quote_engine.services.quote_service import QuoteService
from quote_engine.services.quote_versioning import QuoteVersioningService
from quote_engine.services.rate_card_service import RateCardService


# The process-wide cache client lives here, at the edge. Services only ever
# see the instance they are constructed with.
@lru_cache(maxsize=1)
def get_cache() -> SafeCache:
    settings = get_settings()
    return build_cache(
        settings.redis_url,
        socket_timeout=settings.redis_socket_timeout,
        socket_connect_timeout=settings.redis_connect_timeout,
        max_entries=settings.memory_cache_max_entries,
    )


def get_audit_sink() -> AuditSink:
    return DatabaseAuditSink()


def get_rate_card_service(
    settings: Settings = Depends(get_settings),
    cache: SafeCache = Depends(get_cache),
    audit: AuditSink = Depends(get_audit_sink),
) -> RateCardService:
    return RateCardService(
        cache,
        key_prefix=settings.cache_key_prefix,
        card_ttl=settings.rate_card_cache_ttl,
        item_ttl=settings.rate_item_cache_ttl,
        audit=audit,
    )


def get_pricing_resolver(
    settings: Settings = Depends(get_settings),
    rate_cards: RateCardService = Depends(get_rate_card_service),
) -> PricingResolver:
    return PricingResolver(
        rate_cards,
        default_tax_rate=settings.default_tax_rate,
        default_unit=settings.default_unit,
        tax_class_rates=settings.tax_class_rates,
    )


def get_quote_service(
    settings: Settings = Depends(get_settings),
    resolver: PricingResolver = Depends(get_pricing_resolver),
    audit: AuditSink = Depends(get_audit_sink),
) -> QuoteService:
    return QuoteService(
        resolver=resolver,
        numbers=QuoteNumberGenerator(
            default_prefix=settings.quote_number_default_prefix,
            prefixes=settings.quote_number_prefixes,
        ),
        versioning=QuoteVersioningService(),
        idempotency=IdempotencyService(ttl_hours=settings.idempotency_ttl_hours),
        audit=audit,
        max_number_retries=settings.quote_number_max_retries,
    )
