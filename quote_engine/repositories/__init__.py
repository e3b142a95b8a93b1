from quote_engine.repositories.quotes import QuoteLineItemRepository, QuoteRepository
from quote_engine.repositories.rate_cards import RateCardItemRepository, RateCardRepository
from quote_engine.repositories.versions import QuoteVersionRepository

__all__ = [
    "QuoteLineItemRepository",
    "QuoteRepository",
    "QuoteVersionRepository",
    "RateCardItemRepository",
    "RateCardRepository",
]
