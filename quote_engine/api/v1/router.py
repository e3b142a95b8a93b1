from fastapi import APIRouter

from quote_engine.api.v1.health import router as health_router
from quote_engine.api.v1.pricing import router as pricing_router
from quote_engine.api.v1.quotes import router as quotes_router
from quote_engine.api.v1.rate_cards import router as rate_cards_router

v1_router = APIRouter()

v1_router.include_router(health_router)
v1_router.include_router(quotes_router)
v1_router.include_router(rate_cards_router)
v1_router.include_router(pricing_router)
