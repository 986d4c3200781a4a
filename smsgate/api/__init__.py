"""API module - FastAPI routers."""

from smsgate.api.balance import router as balance_router
from smsgate.api.numbers import router as numbers_router
from smsgate.api.payments import router as payments_router
from smsgate.api.webhooks import router as webhooks_router

__all__ = ["balance_router", "numbers_router", "payments_router", "webhooks_router"]
