"""SMS Gate Service Layer.

Business logic services for the SMS Gate.
Each service encapsulates domain-specific operations and can be reused across
API endpoints, Celery tasks and scripts.
"""

from smsgate.services.exchange_rate_service import ExchangeRateService
from smsgate.services.ledger_service import BalanceMovement, LedgerService
from smsgate.services.notifier import Notifier, RedisNotifier, notify_safely
from smsgate.services.number_service import (
    CancelResult,
    MarkupPolicy,
    NumberService,
    RefundPolicy,
)
from smsgate.services.settlement_service import (
    SettlementResult,
    SettlementService,
    WebhookOutcome,
    build_idempotency_key,
)

__all__ = [
    "LedgerService",
    "BalanceMovement",
    "NumberService",
    "MarkupPolicy",
    "RefundPolicy",
    "CancelResult",
    "SettlementService",
    "SettlementResult",
    "WebhookOutcome",
    "build_idempotency_key",
    "ExchangeRateService",
    "Notifier",
    "RedisNotifier",
    "notify_safely",
]
