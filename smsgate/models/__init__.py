"""Models module - SQLModel database entities."""

from smsgate.models.account import BalanceAccount
from smsgate.models.deposit import (
    SETTLEABLE_DEPOSIT_STATUSES,
    DepositStatus,
    PaymentDeposit,
    generate_tx_ref,
)
from smsgate.models.exchange_rate import ExchangeRate
from smsgate.models.ledger import TransactionRecord, TransactionStatus, TransactionType
from smsgate.models.number import (
    ACTIVE_NUMBER_STATUSES,
    TERMINAL_NUMBER_STATUSES,
    NumberPurchase,
    NumberStatus,
)
from smsgate.models.webhook import WebhookLog

__all__ = [
    # Ledger
    "BalanceAccount",
    "TransactionRecord",
    "TransactionType",
    "TransactionStatus",
    # Numbers
    "NumberPurchase",
    "NumberStatus",
    "ACTIVE_NUMBER_STATUSES",
    "TERMINAL_NUMBER_STATUSES",
    # Deposits
    "PaymentDeposit",
    "DepositStatus",
    "SETTLEABLE_DEPOSIT_STATUSES",
    "generate_tx_ref",
    # Webhooks
    "WebhookLog",
    # Exchange rates
    "ExchangeRate",
]
