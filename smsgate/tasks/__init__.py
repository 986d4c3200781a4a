"""SMS Gate Tasks Module."""

from smsgate.tasks.celery_app import celery_app
from smsgate.tasks.deposits import expire_stale_deposits, reconcile_deposits
from smsgate.tasks.numbers import expire_overdue_numbers

__all__ = [
    "celery_app",
    "expire_overdue_numbers",
    "expire_stale_deposits",
    "reconcile_deposits",
]
