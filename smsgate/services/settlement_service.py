"""Settlement Service - Payment deposits and webhook settlement.

Every inbound notification is logged before it is processed. Settlement is
exactly-once per tx_ref: the deposit moves to PAID_SETTLED through a
conditional UPDATE, and only the request that wins that update credits the
balance. Webhooks, manual verification and reconciliation all converge on
``settle()``.
"""

import hashlib
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from smsgate.core.config import get_settings
from smsgate.core.exceptions import (
    DepositNotFoundError,
    InvalidSignatureError,
    InvalidStatusError,
    PaymentExpiredError,
    PaymentFailedError,
    PaymentNotActivatedError,
    SettlementError,
    SmsGateError,
    ValidationError,
)
from smsgate.models.deposit import (
    SETTLEABLE_DEPOSIT_STATUSES,
    DepositStatus,
    PaymentDeposit,
    generate_tx_ref,
)
from smsgate.models.ledger import TransactionType
from smsgate.models.webhook import WebhookLog
from smsgate.providers.flutterwave import FlutterwaveClient, verify_signature
from smsgate.services.exchange_rate_service import ExchangeRateService
from smsgate.services.ledger_service import LedgerService
from smsgate.services.notifier import Notifier, notify_safely
from smsgate.utils.helpers import format_amount, format_utc_datetime

logger = logging.getLogger(__name__)

# Provider transaction statuses
SUCCESS_STATUSES = ("successful",)
FAILURE_STATUSES = ("failed", "cancelled", "reversed")

# Settlement-relevant events
CHARGE_COMPLETED = "charge.completed"
CHARGE_REVERSED = "charge.reversed"


def build_idempotency_key(
    event: str | None, tx_ref: str | None, provider_tx_id: str | None, status: str | None
) -> str:
    """Stable key collapsing duplicate deliveries of one notification."""
    raw = f"{event}:{tx_ref}:{provider_tx_id}:{status}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def _decimal(value: Any, default: Decimal) -> Decimal:
    if value is None:
        return default
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return default


@dataclass
class SettlementResult:
    """Outcome of a settle / mark_failed / verify call.

    ``already_processed`` is set when a previous delivery already moved the
    deposit to its final state; the call changed nothing.
    """

    deposit: PaymentDeposit
    settled: bool = False
    already_processed: bool = False
    credited_amount: Decimal | None = None
    balance_after: Decimal | None = None

    @property
    def status(self) -> DepositStatus:
        return DepositStatus(self.deposit.status)


@dataclass
class WebhookOutcome:
    """Outcome of one inbound webhook delivery."""

    log_id: int
    signature_valid: bool
    processed: bool
    result: SettlementResult | None = None
    error: str | None = None


class SettlementService:
    """Service for deposit and webhook settlement business logic."""

    def __init__(
        self,
        db: AsyncSession,
        payment_client: FlutterwaveClient | None = None,
        notifier: Notifier | None = None,
        webhook_secret: str | None = None,
        exchange_rates: ExchangeRateService | None = None,
    ):
        settings = get_settings()
        self.db = db
        self.payment_client = payment_client
        self.notifier = notifier
        self.webhook_secret = (
            webhook_secret if webhook_secret is not None else settings.payment_webhook_secret
        )
        self.settlement_currency = settings.settlement_currency.upper()
        self.deposit_expiry = timedelta(minutes=settings.deposit_expiry_minutes)
        self.frontend_url = settings.frontend_url
        self.ledger = LedgerService(db)
        self.exchange_rates = exchange_rates or ExchangeRateService(db)

    def _client(self) -> FlutterwaveClient:
        if self.payment_client is None:
            self.payment_client = FlutterwaveClient()
        return self.payment_client

    # =========================================================================
    # Deposits
    # =========================================================================

    async def get_deposit(self, tx_ref: str, user_id: int | None = None) -> PaymentDeposit:
        """Get a deposit by tx_ref, optionally restricted to its owner.

        Raises:
            DepositNotFoundError: Unknown tx_ref or another user's deposit
        """
        query = select(PaymentDeposit).where(PaymentDeposit.tx_ref == tx_ref)
        if user_id is not None:
            query = query.where(PaymentDeposit.user_id == user_id)
        deposit = (await self.db.execute(query)).scalar_one_or_none()
        if deposit is None:
            raise DepositNotFoundError(f"Deposit {tx_ref} not found", {"tx_ref": tx_ref})
        return deposit

    async def list_deposits(
        self, user_id: int, page: int = 1, limit: int = 20, status: DepositStatus | None = None
    ) -> tuple[list[PaymentDeposit], int]:
        query = select(PaymentDeposit).where(PaymentDeposit.user_id == user_id)
        if status:
            query = query.where(PaymentDeposit.status == status)
        total = (
            await self.db.execute(select(func.count()).select_from(query.subquery()))
        ).scalar() or 0
        query = query.order_by(PaymentDeposit.created_at.desc(), PaymentDeposit.id.desc())
        result = await self.db.execute(query.offset((page - 1) * limit).limit(limit))
        return list(result.scalars().all()), total

    async def create_deposit(
        self,
        user_id: int,
        amount: Decimal,
        currency: str,
        email: str,
        name: str | None = None,
    ) -> PaymentDeposit:
        """Open a hosted checkout and record a pending deposit.

        Raises:
            ValidationError: Non-positive amount
            PaymentProviderError: Checkout creation failed
        """
        if amount <= 0:
            raise ValidationError("Deposit amount must be positive", {"amount": str(amount)})

        currency = currency.upper()
        tx_ref = generate_tx_ref(user_id)
        link = await self._client().create_payment(
            tx_ref=tx_ref,
            amount=amount,
            currency=currency,
            customer={"email": email, "name": name or email},
            redirect_url=f"{self.frontend_url}/transactions?status=success&tx_ref={tx_ref}",
        )

        now = datetime.utcnow()
        deposit = PaymentDeposit(
            user_id=user_id,
            tx_ref=tx_ref,
            amount=amount,
            currency=currency,
            settlement_currency=self.settlement_currency,
            status=DepositStatus.PENDING_UNSETTLED,
            payment_link=link,
            expires_at=now + self.deposit_expiry,
            created_at=now,
            updated_at=now,
        )
        self.db.add(deposit)
        await self.db.commit()
        await self.db.refresh(deposit)

        logger.info(f"Deposit {tx_ref} created for user {user_id}: {amount} {currency}")
        return deposit

    async def cancel_deposit(self, user_id: int, tx_ref: str) -> PaymentDeposit:
        """Cancel a pending deposit at the user's request."""
        deposit = await self.get_deposit(tx_ref, user_id)
        if not await self._transition(
            tx_ref,
            (DepositStatus.PENDING_UNSETTLED,),
            DepositStatus.CANCELLED,
            failure_reason="USER_CANCELLED",
        ):
            await self.db.rollback()
            await self.db.refresh(deposit)
            raise InvalidStatusError(
                "Only pending deposits can be cancelled", current_status=deposit.status.value
            )
        await self.db.commit()
        await self.db.refresh(deposit)
        logger.info(f"Deposit {tx_ref} cancelled by user {user_id}")
        return deposit

    async def _transition(
        self,
        tx_ref: str,
        from_statuses: tuple[DepositStatus, ...],
        to_status: DepositStatus,
        **values: Any,
    ) -> bool:
        """Move a deposit to ``to_status`` only if it is in ``from_statuses``."""
        result = await self.db.execute(
            update(PaymentDeposit)
            .where(PaymentDeposit.tx_ref == tx_ref, PaymentDeposit.status.in_(from_statuses))
            .values(status=to_status, updated_at=datetime.utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # =========================================================================
    # Settlement
    # =========================================================================

    async def settle(self, tx_ref: str, transaction: dict[str, Any]) -> SettlementResult:
        """Credit a paid deposit exactly once.

        The status transition, the balance credit and the ledger record are
        committed together. A lost race on the transition means another
        delivery already settled the deposit.

        Args:
            tx_ref: Deposit reference
            transaction: Provider transaction data (``id``, ``flw_ref``,
                ``amount``, ``currency``)

        Returns:
            SettlementResult

        Raises:
            DepositNotFoundError: Unknown tx_ref
            InvalidStatusError: Deposit already FAILED
            ExchangeRateUnavailableError: Paid currency cannot be converted
        """
        deposit = await self.get_deposit(tx_ref)
        if deposit.status == DepositStatus.PAID_SETTLED:
            logger.info(f"Deposit {tx_ref} already settled")
            return SettlementResult(deposit=deposit, already_processed=True)
        if deposit.status not in SETTLEABLE_DEPOSIT_STATUSES:
            raise InvalidStatusError(
                f"Deposit {tx_ref} cannot be settled",
                code="DEPOSIT_NOT_SETTLEABLE",
                current_status=deposit.status.value,
            )

        paid_amount = _decimal(transaction.get("amount"), Decimal(deposit.amount))
        currency = str(transaction.get("currency") or deposit.currency).upper()
        rate = await self.exchange_rates.get_rate(self.settlement_currency, currency)
        settlement_amount = self.exchange_rates.convert(paid_amount, rate)

        provider_tx_id = transaction.get("id")
        now = datetime.utcnow()
        won = await self._transition(
            tx_ref,
            SETTLEABLE_DEPOSIT_STATUSES,
            DepositStatus.PAID_SETTLED,
            provider_tx_id=str(provider_tx_id) if provider_tx_id is not None else None,
            provider_ref=transaction.get("flw_ref"),
            settlement_amount=settlement_amount,
            settlement_currency=self.settlement_currency,
            fx_rate=rate,
            paid_at=now,
            failure_reason=None,
        )
        if not won:
            await self.db.rollback()
            await self.db.refresh(deposit)
            if deposit.status == DepositStatus.PAID_SETTLED:
                logger.info(f"Deposit {tx_ref} settled by a concurrent delivery")
                return SettlementResult(deposit=deposit, already_processed=True)
            raise InvalidStatusError(
                f"Deposit {tx_ref} cannot be settled",
                code="DEPOSIT_NOT_SETTLEABLE",
                current_status=deposit.status.value,
            )

        user_id = deposit.user_id
        try:
            movement = await self.ledger.credit(user_id, settlement_amount, deposit=True)
            await self.ledger.record_transaction(
                TransactionType.DEPOSIT,
                movement,
                reference_id=tx_ref,
                description=f"Deposit {paid_amount} {currency}",
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        await self.db.refresh(deposit)
        logger.info(
            f"Deposit {tx_ref} settled: {paid_amount} {currency} -> "
            f"{settlement_amount} {self.settlement_currency} for user {user_id}"
        )
        await notify_safely(
            self.notifier,
            user_id,
            {
                "type": "deposit_settled",
                "tx_ref": tx_ref,
                "amount": format_amount(settlement_amount),
                "currency": self.settlement_currency,
                "balance": format_amount(movement.balance_after),
                "timestamp": format_utc_datetime(now),
            },
        )
        return SettlementResult(
            deposit=deposit,
            settled=True,
            credited_amount=settlement_amount,
            balance_after=movement.balance_after,
        )

    async def mark_failed(self, tx_ref: str, reason: str | None = None) -> SettlementResult:
        """Mark a declined or reversed payment FAILED. No balance change."""
        deposit = await self.get_deposit(tx_ref)
        if deposit.status in (DepositStatus.PAID_SETTLED, DepositStatus.FAILED):
            return SettlementResult(deposit=deposit, already_processed=True)

        if not await self._transition(
            tx_ref,
            SETTLEABLE_DEPOSIT_STATUSES,
            DepositStatus.FAILED,
            failure_reason=(reason or "PAYMENT_FAILED")[:255],
        ):
            await self.db.rollback()
            await self.db.refresh(deposit)
            return SettlementResult(deposit=deposit, already_processed=True)

        await self.db.commit()
        await self.db.refresh(deposit)
        logger.info(f"Deposit {tx_ref} marked failed: {reason}")
        await notify_safely(
            self.notifier,
            deposit.user_id,
            {"type": "deposit_failed", "tx_ref": tx_ref, "reason": reason},
        )
        return SettlementResult(deposit=deposit)

    async def _expire_pending(self, deposit: PaymentDeposit, reason: str) -> None:
        if await self._transition(
            deposit.tx_ref,
            (DepositStatus.PENDING_UNSETTLED,),
            DepositStatus.CANCELLED,
            failure_reason=reason,
        ):
            await self.db.commit()
        else:
            await self.db.rollback()
        await self.db.refresh(deposit)

    async def _lookup_transaction(self, deposit: PaymentDeposit) -> dict[str, Any] | None:
        client = self._client()
        if deposit.provider_tx_id:
            return await client.verify_transaction(deposit.provider_tx_id)
        return await client.find_by_tx_ref(deposit.tx_ref)

    async def verify(self, user_id: int, tx_ref: str) -> SettlementResult:
        """Re-check a deposit with the payment provider and settle it if paid.

        Raises:
            DepositNotFoundError: Unknown tx_ref
            PaymentExpiredError: Pending checkout past its expiry (now CANCELLED)
            PaymentNotActivatedError: Provider has no payment for it (now CANCELLED)
            PaymentFailedError: Provider reports the payment failed (now FAILED)
        """
        deposit = await self.get_deposit(tx_ref, user_id)
        if deposit.status == DepositStatus.PAID_SETTLED:
            return SettlementResult(deposit=deposit, already_processed=True)
        if deposit.status == DepositStatus.FAILED:
            raise PaymentFailedError(
                "Payment failed", {"tx_ref": tx_ref, "reason": deposit.failure_reason}
            )

        if (
            deposit.status == DepositStatus.PENDING_UNSETTLED
            and datetime.utcnow() > deposit.expires_at
        ):
            await self._expire_pending(deposit, "PAYMENT_EXPIRED")
            raise PaymentExpiredError("Payment session expired", {"tx_ref": tx_ref})

        await self.db.commit()
        transaction = await self._lookup_transaction(deposit)
        if transaction is None:
            await self._expire_pending(deposit, "PAYMENT_NOT_ACTIVATED")
            raise PaymentNotActivatedError(
                "Payment was not completed at the provider", {"tx_ref": tx_ref}
            )

        status = str(transaction.get("status") or "").lower()
        if status in SUCCESS_STATUSES:
            return await self.settle(tx_ref, transaction)
        if status == "pending":
            return SettlementResult(deposit=deposit)

        await self.mark_failed(tx_ref, transaction.get("processor_response") or status)
        raise PaymentFailedError("Payment failed", {"tx_ref": tx_ref, "status": status})

    # =========================================================================
    # Webhooks
    # =========================================================================

    async def receive(
        self, raw_body: bytes, signature: str | None, source: str = "webhook"
    ) -> WebhookOutcome:
        """Log, authenticate and process one payment notification.

        Never raises for bad input: invalid signatures, malformed payloads and
        processing errors are recorded on the log entry and reported in the
        outcome, so the route can always acknowledge receipt.
        """
        started = time.perf_counter()

        try:
            payload = json.loads(raw_body)
            if not isinstance(payload, dict):
                raise ValueError("payload is not an object")
        except ValueError:
            payload = None

        data = (payload or {}).get("data") or {}
        if not isinstance(data, dict):
            data = {}
        event = (payload or {}).get("event") or (payload or {}).get("event.type")
        event_type = "invalid_payload" if payload is None else str(event or "unknown")
        tx_ref = data.get("tx_ref") or data.get("txRef")
        provider_tx_id = str(data["id"]) if data.get("id") is not None else None
        status = str(data.get("status") or "").lower() or None

        signature_valid = verify_signature(raw_body, signature, self.webhook_secret)
        log = WebhookLog(
            source=source,
            event_type=event_type[:64],
            tx_ref=tx_ref,
            provider_tx_id=provider_tx_id,
            raw_payload=raw_body.decode("utf-8", errors="replace"),
            signature_valid=signature_valid,
            idempotency_key=build_idempotency_key(event_type, tx_ref, provider_tx_id, status),
        )
        self.db.add(log)
        await self.db.commit()
        log_id = log.id

        outcome = WebhookOutcome(log_id=log_id, signature_valid=signature_valid, processed=False)
        try:
            if not signature_valid:
                raise InvalidSignatureError("Invalid signature")
            if payload is None:
                raise ValidationError("Invalid JSON payload")
            outcome.processed, outcome.result = await self._handle_event(
                event_type, tx_ref, status, data
            )
        except SmsGateError as e:
            await self.db.rollback()
            logger.warning(f"Webhook {log_id} (tx_ref={tx_ref}) not processed: {e.message}")
            outcome.error = e.message
        except Exception as e:
            await self.db.rollback()
            logger.exception(f"Webhook {log_id} for {tx_ref} raised")
            outcome.error = str(e) or e.__class__.__name__

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        await self.db.execute(
            update(WebhookLog)
            .where(WebhookLog.id == log_id)
            .values(
                processed=outcome.processed,
                processing_error=outcome.error[:1000] if outcome.error else None,
                processing_ms=elapsed_ms,
                processed_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return outcome

    async def _handle_event(
        self,
        event_type: str,
        tx_ref: str | None,
        status: str | None,
        data: dict[str, Any],
    ) -> tuple[bool, SettlementResult | None]:
        """Route one authenticated event. Returns (processed, result)."""
        if event_type not in (CHARGE_COMPLETED, CHARGE_REVERSED):
            logger.info(f"Ignoring webhook event {event_type}")
            return True, None

        if not tx_ref:
            raise SettlementError("Webhook payload has no tx_ref")

        if event_type == CHARGE_REVERSED or status in FAILURE_STATUSES:
            reason = data.get("processor_response") or status or "reversed"
            return True, await self.mark_failed(tx_ref, str(reason))
        if status in SUCCESS_STATUSES:
            return True, await self.settle(tx_ref, data)

        logger.info(f"Webhook for {tx_ref} with status {status} recorded, not processed")
        return False, None

    # =========================================================================
    # Jobs
    # =========================================================================

    async def expire_stale_deposits(self) -> int:
        """Cancel pending deposits past their checkout expiry."""
        result = await self.db.execute(
            update(PaymentDeposit)
            .where(
                PaymentDeposit.status == DepositStatus.PENDING_UNSETTLED,
                PaymentDeposit.expires_at < datetime.utcnow(),
            )
            .values(
                status=DepositStatus.CANCELLED,
                failure_reason="PAYMENT_EXPIRED",
                updated_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        if result.rowcount:
            logger.info(f"Expired {result.rowcount} stale deposits")
        return result.rowcount

    async def reconcile_deposits(self, lookback_hours: int = 24) -> dict[str, int]:
        """Re-verify unsettled deposits and settle the ones the provider reports paid.

        PENDING_UNSETTLED and CANCELLED deposits created within the lookback
        window are checked. FAILED and PAID_SETTLED are never revisited.

        Returns:
            Counters: checked, settled, failed, unchanged, errors
        """
        cutoff = datetime.utcnow() - timedelta(hours=lookback_hours)
        result = await self.db.execute(
            select(PaymentDeposit.tx_ref)
            .where(
                PaymentDeposit.status.in_(SETTLEABLE_DEPOSIT_STATUSES),
                PaymentDeposit.created_at >= cutoff,
            )
            .order_by(PaymentDeposit.created_at)
        )
        tx_refs = list(result.scalars().all())
        await self.db.commit()

        summary = {"checked": 0, "settled": 0, "failed": 0, "unchanged": 0, "errors": 0}
        for tx_ref in tx_refs:
            summary["checked"] += 1
            try:
                deposit = await self.get_deposit(tx_ref)
                transaction = await self._lookup_transaction(deposit)
                status = str((transaction or {}).get("status") or "").lower()

                if status in SUCCESS_STATUSES:
                    settled = await self.settle(tx_ref, transaction)
                    summary["settled" if settled.settled else "unchanged"] += 1
                elif status in FAILURE_STATUSES:
                    await self.mark_failed(tx_ref, transaction.get("processor_response") or status)
                    summary["failed"] += 1
                else:
                    if (
                        deposit.status == DepositStatus.PENDING_UNSETTLED
                        and datetime.utcnow() > deposit.expires_at
                    ):
                        await self._expire_pending(deposit, "PAYMENT_EXPIRED")
                    summary["unchanged"] += 1
            except SmsGateError as e:
                await self.db.rollback()
                logger.error(f"Reconciliation of {tx_ref} failed: {e.message}")
                summary["errors"] += 1

        logger.info(f"Deposit reconciliation finished: {summary}")
        return summary

    async def webhook_stats(self, hours: int = 24) -> dict[str, Any]:
        """Operator view of recent webhook traffic."""
        since = datetime.utcnow() - timedelta(hours=hours)
        row = (
            await self.db.execute(
                select(
                    func.count(WebhookLog.id),
                    func.sum(case((WebhookLog.processed == True, 1), else_=0)),  # noqa: E712
                    func.sum(case((WebhookLog.processing_error.is_not(None), 1), else_=0)),
                    func.sum(case((WebhookLog.signature_valid == False, 1), else_=0)),  # noqa: E712
                    func.avg(WebhookLog.processing_ms),
                ).where(WebhookLog.created_at >= since)
            )
        ).one()
        total, processed, failed, invalid, avg_ms = row
        return {
            "period_hours": hours,
            "total": total or 0,
            "processed": int(processed or 0),
            "failed": int(failed or 0),
            "invalid_signatures": int(invalid or 0),
            "avg_processing_ms": round(float(avg_ms), 2) if avg_ms is not None else None,
        }
