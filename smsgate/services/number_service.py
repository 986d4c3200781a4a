"""Number Service - Purchase, cancellation and lifecycle of leased numbers.

Purchase flow:
1. Resolve the unit cost (price cache, then provider read)
2. Apply the markup and the caller's price ceiling
3. Check the balance (no provider call when it is short)
4. Lease the number (provider write)
5. Debit, insert the purchase and its ledger record in one commit

If step 5 fails after the provider leased the number, the lease is cancelled
at the provider. A failed compensation is a reconciliation case.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from smsgate.core.config import get_settings
from smsgate.core.exceptions import (
    CancelTooEarlyError,
    ConcurrentModificationError,
    InsufficientBalanceError,
    InvalidStatusError,
    NotFoundError,
    PriceExceededError,
    ProviderError,
    ReconciliationRequiredError,
    ServiceUnavailableError,
)
from smsgate.models.ledger import TransactionType
from smsgate.models.number import ACTIVE_NUMBER_STATUSES, NumberPurchase, NumberStatus
from smsgate.providers.gateway import ActivationAction, ProviderGateway
from smsgate.services.ledger_service import LedgerService
from smsgate.services.notifier import Notifier, notify_safely
from smsgate.utils.helpers import format_amount, format_utc_datetime

logger = logging.getLogger(__name__)

PRICE_QUANTUM = Decimal("0.0001")


# =============================================================================
# Pricing policies
# =============================================================================


@dataclass(frozen=True)
class MarkupPolicy:
    """Total price = provider cost x multiplier."""

    multiplier: Decimal = Decimal("2")

    def apply(self, cost: Decimal) -> Decimal:
        return (cost * self.multiplier).quantize(PRICE_QUANTUM, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class RefundPolicy:
    """Refund owed when a number is cancelled.

    ``full`` refunds the total price. ``time_decayed`` refunds
    ``price x remaining_lifetime_fraction x decay_rate`` and nothing once the
    lifetime has elapsed.
    """

    mode: str = "full"
    decay_rate: Decimal = Decimal("0.5")
    lifetime: timedelta = timedelta(minutes=20)

    def refund_amount(self, purchase: NumberPurchase, now: datetime) -> Decimal:
        price = Decimal(purchase.price)
        if self.mode == "full":
            return price

        elapsed = (now - purchase.purchase_date).total_seconds()
        total = self.lifetime.total_seconds()
        remaining = max(Decimal("0"), Decimal(str((total - elapsed) / total)))
        refund = price * remaining * self.decay_rate
        return refund.quantize(PRICE_QUANTUM, rounding=ROUND_HALF_UP)


@dataclass
class CancelResult:
    purchase: NumberPurchase
    refund_amount: Decimal
    balance: Decimal | None = None


def purchase_event(event_type: str, purchase: NumberPurchase, **extra: Any) -> dict[str, Any]:
    """Notification payload for a number lifecycle event."""
    event = {
        "type": event_type,
        "purchase_id": purchase.id,
        "activation_id": purchase.activation_id,
        "phone_number": purchase.phone_number,
        "service": purchase.service_code,
        "status": NumberStatus(purchase.status).value,
        "timestamp": format_utc_datetime(datetime.utcnow()),
    }
    event.update(extra)
    return event


class NumberService:
    """Service for number purchase business logic."""

    def __init__(
        self,
        db: AsyncSession,
        gateway: ProviderGateway,
        notifier: Notifier | None = None,
        markup: MarkupPolicy | None = None,
        refund_policy: RefundPolicy | None = None,
    ):
        settings = get_settings()
        self.db = db
        self.gateway = gateway
        self.notifier = notifier
        self.ledger = LedgerService(db)
        self.lifetime = timedelta(minutes=settings.number_lifetime_minutes)
        self.cancel_dwell = timedelta(minutes=settings.cancel_dwell_minutes)
        self.markup = markup or MarkupPolicy(settings.markup_multiplier)
        self.refund_policy = refund_policy or RefundPolicy(
            mode=settings.refund_policy,
            decay_rate=settings.refund_decay_rate,
            lifetime=self.lifetime,
        )

    # ============ Queries ============

    async def get_purchase(self, user_id: int, purchase_id: int) -> NumberPurchase:
        """Get a purchase owned by the user.

        Raises:
            NotFoundError: Unknown id or another user's number
        """
        result = await self.db.execute(
            select(NumberPurchase).where(
                NumberPurchase.id == purchase_id, NumberPurchase.user_id == user_id
            )
        )
        purchase = result.scalar_one_or_none()
        if purchase is None:
            raise NotFoundError("Number not found", code="NUMBER_NOT_FOUND")
        return purchase

    async def history(
        self,
        user_id: int,
        page: int = 1,
        limit: int = 20,
        status: NumberStatus | None = None,
        service: str | None = None,
    ) -> tuple[list[NumberPurchase], int]:
        """List a user's purchases, newest first."""
        query = select(NumberPurchase).where(NumberPurchase.user_id == user_id)
        if status:
            query = query.where(NumberPurchase.status == status)
        if service:
            query = query.where(NumberPurchase.service_code == service)

        total = (
            await self.db.execute(select(func.count()).select_from(query.subquery()))
        ).scalar() or 0
        query = query.order_by(NumberPurchase.purchase_date.desc(), NumberPurchase.id.desc())
        result = await self.db.execute(query.offset((page - 1) * limit).limit(limit))
        return list(result.scalars().all()), total

    async def list_active(
        self, user_id: int, page: int = 1, limit: int = 20
    ) -> tuple[list[NumberPurchase], int]:
        """List waiting/received numbers, polling the provider for each waiting one."""
        query = select(NumberPurchase).where(
            NumberPurchase.user_id == user_id,
            NumberPurchase.status.in_(ACTIVE_NUMBER_STATUSES),
        )
        total = (
            await self.db.execute(select(func.count()).select_from(query.subquery()))
        ).scalar() or 0
        query = query.order_by(NumberPurchase.purchase_date.desc(), NumberPurchase.id.desc())
        result = await self.db.execute(query.offset((page - 1) * limit).limit(limit))

        items = []
        for purchase in result.scalars().all():
            if purchase.status == NumberStatus.WAITING:
                purchase = await self.refresh_status(purchase)
            items.append(purchase)
        return items, total

    # ============ Purchase ============

    async def quote(
        self, service: str, country: str, operator: str | None = None
    ) -> tuple[Decimal, Decimal]:
        """Provider cost and total price for one number.

        Raises:
            ServiceUnavailableError: Service not offered in the country
        """
        cost = await self.gateway.get_unit_cost(service, country, operator)
        if cost <= 0:
            raise ServiceUnavailableError(
                "Service not available in the selected country",
                {"service": service, "country": country},
            )
        return cost, self.markup.apply(cost)

    async def purchase(
        self,
        user_id: int,
        service: str,
        country: str,
        operator: str | None = None,
        max_price: Decimal | None = None,
    ) -> NumberPurchase:
        """Lease a number and charge the user for it.

        Args:
            user_id: Buyer
            service: Provider service code
            country: Provider country code
            operator: Optional operator
            max_price: Optional ceiling on the total price

        Returns:
            The persisted NumberPurchase

        Raises:
            ServiceUnavailableError: Unit cost is zero
            PriceExceededError: Total price above ``max_price``
            InsufficientBalanceError: Balance does not cover the price
            ProviderError: Leasing failed (nothing was charged)
            ReconciliationRequiredError: Leased but not charged, and the
                compensating cancel failed
        """
        cost, price = await self.quote(service, country, operator)
        if max_price is not None and price > max_price:
            raise PriceExceededError(
                "Price exceeds your maximum",
                {"price": str(price), "max_price": str(max_price)},
            )

        balance = await self.ledger.get_balance(user_id)
        # Release the read snapshot before the slow provider call
        await self.db.commit()
        if balance < price:
            raise InsufficientBalanceError(required=price, available=balance)

        leased = await self.gateway.get_number(service, country, operator)
        logger.info(
            f"Leased {leased.activation_id} ({service}/{country}) for user {user_id} at {price}"
        )

        try:
            movement = await self.ledger.debit_if_sufficient(user_id, price)
            if movement is None:
                raise InsufficientBalanceError(
                    required=price, available=await self.ledger.get_balance(user_id)
                )

            now = datetime.utcnow()
            purchase = NumberPurchase(
                user_id=user_id,
                activation_id=leased.activation_id,
                phone_number=leased.phone_number,
                country_code=str(country),
                service_code=service,
                operator=operator,
                provider_cost=cost,
                price=price,
                status=NumberStatus.WAITING,
                purchase_date=now,
                expiry_date=now + self.lifetime,
                updated_at=now,
            )
            self.db.add(purchase)
            await self.ledger.record_transaction(
                TransactionType.PURCHASE,
                movement,
                reference_id=leased.activation_id,
                description=f"Number purchase {service}/{country} {leased.phone_number}",
            )
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            await self._release_lease(user_id, leased.activation_id, e)
            raise

        await self.db.refresh(purchase)
        await notify_safely(
            self.notifier,
            user_id,
            purchase_event(
                "number_purchased",
                purchase,
                price=format_amount(price),
                balance=format_amount(movement.balance_after),
            ),
        )
        return purchase

    async def _release_lease(self, user_id: int, activation_id: str, cause: Exception) -> None:
        """Cancel a lease the ledger did not pay for."""
        logger.warning(
            f"Purchase of {activation_id} for user {user_id} not recorded ({cause}), releasing"
        )
        try:
            await self.gateway.set_status(activation_id, ActivationAction.CANCEL)
        except ProviderError as e:
            logger.critical(
                f"RECONCILIATION REQUIRED: activation {activation_id} leased for user {user_id} "
                f"but not charged, and provider cancel failed: {e.message}"
            )
            raise ReconciliationRequiredError(
                "Number was leased but could not be recorded or released",
                {"activation_id": activation_id, "user_id": user_id},
            ) from cause

    # ============ Lifecycle ============

    async def _transition(
        self,
        purchase_id: int,
        from_statuses: tuple[NumberStatus, ...],
        to_status: NumberStatus,
        **values: Any,
    ) -> bool:
        """Move a purchase to ``to_status`` only if it is in ``from_statuses``."""
        result = await self.db.execute(
            update(NumberPurchase)
            .where(NumberPurchase.id == purchase_id, NumberPurchase.status.in_(from_statuses))
            .values(status=to_status, updated_at=datetime.utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def cancel(self, user_id: int, purchase_id: int) -> CancelResult:
        """Cancel a number and refund per the refund policy.

        Raises:
            InvalidStatusError: Number is not waiting/received
            CancelTooEarlyError: Dwell time not reached
            ProviderError: Provider refused the cancel (nothing refunded)
            ReconciliationRequiredError: Cancelled at the provider, refund not committed
        """
        purchase = await self.get_purchase(user_id, purchase_id)
        if purchase.status not in ACTIVE_NUMBER_STATUSES:
            raise InvalidStatusError(
                f"Number cannot be cancelled in status {purchase.status.value}",
                current_status=purchase.status.value,
            )

        now = datetime.utcnow()
        dwell = now - purchase.purchase_date
        if dwell < self.cancel_dwell:
            wait_seconds = int((self.cancel_dwell - dwell).total_seconds()) + 1
            raise CancelTooEarlyError(
                f"Numbers can be cancelled {int(self.cancel_dwell.total_seconds() // 60)} "
                f"minutes after purchase",
                {"wait_seconds": wait_seconds},
            )
        await self.db.commit()

        activation_id = purchase.activation_id
        await self.gateway.set_status(activation_id, ActivationAction.CANCEL)

        refund = self.refund_policy.refund_amount(purchase, datetime.utcnow())
        movement = None
        try:
            if not await self._transition(
                purchase.id, ACTIVE_NUMBER_STATUSES, NumberStatus.CANCELLED
            ):
                raise ConcurrentModificationError("Number status changed during cancellation")
            if refund > 0:
                movement = await self.ledger.credit(user_id, refund)
                await self.ledger.record_transaction(
                    TransactionType.REFUND,
                    movement,
                    reference_id=activation_id,
                    description=f"Refund for cancelled number {purchase.phone_number}",
                )
            await self.db.commit()
        except ConcurrentModificationError:
            await self.db.rollback()
            raise
        except Exception as e:
            await self.db.rollback()
            logger.critical(
                f"RECONCILIATION REQUIRED: activation {activation_id} cancelled at provider "
                f"but refund of {refund} for user {user_id} not committed: {e}"
            )
            raise ReconciliationRequiredError(
                "Number was cancelled but the refund could not be recorded",
                {"activation_id": activation_id, "refund": str(refund)},
            ) from e

        await self.db.refresh(purchase)
        logger.info(f"Cancelled {activation_id} for user {user_id}, refunded {refund}")
        await notify_safely(
            self.notifier,
            user_id,
            purchase_event("number_cancelled", purchase, refund=format_amount(refund)),
        )
        return CancelResult(
            purchase=purchase,
            refund_amount=refund,
            balance=movement.balance_after if movement else None,
        )

    async def complete(self, user_id: int, purchase_id: int) -> NumberPurchase:
        """Finish an activation whose code was received. No money moves."""
        purchase = await self.get_purchase(user_id, purchase_id)
        if purchase.status != NumberStatus.RECEIVED:
            raise InvalidStatusError(
                "Only numbers with a received code can be completed",
                current_status=purchase.status.value,
            )
        await self.db.commit()

        await self.gateway.set_status(purchase.activation_id, ActivationAction.FINISH)

        if not await self._transition(purchase.id, (NumberStatus.RECEIVED,), NumberStatus.USED):
            await self.db.rollback()
            raise ConcurrentModificationError("Number status changed during completion")
        await self.db.commit()
        await self.db.refresh(purchase)
        return purchase

    async def request_retry(self, user_id: int, purchase_id: int) -> NumberPurchase:
        """Ask the provider for another SMS and extend the lease."""
        purchase = await self.get_purchase(user_id, purchase_id)
        if purchase.status != NumberStatus.WAITING:
            raise InvalidStatusError(
                "Retry is only possible while waiting for a code",
                current_status=purchase.status.value,
            )
        await self.db.commit()

        await self.gateway.set_status(purchase.activation_id, ActivationAction.REQUEST_RETRY)

        expiry = datetime.utcnow() + self.lifetime
        if not await self._transition(
            purchase.id, (NumberStatus.WAITING,), NumberStatus.WAITING, expiry_date=expiry
        ):
            await self.db.rollback()
            raise ConcurrentModificationError("Number status changed during retry")
        await self.db.commit()
        await self.db.refresh(purchase)
        return purchase

    async def get_full_sms(self, user_id: int, purchase_id: int) -> str:
        """Fetch and store the full SMS text of a received number."""
        purchase = await self.get_purchase(user_id, purchase_id)
        if purchase.status != NumberStatus.RECEIVED:
            raise InvalidStatusError(
                "Full SMS is only available once a code was received",
                current_status=purchase.status.value,
            )
        await self.db.commit()

        text = await self.gateway.get_full_sms(purchase.activation_id)
        await self.db.execute(
            update(NumberPurchase)
            .where(NumberPurchase.id == purchase.id)
            .values(sms_text=text, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return text

    async def refresh_status(self, purchase: NumberPurchase) -> NumberPurchase:
        """Poll the provider for a waiting number.

        Marks it ``received`` when a code arrived, or ``expired`` once the
        lease elapsed without one. Provider errors leave the stored state.
        """
        if purchase.status != NumberStatus.WAITING:
            return purchase

        try:
            status = await self.gateway.get_status(purchase.activation_id)
        except ProviderError as e:
            logger.warning(f"Status refresh for {purchase.activation_id} failed: {e.message}")
            status = None

        now = datetime.utcnow()
        if status is not None and status.state == "received" and status.code:
            if await self._transition(
                purchase.id,
                (NumberStatus.WAITING,),
                NumberStatus.RECEIVED,
                sms_code=status.code,
                received_at=now,
            ):
                await self.db.commit()
                await self.db.refresh(purchase)
                logger.info(f"Code received for {purchase.activation_id}")
                await notify_safely(
                    self.notifier,
                    purchase.user_id,
                    purchase_event("sms_received", purchase, code=status.code),
                )
            else:
                await self.db.refresh(purchase)
            return purchase

        if purchase.is_expired(now):
            await self._expire(purchase)
        return purchase

    async def _expire(self, purchase: NumberPurchase) -> bool:
        if not await self._transition(purchase.id, (NumberStatus.WAITING,), NumberStatus.EXPIRED):
            await self.db.refresh(purchase)
            return False
        await self.db.commit()
        await self.db.refresh(purchase)
        logger.info(f"Number {purchase.activation_id} expired without a code")
        await notify_safely(
            self.notifier, purchase.user_id, purchase_event("number_expired", purchase)
        )
        return True

    async def get_status(self, user_id: int, purchase_id: int) -> NumberPurchase:
        """Current status of one number, refreshed from the provider if waiting."""
        purchase = await self.get_purchase(user_id, purchase_id)
        return await self.refresh_status(purchase)

    async def expire_overdue(self, limit: int = 500) -> int:
        """Mark waiting numbers past their expiry as expired.

        Returns:
            Number of purchases expired
        """
        result = await self.db.execute(
            select(NumberPurchase.id)
            .where(
                NumberPurchase.status == NumberStatus.WAITING,
                NumberPurchase.expiry_date < datetime.utcnow(),
            )
            .order_by(NumberPurchase.expiry_date)
            .limit(limit)
        )
        overdue_ids = list(result.scalars().all())

        expired = 0
        for purchase_id in overdue_ids:
            purchase = await self.db.get(NumberPurchase, purchase_id)
            if purchase is not None and await self._expire(purchase):
                expired += 1
        if expired:
            logger.info(f"Expired {expired} overdue numbers")
        return expired
