"""
Renewal processor — charge-or-fail transition for one subscription due for renewal.

Debit, period advance and paid invoice form one logical transaction. With a
ledger in the billing database they share the unit's commit; with an
external ledger a failure after the debit is compensated by reverse().

The conditional debit under the period's idempotency key decides between
renewal and past_due. A debit that landed on an earlier run whose reply was
lost is replayed by the ledger and finishes the renewal it belongs to.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Callable, Optional

from core.exceptions import ConflictError, InsufficientFundsError, TransientItemError
from core.state_machine import BillingEvent, SubscriptionStateMachine
from database.models import InvoiceStatus, SubscriptionStatus
from services.ports import (
    DebitResult, InvoiceDraft, LifecycleEvent, NotificationDispatcher,
    SubscriptionSnapshot, UnitOfWork,
)
from utils.helpers import add_months

logger = logging.getLogger(__name__)

INSUFFICIENT_BALANCE = "insufficient_balance"


class RenewalResult(str, Enum):
    renewed = "renewed"
    past_due = "past_due"
    skipped = "skipped"


@dataclass
class RenewalOutcome:
    subscription_id: int
    result: RenewalResult
    invoice_id: Optional[int] = None
    balance: Optional[Decimal] = None
    notified: bool = False
    detail: str = ""


def renewal_idempotency_key(subscription: SubscriptionSnapshot) -> str:
    """One key per (subscription, period being renewed)."""
    return f"subscription-renewal:{subscription.id}:{subscription.current_period_end.isoformat()}"


class RenewalProcessor:
    def __init__(
        self,
        uow_factory: Callable[[], UnitOfWork],
        notifier: NotificationDispatcher,
        machine: Optional[SubscriptionStateMachine] = None,
    ):
        self.uow_factory = uow_factory
        self.notifier = notifier
        self.machine = machine or SubscriptionStateMachine()

    def renew(self, candidate: SubscriptionSnapshot, now: datetime) -> RenewalOutcome:
        """
        Renew one subscription picked by the eligibility scan.

        Returns a skipped outcome when a concurrent run already advanced or
        changed the subscription. Transient failures propagate and leave the
        subscription untouched.
        """
        with self.uow_factory() as uow:
            current = uow.subscriptions.get(candidate.id)
            if not self._still_due(current, candidate):
                return RenewalOutcome(candidate.id, RenewalResult.skipped, detail="already handled")

            price = Decimal(current.price)
            outcome = self._charge(uow, current, price, now)

        if outcome.result != RenewalResult.skipped:
            outcome.notified = self._notify(current, outcome, price)
        return outcome

    # ==================== TRANSITIONS ====================

    def _charge(self, uow: UnitOfWork, sub: SubscriptionSnapshot, price: Decimal,
                now: datetime) -> RenewalOutcome:
        if self.machine.target(sub.status, BillingEvent.renew_paid) != SubscriptionStatus.active:
            return RenewalOutcome(sub.id, RenewalResult.skipped, detail=f"no renewal from {sub.status}")

        key = renewal_idempotency_key(sub)
        new_start = sub.current_period_end
        new_end = add_months(new_start, 1)

        try:
            debit = uow.ledger.debit(
                sub.tenant_id, price, key,
                description=f"Subscription renewal: {sub.plan_name}",
            )
        except InsufficientFundsError as e:
            uow.rollback()
            if self.machine.renewal_event(e.balance, price) == BillingEvent.renew_paid:
                raise TransientItemError(
                    f"Subscription {sub.id}: balance changed to {e.balance} during the debit"
                ) from e
            return self._mark_past_due(uow, sub, price, e.balance)
        except ConflictError as e:
            uow.rollback()
            logger.error(f"Subscription {sub.id}: debit {key} cannot be resolved ({e})")
            raise TransientItemError(
                f"Debit {key} for subscription {sub.id} conflicts with an existing ledger entry"
            ) from e
        if debit.replayed:
            logger.warning(f"Subscription {sub.id}: completing renewal with earlier debit {debit.entry_ref}")

        try:
            updated = uow.subscriptions.compare_and_update(
                sub.id,
                expected={
                    "status": SubscriptionStatus.active.value,
                    "current_period_end": sub.current_period_end,
                },
                values={"current_period_start": new_start, "current_period_end": new_end},
            )
            if not updated:
                raise ConflictError(f"Subscription {sub.id} changed during renewal")
            invoice_id = uow.invoices.create(InvoiceDraft(
                subscription_id=sub.id,
                tenant_id=sub.tenant_id,
                plan_id=sub.plan_id,
                amount=price,
                status=InvoiceStatus.paid.value,
                period_start=new_start,
                period_end=new_end,
                paid_at=now,
                ledger_entry_ref=debit.entry_ref,
            ))
            uow.commit()
        except ConflictError as e:
            self._undo_debit(uow, sub, debit, key, new_end)
            logger.info(f"Subscription {sub.id}: lost renewal race ({e})")
            return RenewalOutcome(sub.id, RenewalResult.skipped, detail=str(e))
        except Exception:
            self._undo_debit(uow, sub, debit, key, new_end)
            raise

        logger.info(
            f"Subscription {sub.id} renewed until {new_end.isoformat()}, "
            f"balance {debit.new_balance}"
        )
        return RenewalOutcome(
            sub.id, RenewalResult.renewed, invoice_id=invoice_id, balance=debit.new_balance
        )

    def _mark_past_due(self, uow: UnitOfWork, sub: SubscriptionSnapshot, price: Decimal,
                       balance: Decimal) -> RenewalOutcome:
        target = self.machine.target(sub.status, BillingEvent.renew_unpaid)
        if target is None:
            return RenewalOutcome(sub.id, RenewalResult.skipped, detail=f"no past_due from {sub.status}")

        period_start = sub.current_period_end
        try:
            updated = uow.subscriptions.compare_and_update(
                sub.id,
                expected={
                    "status": SubscriptionStatus.active.value,
                    "current_period_end": sub.current_period_end,
                },
                values={"status": target.value},
            )
            if not updated:
                raise ConflictError(f"Subscription {sub.id} changed before past_due")
            invoice_id = uow.invoices.create(InvoiceDraft(
                subscription_id=sub.id,
                tenant_id=sub.tenant_id,
                plan_id=sub.plan_id,
                amount=price,
                status=InvoiceStatus.failed.value,
                period_start=period_start,
                period_end=add_months(period_start, 1),
                failure_reason=INSUFFICIENT_BALANCE,
            ))
            uow.commit()
        except ConflictError as e:
            uow.rollback()
            logger.info(f"Subscription {sub.id}: {e}")
            return RenewalOutcome(sub.id, RenewalResult.skipped, detail=str(e))

        logger.info(f"Subscription {sub.id} past_due: balance {balance} < price {price}")
        return RenewalOutcome(sub.id, RenewalResult.past_due, invoice_id=invoice_id, balance=balance)

    def _undo_debit(self, uow: UnitOfWork, sub: SubscriptionSnapshot, debit: DebitResult,
                    key: str, new_end: datetime):
        uow.rollback()
        if uow.transactional:
            return
        try:
            current = uow.subscriptions.get(sub.id)
            if current is not None and current.current_period_end == new_end:
                # The period was renewed by the run holding this key's debit
                logger.info(f"Subscription {sub.id}: ledger entry {debit.entry_ref} belongs to a completed renewal")
                return
            uow.ledger.reverse(sub.tenant_id, debit.entry_ref, key)
        except Exception as e:
            logger.error(
                f"Subscription {sub.id}: reversal of ledger entry {debit.entry_ref} failed: {e}"
            )
            raise TransientItemError(
                f"Debit {debit.entry_ref} for subscription {sub.id} could not be reversed"
            ) from e
        logger.warning(f"Subscription {sub.id}: ledger entry {debit.entry_ref} reversed")

    # ==================== HELPERS ====================

    @staticmethod
    def _still_due(current: Optional[SubscriptionSnapshot], candidate: SubscriptionSnapshot) -> bool:
        return (
            current is not None
            and current.status == SubscriptionStatus.active.value
            and not current.cancel_at_period_end
            and current.current_period_end is not None
            and current.current_period_end == candidate.current_period_end
        )

    def _notify(self, sub: SubscriptionSnapshot, outcome: RenewalOutcome, price: Decimal) -> bool:
        event_type = (
            "subscription_renewed" if outcome.result == RenewalResult.renewed else "renewal_failed"
        )
        event = LifecycleEvent(
            event_type=event_type,
            tenant_id=sub.tenant_id,
            subscription_id=sub.id,
            shop_name=sub.shop_name,
            plan_name=sub.plan_name,
            amount=price,
            balance=outcome.balance,
        )
        try:
            return self.notifier.notify(sub.owner_id, event)
        except Exception as e:
            logger.warning(f"Subscription {sub.id}: {event_type} notification failed: {e}")
            return False
