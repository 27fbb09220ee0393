"""
Lock expiry processor — locks subscriptions whose trial, cancellation or
grace window has run out.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from core.state_machine import BillingEvent, LockReason, SubscriptionStateMachine
from services.ports import LifecycleEvent, LockCandidate, NotificationDispatcher, UnitOfWork

logger = logging.getLogger(__name__)


@dataclass
class LockOutcome:
    subscription_id: int
    locked: bool
    reason: Optional[LockReason] = None
    locked_at: Optional[datetime] = None
    data_retention_until: Optional[datetime] = None
    notified: bool = False
    detail: str = ""


class LockExpiryProcessor:
    def __init__(
        self,
        uow_factory: Callable[[], UnitOfWork],
        notifier: NotificationDispatcher,
        machine: Optional[SubscriptionStateMachine] = None,
        data_retention: timedelta = timedelta(days=30),
    ):
        self.uow_factory = uow_factory
        self.notifier = notifier
        self.machine = machine or SubscriptionStateMachine()
        self.data_retention = data_retention

    def lock_if_expired(self, candidate: LockCandidate, now: datetime) -> LockOutcome:
        """
        Lock one subscription if it is still in the state that made it
        eligible and the lock guard still holds at `now`.
        """
        sub_id = candidate.subscription.id
        origin = candidate.subscription.status

        with self.uow_factory() as uow:
            current = uow.subscriptions.get(sub_id)
            if current is None or current.status != origin:
                return LockOutcome(sub_id, False, detail="state changed")

            reason = self.machine.lock_reason(current, now)
            target = self.machine.target(current.status, BillingEvent.lock_sweep)
            if reason is None or target is None or reason != candidate.reason:
                return LockOutcome(sub_id, False, detail="lock guard no longer holds")

            retention_until = now + self.data_retention
            updated = uow.subscriptions.compare_and_update(
                sub_id,
                expected={"status": origin},
                values={
                    "status": target.value,
                    "locked_at": now,
                    "data_retention_until": retention_until,
                },
            )
            if not updated:
                uow.rollback()
                return LockOutcome(sub_id, False, detail="locked by a concurrent run")
            uow.commit()

        logger.info(f"Subscription {sub_id} locked ({reason.value}), data kept until {retention_until}")
        outcome = LockOutcome(
            sub_id, True, reason=reason,
            locked_at=now, data_retention_until=retention_until,
        )
        outcome.notified = self._notify(current, reason)
        return outcome

    def _notify(self, sub, reason: LockReason) -> bool:
        event = LifecycleEvent(
            event_type="account_locked",
            tenant_id=sub.tenant_id,
            subscription_id=sub.id,
            shop_name=sub.shop_name,
            plan_name=sub.plan_name,
            lock_reason=reason.value,
        )
        try:
            return self.notifier.notify(sub.owner_id, event)
        except Exception as e:
            logger.warning(f"Subscription {sub.id}: account_locked notification failed: {e}")
            return False
