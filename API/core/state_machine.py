"""
Subscription state machine.

Pure logic: legal states, the transition table and its guards. Processors
ask the machine for the target state before writing anything, and skip
the item when the machine has no transition for the (state, event) pair.

    trial     --lock_sweep  [trial_end < now]                       --> locked
    active    --renew_paid  [balance >= price]                      --> active
    active    --renew_unpaid [balance < price]                      --> past_due
    past_due  --lock_sweep  [now - period_end > grace]              --> locked
    canceled  --lock_sweep  [cancel_at_period_end, period_end < now] --> locked
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from database.models import SubscriptionStatus


class BillingEvent(str, Enum):
    renew_paid = "renew_paid"
    renew_unpaid = "renew_unpaid"
    lock_sweep = "lock_sweep"


class LockReason(str, Enum):
    trial_expired = "trial_expired"
    subscription_expired = "subscription_expired"
    payment_overdue = "payment_overdue"


_TRANSITIONS = {
    (SubscriptionStatus.trial, BillingEvent.lock_sweep): SubscriptionStatus.locked,
    (SubscriptionStatus.active, BillingEvent.renew_paid): SubscriptionStatus.active,
    (SubscriptionStatus.active, BillingEvent.renew_unpaid): SubscriptionStatus.past_due,
    (SubscriptionStatus.past_due, BillingEvent.lock_sweep): SubscriptionStatus.locked,
    (SubscriptionStatus.canceled, BillingEvent.lock_sweep): SubscriptionStatus.locked,
}

# Which lock reason each originating state carries
LOCK_REASONS = {
    SubscriptionStatus.trial: LockReason.trial_expired,
    SubscriptionStatus.canceled: LockReason.subscription_expired,
    SubscriptionStatus.past_due: LockReason.payment_overdue,
}


class SubscriptionStateMachine:
    def __init__(self, grace_period: timedelta = timedelta(days=7)):
        self.grace_period = grace_period

    def target(self, status, event: BillingEvent) -> Optional[SubscriptionStatus]:
        """Target state for (status, event), or None when the pair is not in the table."""
        try:
            status = SubscriptionStatus(status)
        except ValueError:
            return None
        return _TRANSITIONS.get((status, event))

    def renewal_event(self, balance, price) -> BillingEvent:
        return BillingEvent.renew_paid if balance >= price else BillingEvent.renew_unpaid

    def lock_reason(self, subscription, now: datetime) -> Optional[LockReason]:
        """
        Guard of the lock sweep. Returns the reason the subscription must be
        locked at `now`, or None when no lock guard holds.
        """
        try:
            status = SubscriptionStatus(subscription.status)
        except ValueError:
            return None

        if status == SubscriptionStatus.trial:
            if subscription.trial_end is not None and subscription.trial_end < now:
                return LockReason.trial_expired
        elif status == SubscriptionStatus.canceled:
            if (
                subscription.cancel_at_period_end
                and subscription.current_period_end is not None
                and subscription.current_period_end < now
            ):
                return LockReason.subscription_expired
        elif status == SubscriptionStatus.past_due:
            if (
                subscription.current_period_end is not None
                and now - subscription.current_period_end > self.grace_period
            ):
                return LockReason.payment_overdue
        return None
