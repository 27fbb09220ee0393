"""
Trial reminder processor — warns owners N days before their trial ends.
"""

import logging

from services.ports import LifecycleEvent, NotificationDispatcher, SubscriptionSnapshot

logger = logging.getLogger(__name__)


class TrialReminderProcessor:
    def __init__(self, notifier: NotificationDispatcher):
        self.notifier = notifier

    def remind(self, subscription: SubscriptionSnapshot, days_remaining: int) -> bool:
        event = LifecycleEvent(
            event_type="trial_reminder",
            tenant_id=subscription.tenant_id,
            subscription_id=subscription.id,
            shop_name=subscription.shop_name,
            days_remaining=days_remaining,
            trial_end=subscription.trial_end,
        )
        try:
            sent = self.notifier.notify(subscription.owner_id, event)
        except Exception as e:
            logger.warning(f"Subscription {subscription.id}: trial reminder failed: {e}")
            return False
        if sent:
            logger.info(f"Sent {days_remaining}-day trial reminder to {subscription.shop_name}")
        return sent
