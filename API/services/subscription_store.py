"""
SQL subscription store — eligibility scans and conditional updates.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.exceptions import QueryError
from core.state_machine import LockReason
from database.base import get_utc_now
from database.models import (
    MerchantSubscription, SubscriptionPlan, SubscriptionStatus, Tenant
)
from services.ports import LockCandidate, SubscriptionSnapshot


_MUTABLE_FIELDS = {
    "status", "current_period_start", "current_period_end",
    "cancel_at_period_end", "canceled_at", "locked_at", "data_retention_until",
}


class SqlSubscriptionStore:
    def __init__(
        self, db: Session,
        renewal_window: timedelta = timedelta(days=1),
        renewal_catch_up: bool = True,
        grace_period: timedelta = timedelta(days=7),
    ):
        self.db = db
        self.renewal_window = renewal_window
        self.renewal_catch_up = renewal_catch_up
        self.grace_period = grace_period

    # ==================== READS ====================

    def _base_query(self):
        return self.db.query(MerchantSubscription, SubscriptionPlan, Tenant).join(
            SubscriptionPlan, SubscriptionPlan.id == MerchantSubscription.plan_id
        ).join(
            Tenant, Tenant.id == MerchantSubscription.tenant_id
        )

    def get(self, subscription_id: int) -> Optional[SubscriptionSnapshot]:
        row = self._base_query().filter(MerchantSubscription.id == subscription_id).first()
        return self._to_snapshot(*row) if row else None

    def query_renewal_eligible(self, now: datetime) -> List[SubscriptionSnapshot]:
        """
        Active, not cancelling, period ending before now + window.
        Without catch-up the window is the strict [now, now + window).
        """
        filters = [
            MerchantSubscription.status == SubscriptionStatus.active.value,
            MerchantSubscription.cancel_at_period_end == False,  # noqa: E712
            MerchantSubscription.current_period_end != None,  # noqa: E711
            MerchantSubscription.current_period_end < now + self.renewal_window,
        ]
        if not self.renewal_catch_up:
            filters.append(MerchantSubscription.current_period_end >= now)
        return self._scan(and_(*filters), MerchantSubscription.current_period_end)

    def query_lock_eligible(self, now: datetime) -> List[LockCandidate]:
        """Union of the three lock sweeps, each tagged with its reason."""
        trials = self._scan(and_(
            MerchantSubscription.status == SubscriptionStatus.trial.value,
            MerchantSubscription.trial_end != None,  # noqa: E711
            MerchantSubscription.trial_end < now,
        ), MerchantSubscription.trial_end)

        canceled = self._scan(and_(
            MerchantSubscription.status == SubscriptionStatus.canceled.value,
            MerchantSubscription.cancel_at_period_end == True,  # noqa: E712
            MerchantSubscription.current_period_end != None,  # noqa: E711
            MerchantSubscription.current_period_end < now,
        ), MerchantSubscription.current_period_end)

        overdue = self._scan(and_(
            MerchantSubscription.status == SubscriptionStatus.past_due.value,
            MerchantSubscription.current_period_end != None,  # noqa: E711
            MerchantSubscription.current_period_end < now - self.grace_period,
        ), MerchantSubscription.current_period_end)

        return (
            [LockCandidate(s, LockReason.trial_expired) for s in trials]
            + [LockCandidate(s, LockReason.subscription_expired) for s in canceled]
            + [LockCandidate(s, LockReason.payment_overdue) for s in overdue]
        )

    def query_trial_ending(self, start: datetime, end: datetime) -> List[SubscriptionSnapshot]:
        """Trials whose trial_end falls in [start, end)."""
        return self._scan(and_(
            MerchantSubscription.status == SubscriptionStatus.trial.value,
            MerchantSubscription.trial_end >= start,
            MerchantSubscription.trial_end < end,
        ), MerchantSubscription.trial_end)

    def _scan(self, criteria, order_by) -> List[SubscriptionSnapshot]:
        try:
            rows = self._base_query().filter(criteria).order_by(
                order_by.asc(), MerchantSubscription.id.asc()
            ).all()
        except SQLAlchemyError as e:
            raise QueryError(f"Subscription scan failed: {e}") from e
        return [self._to_snapshot(*row) for row in rows]

    # ==================== WRITES ====================

    def compare_and_update(
        self, subscription_id: int, expected: Dict[str, Any], values: Dict[str, Any]
    ) -> bool:
        """
        Single conditional UPDATE. Returns False when another writer changed
        any expected field first (or the row does not exist).
        """
        unknown = (set(expected) | set(values)) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown subscription fields: {sorted(unknown)}")

        conditions = [MerchantSubscription.id == subscription_id]
        for name, value in expected.items():
            column = getattr(MerchantSubscription, name)
            conditions.append(column.is_(None) if value is None else column == value)

        stmt = (
            update(MerchantSubscription)
            .where(*conditions)
            .values(**values, updated_at=get_utc_now())
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        return result.rowcount == 1

    # ==================== HELPERS ====================

    @staticmethod
    def _to_snapshot(sub: MerchantSubscription, plan: SubscriptionPlan, tenant: Tenant) -> SubscriptionSnapshot:
        return SubscriptionSnapshot(
            id=sub.id,
            tenant_id=sub.tenant_id,
            owner_id=tenant.owner_id,
            shop_name=tenant.name,
            plan_id=plan.id,
            plan_name=plan.name,
            price=plan.price,
            status=sub.status,
            trial_end=sub.trial_end,
            current_period_start=sub.current_period_start,
            current_period_end=sub.current_period_end,
            cancel_at_period_end=bool(sub.cancel_at_period_end),
            locked_at=sub.locked_at,
            data_retention_until=sub.data_retention_until,
        )
