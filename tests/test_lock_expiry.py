"""
Tests for the lock sweep: expired trials, ended cancellations and
overdue past_due accounts.
"""

from datetime import timedelta

from sqlalchemy import update

from conftest import NOW
from core.state_machine import LockReason
from database.models import MerchantSubscription
from services.ports import LockCandidate


class TestLockExpiry:

    def test_expired_trial_is_locked(self, controller, factory):
        sub = factory.subscription(status="trial", trial_end=NOW - timedelta(hours=1))

        summary = controller.run_lock_expired(NOW)

        assert summary.locked == 1
        assert summary.locked_by_reason["trial_expired"] == 1

        locked = factory.get(sub.id)
        assert locked.status == "locked"
        assert locked.locked_at == NOW
        assert locked.data_retention_until == NOW + timedelta(days=30)

        notes = factory.notifications()
        assert [n.type for n in notes] == ["account_locked"]
        assert notes[0].data["lock_reason"] == "trial_expired"
        assert summary.notifications_sent == 1

    def test_running_trial_untouched(self, controller, factory):
        sub = factory.subscription(status="trial", trial_end=NOW + timedelta(days=2))

        summary = controller.run_lock_expired(NOW)

        assert summary.locked == 0
        assert factory.get(sub.id).status == "trial"

    def test_past_due_beyond_grace_is_locked(self, controller, factory):
        sub = factory.subscription(status="past_due", period_end=NOW - timedelta(days=8))

        summary = controller.run_lock_expired(NOW)

        assert summary.locked_by_reason["payment_overdue"] == 1
        assert factory.get(sub.id).status == "locked"
        assert factory.notifications()[0].data["lock_reason"] == "payment_overdue"

    def test_past_due_within_grace_untouched(self, controller, factory):
        sub = factory.subscription(status="past_due", period_end=NOW - timedelta(days=3))

        summary = controller.run_lock_expired(NOW)

        assert summary.locked == 0
        current = factory.get(sub.id)
        assert current.status == "past_due"
        assert current.locked_at is None

    def test_ended_cancellation_is_locked(self, controller, factory):
        sub = factory.subscription(
            status="canceled", period_end=NOW - timedelta(hours=3), cancel_at_period_end=True
        )

        summary = controller.run_lock_expired(NOW)

        assert summary.locked_by_reason["subscription_expired"] == 1
        assert factory.get(sub.id).status == "locked"

    def test_cancellation_with_period_left_untouched(self, controller, factory):
        sub = factory.subscription(
            status="canceled", period_end=NOW + timedelta(days=10), cancel_at_period_end=True
        )

        controller.run_lock_expired(NOW)

        assert factory.get(sub.id).status == "canceled"

    def test_active_never_locked(self, controller, factory):
        sub = factory.subscription(status="active", balance="0", period_end=NOW - timedelta(days=40))

        summary = controller.run_lock_expired(NOW)

        assert summary.locked == 0
        assert factory.get(sub.id).status == "active"

    def test_lock_is_idempotent(self, controller, factory):
        sub = factory.subscription(status="trial", trial_end=NOW - timedelta(days=1))

        controller.run_lock_expired(NOW)
        later = NOW + timedelta(hours=6)
        second = controller.run_lock_expired(later)

        assert second.locked == 0
        locked = factory.get(sub.id)
        assert locked.locked_at == NOW
        assert locked.data_retention_until == NOW + timedelta(days=30)
        assert len(factory.notifications()) == 1

    def test_reactivated_account_with_old_lock_stamp_locks_again(self, controller, factory, database):
        sub = factory.subscription(status="past_due", period_end=NOW - timedelta(days=10))
        # Unlocked elsewhere without clearing the previous lock stamp
        with database.get_session() as session:
            session.execute(
                update(MerchantSubscription)
                .where(MerchantSubscription.id == sub.id)
                .values(locked_at=NOW - timedelta(days=60))
            )

        summary = controller.run_lock_expired(NOW)

        assert summary.locked_by_reason["payment_overdue"] == 1
        locked = factory.get(sub.id)
        assert locked.status == "locked"
        assert locked.locked_at == NOW
        assert locked.data_retention_until == NOW + timedelta(days=30)

    def test_stale_candidate_skipped(self, controller, factory, database):
        sub = factory.subscription(status="trial", trial_end=NOW - timedelta(days=1))
        with controller.uow_factory() as uow:
            snapshot = uow.subscriptions.get(sub.id)

        # Owner upgraded between the scan and the lock
        with database.get_session() as session:
            session.execute(
                update(MerchantSubscription)
                .where(MerchantSubscription.id == sub.id)
                .values(status="active", current_period_end=NOW + timedelta(days=30))
            )

        outcome = controller.locks.lock_if_expired(
            LockCandidate(snapshot, LockReason.trial_expired), NOW
        )

        assert not outcome.locked
        assert factory.get(sub.id).status == "active"
        assert factory.notifications() == []

    def test_guard_rechecked_against_current_row(self, controller, factory, database):
        sub = factory.subscription(status="trial", trial_end=NOW - timedelta(days=1))
        with controller.uow_factory() as uow:
            snapshot = uow.subscriptions.get(sub.id)

        # Trial extended after the scan
        with database.get_session() as session:
            session.execute(
                update(MerchantSubscription)
                .where(MerchantSubscription.id == sub.id)
                .values(trial_end=NOW + timedelta(days=7))
            )

        outcome = controller.locks.lock_if_expired(
            LockCandidate(snapshot, LockReason.trial_expired), NOW
        )

        assert not outcome.locked
        assert factory.get(sub.id).status == "trial"

    def test_every_reason_in_one_sweep(self, controller, factory):
        factory.subscription(status="trial", trial_end=NOW - timedelta(days=1))
        factory.subscription(status="trial", trial_end=NOW - timedelta(days=2))
        factory.subscription(status="canceled", period_end=NOW - timedelta(days=1), cancel_at_period_end=True)
        factory.subscription(status="past_due", period_end=NOW - timedelta(days=10))

        summary = controller.run_lock_expired(NOW)

        assert summary.locked == 4
        assert summary.locked_by_reason == {
            "trial_expired": 2,
            "subscription_expired": 1,
            "payment_overdue": 1,
        }
        assert summary.errors == []
