"""
Tests for the billing cycle controller: sweep order, audit log,
continue-on-error, scan failures and trial reminders.
"""

from datetime import timedelta
from decimal import Decimal

import httpx
import pytest

from conftest import NOW, assemble_controller
from core.exceptions import QueryError
from services.billing_cycle import (
    JOB_AUTO_RENEW, JOB_FULL_CYCLE, JOB_LOCK_EXPIRED, JOB_TRIAL_REMINDER,
)
from services.notifications import HttpNotificationDispatcher
from services.subscription_store import SqlSubscriptionStore


class TestFullCycle:

    def test_cycle_runs_every_sweep(self, controller, factory):
        paid = factory.subscription(balance="150.00", period_end=NOW + timedelta(hours=3))
        unpaid = factory.subscription(balance="5.00", period_end=NOW + timedelta(hours=3))
        trial = factory.subscription(status="trial", trial_end=NOW - timedelta(hours=1))
        reminder = factory.subscription(status="trial", trial_end=NOW + timedelta(days=3, hours=2))

        summary = controller.run_billing_cycle(NOW)

        assert summary.renewed == 1
        assert summary.failed_insufficient_balance == 1
        assert summary.locked == 1
        assert summary.trial_reminders_sent == 1
        assert summary.notifications_sent == 4
        assert summary.errors == []

        assert factory.get(paid.id).status == "active"
        assert factory.get(unpaid.id).status == "past_due"
        assert factory.get(trial.id).status == "locked"
        assert factory.get(reminder.id).status == "trial"

    def test_fresh_past_due_not_locked_in_same_cycle(self, controller, factory):
        period_end = NOW + timedelta(hours=3)
        sub = factory.subscription(balance="0", period_end=period_end)

        summary = controller.run_billing_cycle(NOW)

        # Grace counts from the unpaid period end
        assert summary.failed_insufficient_balance == 1
        assert summary.locked == 0
        assert factory.get(sub.id).status == "past_due"

        within_grace = controller.run_billing_cycle(period_end + timedelta(days=6))
        assert within_grace.locked == 0

        next_day = controller.run_billing_cycle(period_end + timedelta(days=8))
        assert next_day.locked == 1
        assert factory.get(sub.id).status == "locked"

    def test_one_audit_row_per_invocation(self, controller, factory):
        factory.subscription(balance="150.00", period_end=NOW + timedelta(hours=3))

        controller.run_billing_cycle(NOW)
        controller.run_auto_renew(NOW)
        controller.run_lock_expired(NOW)
        controller.run_trial_reminder(NOW)

        logs = factory.cron_logs()
        assert [log.job_name for log in logs] == [
            JOB_FULL_CYCLE, JOB_AUTO_RENEW, JOB_LOCK_EXPIRED, JOB_TRIAL_REMINDER,
        ]
        assert logs[0].executed_at == NOW
        assert logs[0].success is True
        assert logs[0].result["renewed"] == 1
        assert logs[1].result["renewed"] == 0

    def test_empty_cycle_still_audited(self, controller, factory):
        summary = controller.run_billing_cycle(NOW)

        assert summary.renewed == 0
        assert len(factory.cron_logs()) == 1

    def test_many_items_on_bounded_pool(self, database, factory):
        subs = [
            factory.subscription(balance="150.00", period_end=NOW + timedelta(minutes=i))
            for i in range(12)
        ]
        controller = assemble_controller(database, worker_count=3)

        summary = controller.run_auto_renew(NOW)

        assert summary.renewed == len(subs)
        assert all(factory.balance(s.tenant_id) == Decimal("50.00") for s in subs)


class TestFailures:

    def test_item_failure_does_not_stop_cycle(self, database, factory, wallet_service):
        broken = factory.subscription(period_end=NOW + timedelta(hours=1))
        healthy = factory.subscription(period_end=NOW + timedelta(hours=1))
        trial = factory.subscription(status="trial", trial_end=NOW - timedelta(days=1))
        wallet_service.balances[healthy.tenant_id] = Decimal("200.00")
        wallet_service.unavailable.add(broken.tenant_id)
        controller = assemble_controller(database, ledger_factory=wallet_service.ledger)

        summary = controller.run_billing_cycle(NOW)

        assert summary.renewed == 1
        assert summary.failed_other == 1
        assert summary.locked == 1
        assert factory.get(trial.id).status == "locked"

        log = factory.cron_logs()[0]
        assert log.success is False
        assert log.result["failed_other"] == 1
        assert len(log.result["errors"]) == 1

    def test_scan_failure_aborts_and_is_audited(self, controller, factory, monkeypatch):
        trial = factory.subscription(status="trial", trial_end=NOW - timedelta(days=1))

        def broken_scan(self, now):
            raise QueryError("connection refused")

        monkeypatch.setattr(SqlSubscriptionStore, "query_renewal_eligible", broken_scan)

        with pytest.raises(QueryError):
            controller.run_billing_cycle(NOW)

        # Lock sweep never ran
        assert factory.get(trial.id).status == "trial"

        logs = factory.cron_logs()
        assert len(logs) == 1
        assert logs[0].success is False
        assert "connection refused" in logs[0].result["errors"][0]

    def test_scan_failure_keeps_completed_work(self, controller, factory, monkeypatch):
        sub = factory.subscription(balance="150.00", period_end=NOW + timedelta(hours=2))

        def broken_scan(self, now):
            raise QueryError("connection refused")

        monkeypatch.setattr(SqlSubscriptionStore, "query_lock_eligible", broken_scan)

        with pytest.raises(QueryError) as exc:
            controller.run_billing_cycle(NOW)

        assert factory.get(sub.id).current_period_end != NOW + timedelta(hours=2)
        assert exc.value.summary.renewed == 1
        assert "connection refused" in exc.value.summary.errors[0]
        assert factory.cron_logs()[0].result["renewed"] == 1

    def test_notification_failure_does_not_undo_renewal(self, database, factory):
        sub = factory.subscription(balance="150.00", period_end=NOW + timedelta(hours=1))
        notifier = HttpNotificationDispatcher(
            "http://notifier.test",
            transport=httpx.MockTransport(lambda request: httpx.Response(500)),
        )
        controller = assemble_controller(database, notifier=notifier)

        summary = controller.run_auto_renew(NOW)

        assert summary.renewed == 1
        assert summary.notifications_sent == 0
        assert summary.errors == []
        assert factory.balance(sub.tenant_id) == Decimal("50.00")


class TestTrialReminders:

    @pytest.mark.parametrize("days", [7, 3, 1])
    def test_reminder_sent_on_configured_days(self, controller, factory, days):
        sub = factory.subscription(status="trial", trial_end=NOW + timedelta(days=days, hours=5))

        summary = controller.run_trial_reminder(NOW)

        assert summary.trial_reminders_sent == 1
        notes = factory.notifications()
        assert notes[0].type == "trial_reminder"
        assert notes[0].data["days_remaining"] == days
        assert notes[0].data["subscription_id"] == sub.id

    def test_no_reminder_on_other_days(self, controller, factory):
        factory.subscription(status="trial", trial_end=NOW + timedelta(days=5))
        factory.subscription(status="trial", trial_end=NOW + timedelta(days=10))

        summary = controller.run_trial_reminder(NOW)

        assert summary.trial_reminders_sent == 0
        assert factory.notifications() == []

    def test_reminder_skipped_without_owner(self, controller, factory):
        factory.subscription(status="trial", trial_end=NOW + timedelta(days=1, hours=1), owner_id="")

        summary = controller.run_trial_reminder(NOW)

        assert summary.trial_reminders_sent == 0
        assert summary.errors == []
