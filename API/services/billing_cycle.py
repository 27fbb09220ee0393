"""
Billing cycle controller — entry point of the recurring control loop.

One invocation:
1. renewal sweep: active subscriptions whose period ends in the window
2. lock sweep: expired trials, ended cancellations, past_due beyond grace
3. trial reminders (full cycle and trial-reminder job only)
4. one cron_logs row with the aggregated summary

Items run on a bounded thread pool. Each item owns its unit of work;
results are folded into the summary by the calling thread only.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional, Sequence

from core.exceptions import QueryError
from database.base import get_utc_now
from schemas.billing import CycleSummary
from services.lock_expiry import LockExpiryProcessor, LockOutcome
from services.ports import AuditLog, LockCandidate, SubscriptionSnapshot, UnitOfWork
from services.renewal import RenewalOutcome, RenewalProcessor, RenewalResult
from services.trial_reminder import TrialReminderProcessor
from utils.helpers import day_window

logger = logging.getLogger(__name__)

JOB_FULL_CYCLE = "subscription-billing-cycle"
JOB_AUTO_RENEW = "auto-renew"
JOB_LOCK_EXPIRED = "lock-expired"
JOB_TRIAL_REMINDER = "trial-reminder"


class BillingCycleController:
    def __init__(
        self,
        uow_factory: Callable[[], UnitOfWork],
        renewals: RenewalProcessor,
        locks: LockExpiryProcessor,
        reminders: TrialReminderProcessor,
        audit: AuditLog,
        worker_count: int = 4,
        trial_reminder_days: Sequence[int] = (7, 3, 1),
    ):
        self.uow_factory = uow_factory
        self.renewals = renewals
        self.locks = locks
        self.reminders = reminders
        self.audit = audit
        self.worker_count = max(1, worker_count)
        self.trial_reminder_days = tuple(trial_reminder_days)

    # ==================== JOBS ====================

    def run_billing_cycle(self, now: Optional[datetime] = None) -> CycleSummary:
        return self._run_job(
            JOB_FULL_CYCLE, now,
            (self._renewal_sweep, self._lock_sweep, self._trial_reminder_sweep),
        )

    def run_auto_renew(self, now: Optional[datetime] = None) -> CycleSummary:
        return self._run_job(JOB_AUTO_RENEW, now, (self._renewal_sweep,))

    def run_lock_expired(self, now: Optional[datetime] = None) -> CycleSummary:
        return self._run_job(JOB_LOCK_EXPIRED, now, (self._lock_sweep,))

    def run_trial_reminder(self, now: Optional[datetime] = None) -> CycleSummary:
        return self._run_job(JOB_TRIAL_REMINDER, now, (self._trial_reminder_sweep,))

    def _run_job(self, job_name: str, now: Optional[datetime], sweeps: Iterable) -> CycleSummary:
        """
        Run the sweeps in order. A failed eligibility scan aborts the rest of
        the job; the audit row is written in every case.
        """
        now = now or get_utc_now()
        summary = CycleSummary()
        logger.info(f"{job_name}: started at {now.isoformat()}")
        try:
            for sweep in sweeps:
                sweep(now, summary)
        except QueryError as e:
            summary.errors.append(f"Query error: {e}")
            logger.error(f"{job_name}: aborted, {e}")
            self._write_audit(job_name, now, summary)
            e.summary = summary
            raise
        self._write_audit(job_name, now, summary)
        logger.info(
            f"{job_name}: renewed={summary.renewed} "
            f"past_due={summary.failed_insufficient_balance} failed={summary.failed_other} "
            f"locked={summary.locked} skipped={summary.skipped} errors={len(summary.errors)}"
        )
        return summary

    # ==================== SWEEPS ====================

    def _renewal_sweep(self, now: datetime, summary: CycleSummary):
        with self.uow_factory() as uow:
            candidates = uow.subscriptions.query_renewal_eligible(now)
        logger.info(f"Renewal sweep: {len(candidates)} eligible")

        def on_result(sub: SubscriptionSnapshot, outcome: RenewalOutcome):
            if outcome.result == RenewalResult.renewed:
                summary.renewed += 1
            elif outcome.result == RenewalResult.past_due:
                summary.failed_insufficient_balance += 1
            else:
                summary.skipped += 1
            if outcome.notified:
                summary.notifications_sent += 1

        def on_error(sub: SubscriptionSnapshot, error: Exception):
            summary.failed_other += 1
            summary.errors.append(f"Renew {sub.id} error: {error}")
            logger.error(f"Renew {sub.id} error: {error}")

        self._run_items(
            candidates, lambda sub: self.renewals.renew(sub, now), on_result, on_error
        )

    def _lock_sweep(self, now: datetime, summary: CycleSummary):
        with self.uow_factory() as uow:
            candidates = uow.subscriptions.query_lock_eligible(now)
        logger.info(f"Lock sweep: {len(candidates)} eligible")

        def on_result(candidate: LockCandidate, outcome: LockOutcome):
            if outcome.locked:
                summary.locked += 1
                summary.locked_by_reason[outcome.reason.value] += 1
            else:
                summary.skipped += 1
            if outcome.notified:
                summary.notifications_sent += 1

        def on_error(candidate: LockCandidate, error: Exception):
            sub_id = candidate.subscription.id
            summary.errors.append(f"Lock {candidate.reason.value} {sub_id} error: {error}")
            logger.error(f"Lock {sub_id} error: {error}")

        self._run_items(
            candidates, lambda c: self.locks.lock_if_expired(c, now), on_result, on_error
        )

    def _trial_reminder_sweep(self, now: datetime, summary: CycleSummary):
        batches = []
        with self.uow_factory() as uow:
            for days in self.trial_reminder_days:
                start, end = day_window(now + timedelta(days=days))
                for sub in uow.subscriptions.query_trial_ending(start, end):
                    batches.append((sub, days))
        logger.info(f"Trial reminder sweep: {len(batches)} due")

        def on_result(item, sent: bool):
            if sent:
                summary.trial_reminders_sent += 1
                summary.notifications_sent += 1

        def on_error(item, error: Exception):
            sub, _ = item
            summary.errors.append(f"Trial reminder {sub.id} error: {error}")

        self._run_items(
            batches, lambda item: self.reminders.remind(*item), on_result, on_error
        )

    # ==================== WORKER POOL ====================

    def _run_items(self, items: List, fn: Callable, on_result: Callable, on_error: Callable):
        """Run fn over items with bounded parallelism, continuing past failures."""
        if not items:
            return
        workers = min(self.worker_count, len(items))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="billing") as pool:
            futures = {pool.submit(fn, item): item for item in items}
            for future in as_completed(futures):
                item = futures[future]
                try:
                    result = future.result()
                except Exception as e:
                    on_error(item, e)
                else:
                    on_result(item, result)

    def _write_audit(self, job_name: str, now: datetime, summary: CycleSummary):
        try:
            self.audit.record(
                job_name=job_name,
                executed_at=now,
                result=summary.model_dump(),
                success=not summary.has_errors,
            )
        except Exception as e:
            logger.error(f"{job_name}: audit log write failed: {e}")
            summary.errors.append(f"Audit log error: {e}")
