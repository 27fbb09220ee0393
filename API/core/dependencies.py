"""
FastAPI dependencies: scheduler-trigger authorization and billing wiring.
"""

import secrets
from datetime import timedelta
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from loguru import logger

from core.config import Settings, settings
from core.exceptions import AuthorizationError
from core.state_machine import SubscriptionStateMachine
from database import db as default_db, DatabaseConnection
from services.audit import CronLogWriter
from services.billing_cycle import BillingCycleController
from services.lock_expiry import LockExpiryProcessor
from services.notifications import DatabaseNotificationDispatcher, HttpNotificationDispatcher
from services.renewal import RenewalProcessor
from services.trial_reminder import TrialReminderProcessor
from services.unit_of_work import sql_unit_of_work_factory
from services.wallet import HttpWalletLedger


# Bearer scheme without auto 403: missing credentials are judged below
optional_security = HTTPBearer(auto_error=False)


# ==================== TRIGGER AUTH ====================

def is_cron_secret_valid(authorization: Optional[str], secret: str) -> bool:
    """
    Compare a presented bearer token with the configured secret.
    An empty secret allows every caller.
    """
    if not secret:
        return True
    if not authorization:
        return False
    return secrets.compare_digest(authorization.encode(), secret.encode())


async def verify_cron_secret(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_security),
) -> None:
    """Reject scheduler calls that do not carry the configured CRON_SECRET."""
    if not settings.cron_secret:
        logger.warning("CRON_SECRET not configured, billing trigger is open to all callers")
        return

    token = credentials.credentials if credentials else None
    if not is_cron_secret_valid(token, settings.cron_secret):
        raise AuthorizationError("Invalid or missing CRON_SECRET bearer token")


# ==================== BILLING WIRING ====================

def build_billing_controller(
    connection: Optional[DatabaseConnection] = None,
    config: Optional[Settings] = None,
) -> BillingCycleController:
    """Assemble the controller and its collaborators from settings."""
    connection = connection or default_db
    config = config or settings
    session_factory = connection.session_factory

    ledger_factory = None
    if config.ledger_backend == "http":
        def ledger_factory():
            return HttpWalletLedger(config.wallet_service_url, timeout=config.http_timeout_seconds)

    grace = timedelta(days=config.grace_period_days)
    uow_factory = sql_unit_of_work_factory(
        session_factory,
        ledger_factory=ledger_factory,
        renewal_window=timedelta(hours=config.renewal_window_hours),
        renewal_catch_up=config.renewal_catch_up,
        grace_period=grace,
    )

    if config.notification_backend == "http":
        notifier = HttpNotificationDispatcher(
            config.notification_service_url, timeout=config.notification_timeout_seconds
        )
    else:
        notifier = DatabaseNotificationDispatcher(session_factory)

    machine = SubscriptionStateMachine(grace_period=grace)
    return BillingCycleController(
        uow_factory=uow_factory,
        renewals=RenewalProcessor(uow_factory, notifier, machine),
        locks=LockExpiryProcessor(
            uow_factory, notifier, machine,
            data_retention=timedelta(days=config.data_retention_days),
        ),
        reminders=TrialReminderProcessor(notifier),
        audit=CronLogWriter(session_factory),
        worker_count=config.worker_count,
        trial_reminder_days=config.trial_reminder_days_list,
    )


def get_billing_controller() -> BillingCycleController:
    """FastAPI dependency. Overridden in tests."""
    return build_billing_controller()
