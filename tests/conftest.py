"""
Pytest fixtures for the subscription billing tests.

Every test gets its own file-backed SQLite database, so worker threads of
the billing cycle see each other's commits exactly like on PostgreSQL.
"""

import json
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional

import httpx
import pytest

from core.config import Settings
from core.dependencies import build_billing_controller
from core.state_machine import SubscriptionStateMachine
from database import DatabaseConnection
from database.models import (
    CronLog, LedgerEntry, MerchantSubscription, Notification,
    SubscriptionInvoice, SubscriptionPlan, Tenant, Wallet,
)
from services.audit import CronLogWriter
from services.billing_cycle import BillingCycleController
from services.lock_expiry import LockExpiryProcessor
from services.notifications import DatabaseNotificationDispatcher
from services.renewal import RenewalProcessor
from services.trial_reminder import TrialReminderProcessor
from services.unit_of_work import sql_unit_of_work_factory
from services.wallet import HttpWalletLedger
from utils.helpers import add_months

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Fixed clock: 15 March 2026, 02:00 UTC
NOW = datetime(2026, 3, 15, 2, 0, 0)


# =============================================================================
# DATA FACTORY
# =============================================================================

class BillingFactory:
    """Creates tenants, plans, subscriptions and wallets, and reads them back."""

    def __init__(self, database: DatabaseConnection):
        self.database = database
        self._seq = 0
        self._plans: Dict[str, int] = {}

    def plan(self, price="100.00") -> int:
        price = str(price)
        if price not in self._plans:
            with self.database.get_session() as session:
                plan = SubscriptionPlan(
                    name=f"plan-{price}",
                    display_name={"en": f"Plan {price}"},
                    price=Decimal(price),
                    features={},
                )
                session.add(plan)
                session.flush()
                self._plans[price] = plan.id
        return self._plans[price]

    def subscription(
        self,
        status: str = "active",
        price="100.00",
        balance=None,
        period_end: Optional[datetime] = None,
        trial_end: Optional[datetime] = None,
        cancel_at_period_end: bool = False,
        owner_id: Optional[str] = None,
    ) -> MerchantSubscription:
        plan_id = self.plan(price)
        self._seq += 1
        with self.database.get_session() as session:
            tenant = Tenant(
                name=f"Shop {self._seq}",
                slug=f"shop-{self._seq}",
                owner_id=owner_id if owner_id is not None else f"owner-{self._seq}",
            )
            session.add(tenant)
            session.flush()

            sub = MerchantSubscription(
                tenant_id=tenant.id,
                plan_id=plan_id,
                status=status,
                trial_end=trial_end,
                current_period_start=add_months(period_end, -1) if period_end else None,
                current_period_end=period_end,
                cancel_at_period_end=cancel_at_period_end,
            )
            session.add(sub)
            if balance is not None:
                session.add(Wallet(tenant_id=tenant.id, balance=Decimal(str(balance))))
            session.flush()
        return sub

    # Reads

    def get(self, subscription_id: int) -> MerchantSubscription:
        with self.database.get_session() as session:
            return session.get(MerchantSubscription, subscription_id)

    def balance(self, tenant_id: int) -> Decimal:
        with self.database.get_session() as session:
            return session.query(Wallet.balance).filter(Wallet.tenant_id == tenant_id).scalar()

    def invoices(self, subscription_id: int) -> List[SubscriptionInvoice]:
        with self.database.get_session() as session:
            return session.query(SubscriptionInvoice).filter(
                SubscriptionInvoice.subscription_id == subscription_id
            ).order_by(SubscriptionInvoice.id).all()

    def ledger_entries(self, tenant_id: int) -> List[LedgerEntry]:
        with self.database.get_session() as session:
            return session.query(LedgerEntry).filter(
                LedgerEntry.tenant_id == tenant_id
            ).order_by(LedgerEntry.id).all()

    def notifications(self, user_id: Optional[str] = None) -> List[Notification]:
        with self.database.get_session() as session:
            query = session.query(Notification)
            if user_id is not None:
                query = query.filter(Notification.user_id == user_id)
            return query.order_by(Notification.id).all()

    def cron_logs(self) -> List[CronLog]:
        with self.database.get_session() as session:
            return session.query(CronLog).order_by(CronLog.id).all()


# =============================================================================
# EXTERNAL WALLET SERVICE
# =============================================================================

class FakeWalletService:
    """In-memory wallet service served through httpx.MockTransport."""

    def __init__(self, balances: Optional[Dict[int, Decimal]] = None):
        self.balances: Dict[int, Decimal] = dict(balances or {})
        self.entries: Dict[str, dict] = {}
        self.keys: Dict[str, str] = {}
        self.debits: List[dict] = []
        self.reversals: List[dict] = []
        self.unavailable = set()
        self.fail_reversals = False
        self.on_debit = None
        self.drop_debit_replies = 0

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def ledger(self) -> HttpWalletLedger:
        return HttpWalletLedger("http://wallet.test", timeout=1, transport=self.transport())

    def handler(self, request: httpx.Request) -> httpx.Response:
        _, tenant, action = request.url.path.strip("/").split("/")
        tenant_id = int(tenant)
        if tenant_id in self.unavailable:
            return httpx.Response(503, json={"detail": "unavailable"})

        balance = self.balances.get(tenant_id, Decimal("0"))
        if action == "balance":
            return httpx.Response(200, json={"balance": str(balance)})

        key = request.headers.get("Idempotency-Key")
        body = json.loads(request.content)

        if action == "debit":
            amount = Decimal(body["amount"])
            if key in self.keys:
                entry_id = self.keys[key]
                entry = self.entries[entry_id]
                if entry["reversed"] or entry["amount"] != amount:
                    return httpx.Response(409, json={"detail": "duplicate"})
                return httpx.Response(200, json={
                    "balance": str(entry["balance_after"]), "entry_id": entry_id, "replayed": True,
                })
            if balance < amount:
                return httpx.Response(402, json={"balance": str(balance)})
            self.balances[tenant_id] = balance - amount
            entry_id = f"e{len(self.entries) + 1}"
            self.keys[key] = entry_id
            self.entries[entry_id] = {
                "tenant_id": tenant_id, "amount": amount,
                "balance_after": self.balances[tenant_id], "reversed": False,
            }
            self.debits.append({"tenant_id": tenant_id, "amount": amount, "key": key})
            if self.on_debit is not None:
                self.on_debit(tenant_id)
            if self.drop_debit_replies:
                # Applied, but the caller never sees the reply
                self.drop_debit_replies -= 1
                raise httpx.ReadTimeout("timed out", request=request)
            return httpx.Response(200, json={"balance": str(self.balances[tenant_id]), "entry_id": entry_id})

        if action == "reverse":
            if self.fail_reversals:
                return httpx.Response(500, json={"detail": "boom"})
            if key in self.keys:
                return httpx.Response(409, json={"balance": str(balance)})
            entry = self.entries[body["entry_id"]]
            self.balances[tenant_id] = balance + entry["amount"]
            entry["reversed"] = True
            self.keys[key] = body["entry_id"]
            self.reversals.append({"tenant_id": tenant_id, "entry_id": body["entry_id"], "key": key})
            return httpx.Response(200, json={"balance": str(self.balances[tenant_id]), "entry_id": f"r{len(self.reversals)}"})

        return httpx.Response(404)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def database(tmp_path):
    connection = DatabaseConnection(f"sqlite:///{tmp_path / 'billing.db'}", echo=False)
    connection.create_tables()
    yield connection
    connection.dispose()


@pytest.fixture
def factory(database):
    return BillingFactory(database)


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        cron_secret="",
        worker_count=4,
        ledger_backend="database",
        notification_backend="database",
    )


@pytest.fixture
def controller(database, test_settings):
    return build_billing_controller(database, test_settings)


@pytest.fixture
def wallet_service():
    return FakeWalletService()


def assemble_controller(
    database: DatabaseConnection,
    ledger_factory=None,
    notifier=None,
    worker_count: int = 4,
    grace_period: timedelta = timedelta(days=7),
) -> BillingCycleController:
    """Controller with replaceable ledger and notifier."""
    session_factory = database.session_factory
    uow_factory = sql_unit_of_work_factory(
        session_factory,
        ledger_factory=ledger_factory,
        renewal_window=timedelta(hours=24),
        grace_period=grace_period,
    )
    notifier = notifier or DatabaseNotificationDispatcher(session_factory)
    machine = SubscriptionStateMachine(grace_period=grace_period)
    return BillingCycleController(
        uow_factory=uow_factory,
        renewals=RenewalProcessor(uow_factory, notifier, machine),
        locks=LockExpiryProcessor(uow_factory, notifier, machine),
        reminders=TrialReminderProcessor(notifier),
        audit=CronLogWriter(session_factory),
        worker_count=worker_count,
    )
