"""
Per-item unit of work over the billing database.

One Session per subscription processed, so items never share ORM state.
"""

from datetime import timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session

from services.invoice_store import SqlInvoiceStore
from services.ports import WalletLedger
from services.subscription_store import SqlSubscriptionStore
from services.wallet import SqlWalletLedger


class SqlUnitOfWork:
    """
    Subscriptions and invoices always live in the session. The ledger does
    too unless an external one is passed, in which case the unit is not
    transactional for the ledger and renewals must compensate.
    """

    def __init__(
        self, session: Session,
        ledger: Optional[WalletLedger] = None,
        renewal_window: timedelta = timedelta(days=1),
        renewal_catch_up: bool = True,
        grace_period: timedelta = timedelta(days=7),
    ):
        self.session = session
        self.transactional = ledger is None
        self.ledger = ledger if ledger is not None else SqlWalletLedger(session)
        self.subscriptions = SqlSubscriptionStore(
            session, renewal_window=renewal_window,
            renewal_catch_up=renewal_catch_up, grace_period=grace_period,
        )
        self.invoices = SqlInvoiceStore(session)

    def commit(self):
        self.session.commit()

    def rollback(self):
        self.session.rollback()

    def close(self):
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is not None:
            self.rollback()
        self.close()
        return False


def sql_unit_of_work_factory(
    session_factory: Callable[[], Session],
    ledger_factory: Optional[Callable[[], WalletLedger]] = None,
    **store_options,
) -> Callable[[], SqlUnitOfWork]:
    """Build a zero-argument factory that opens a fresh unit per call."""

    def factory() -> SqlUnitOfWork:
        ledger = ledger_factory() if ledger_factory is not None else None
        return SqlUnitOfWork(session_factory(), ledger=ledger, **store_options)

    return factory
