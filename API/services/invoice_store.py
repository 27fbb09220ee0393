"""
SQL invoice store.
"""

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.exceptions import ConflictError
from database.models import SubscriptionInvoice
from services.ports import InvoiceDraft


class SqlInvoiceStore:
    def __init__(self, db: Session):
        self.db = db

    def create(self, invoice: InvoiceDraft) -> int:
        row = SubscriptionInvoice(
            tenant_id=invoice.tenant_id,
            subscription_id=invoice.subscription_id,
            plan_id=invoice.plan_id,
            amount=invoice.amount,
            status=invoice.status,
            payment_method='wallet',
            period_start=invoice.period_start,
            period_end=invoice.period_end,
            paid_at=invoice.paid_at,
            failure_reason=invoice.failure_reason,
            ledger_entry_ref=invoice.ledger_entry_ref,
        )
        self.db.add(row)
        try:
            self.db.flush()
        except IntegrityError as e:
            # Caller must roll back the unit of work
            self.db.rollback()
            raise ConflictError(
                f"Subscription {invoice.subscription_id} already invoiced "
                f"for period starting {invoice.period_start.isoformat()}"
            ) from e
        return row.id
