"""
Subscription invoice model — one row per renewal attempt outcome.
"""

from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, Integer, Numeric,
    DateTime, ForeignKey, UniqueConstraint
)
from sqlalchemy.orm import relationship

from ..base import TenantBaseModel


class InvoiceStatus(str, PyEnum):
    paid = "paid"
    failed = "failed"


class SubscriptionInvoice(TenantBaseModel):
    """
    Immutable record of one billing period attempt (paid or failed).

    (subscription_id, period_start) is unique: periods of one subscription
    never overlap, so a second renewal of the same period cannot insert.
    """

    __tablename__ = 'subscription_invoices'

    subscription_id = Column(
        Integer, ForeignKey('merchant_subscriptions.id', ondelete='CASCADE'),
        nullable=False, index=True
    )
    plan_id = Column(Integer, ForeignKey('subscription_plans.id'), nullable=False)

    # Payment info
    amount = Column(Numeric(20, 2), nullable=False)
    status = Column(String(20), nullable=False)  # paid, failed
    payment_method = Column(String(30), default='wallet', nullable=False)

    # Period
    period_start = Column(DateTime, nullable=False)
    period_end = Column(DateTime, nullable=False)

    paid_at = Column(DateTime, nullable=True)
    failure_reason = Column(String(100), nullable=True)
    ledger_entry_ref = Column(String(64), nullable=True)

    subscription = relationship("MerchantSubscription", backref="invoices")

    __table_args__ = (
        UniqueConstraint('subscription_id', 'period_start', name='uq_subscription_invoice_period'),
    )
