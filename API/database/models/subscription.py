"""
Subscription plan and merchant subscription models.
"""

from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, Integer, Boolean, Numeric,
    DateTime, JSON, ForeignKey, Index, CheckConstraint, text
)
from sqlalchemy.orm import relationship

from ..base import BaseModel, TenantBaseModel


class SubscriptionStatus(str, PyEnum):
    """Subscription lifecycle states."""
    trial = "trial"
    active = "active"
    past_due = "past_due"
    canceled = "canceled"
    locked = "locked"


class SubscriptionPlan(BaseModel):
    """
    Pricing plan. Reference data owned by catalog management;
    the billing loop only reads name and price.
    """

    __tablename__ = 'subscription_plans'

    name = Column(String(50), unique=True, nullable=False)  # trial, basic, standard, ...
    display_name = Column(JSON, default=dict, nullable=False)  # {"en": ..., "th": ..., "zh": ...}
    price = Column(Numeric(20, 2), default=0, nullable=False)  # per calendar month
    product_limit = Column(Integer, default=0, nullable=False)  # 0 = unlimited
    coupon_type_limit = Column(Integer, default=0, nullable=False)
    features = Column(JSON, default=dict, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    __table_args__ = (
        CheckConstraint('price >= 0', name='ck_subscription_plan_price_non_negative'),
    )

    def __repr__(self):
        return f"<SubscriptionPlan(id={self.id}, name='{self.name}', price={self.price})>"


class MerchantSubscription(TenantBaseModel):
    """
    One subscription per tenant. Never hard-deleted: ends up locked with
    a data retention deadline.
    """

    __tablename__ = 'merchant_subscriptions'

    plan_id = Column(Integer, ForeignKey('subscription_plans.id'), nullable=False, index=True)
    status = Column(String(20), default=SubscriptionStatus.trial.value, nullable=False)

    # Trial
    trial_start = Column(DateTime, nullable=True)
    trial_end = Column(DateTime, nullable=True)

    # Billing period (populated once billing begins)
    current_period_start = Column(DateTime, nullable=True)
    current_period_end = Column(DateTime, nullable=True)

    # Cancellation / lockout
    cancel_at_period_end = Column(Boolean, default=False, nullable=False)
    canceled_at = Column(DateTime, nullable=True)
    locked_at = Column(DateTime, nullable=True)
    data_retention_until = Column(DateTime, nullable=True)

    plan = relationship("SubscriptionPlan")
    tenant = relationship("Tenant", backref="subscriptions")

    __table_args__ = (
        # At most one non-terminal subscription per tenant
        Index(
            'uq_merchant_subscriptions_tenant_open', 'tenant_id', unique=True,
            postgresql_where=text("status <> 'locked'"),
            sqlite_where=text("status <> 'locked'"),
        ),
        Index('ix_merchant_subscriptions_status_period_end', 'status', 'current_period_end'),
        Index('ix_merchant_subscriptions_status_trial_end', 'status', 'trial_end'),
    )

    def __repr__(self):
        return (
            f"<MerchantSubscription(id={self.id}, tenant_id={self.tenant_id}, "
            f"status='{self.status}')>"
        )
