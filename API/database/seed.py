"""
Database seed — creates the default plan catalogue on first run.
"""
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .models import SubscriptionPlan

logger = logging.getLogger(__name__)


def seed_subscription_plans(session: Session) -> int:
    """Insert default plans that do not exist yet. Returns the number created."""
    from core.subscription_plans import iter_plans

    try:
        existing = {name for (name,) in session.query(SubscriptionPlan.name).all()}
    except SQLAlchemyError:
        logger.warning("subscription_plans table not ready, skipping seed")
        session.rollback()
        return 0

    created = 0
    for key, plan in iter_plans():
        if key in existing:
            continue
        session.add(SubscriptionPlan(
            name=key,
            display_name=plan["display_name"],
            price=plan["price"],
            product_limit=plan["product_limit"],
            coupon_type_limit=plan["coupon_type_limit"],
            features=plan["features"],
            is_active=True,
        ))
        created += 1

    if created:
        session.commit()
        logger.info(f"Seeded {created} subscription plans")
    return created


def seed_all(session: Session):
    """Main seed entry point."""
    seed_subscription_plans(session)
