"""
Database package for the subscription billing service.

Usage:
    from database import db, init_db
    from database.models import MerchantSubscription, SubscriptionInvoice, Wallet
"""

from .base import Base, BaseModel, TenantBaseModel, TenantMixin, TimestampMixin, get_utc_now
from .connection import (
    DatabaseConnection,
    db,
    init_db,
)

# Import all models to ensure they are registered with SQLAlchemy
from .models import *


__all__ = [
    # Base
    'Base',
    'BaseModel',
    'TenantBaseModel',
    'TenantMixin',
    'TimestampMixin',
    'get_utc_now',

    # Connection
    'DatabaseConnection',
    'db',
    'init_db',
]
