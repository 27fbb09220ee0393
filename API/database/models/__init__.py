"""
Database models package.
Export all models for easy importing.
"""

# Tenant (MUST be imported first - other models depend on it)
from .tenant import (
    Tenant,
)

# Plans and subscriptions
from .subscription import (
    SubscriptionStatus,
    SubscriptionPlan,
    MerchantSubscription,
)

# Invoices
from .billing import (
    InvoiceStatus,
    SubscriptionInvoice,
)

# Wallet ledger
from .wallet import (
    Wallet,
    LedgerEntry,
)

# Notifications and audit
from .notification import (
    Notification,
    CronLog,
)


__all__ = [
    'Tenant',
    'SubscriptionStatus',
    'SubscriptionPlan',
    'MerchantSubscription',
    'InvoiceStatus',
    'SubscriptionInvoice',
    'Wallet',
    'LedgerEntry',
    'Notification',
    'CronLog',
]
