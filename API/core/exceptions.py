"""
Billing error taxonomy.

AuthorizationError and QueryError abort a whole cycle.
ConflictError and InsufficientFundsError are expected outcomes of a single item.
TransientItemError marks a per-item failure that is retried on the next run.
"""


class BillingError(Exception):
    """Base class for all billing errors."""


class AuthorizationError(BillingError):
    """Trigger credential missing or wrong."""


class QueryError(BillingError):
    """An eligibility scan could not be executed."""

    # Partial CycleSummary of the aborted invocation, set by the controller
    summary = None


class ConflictError(BillingError):
    """Lost an optimistic-concurrency race or reused an idempotency key."""


class InsufficientFundsError(BillingError):
    """Wallet balance is lower than the requested debit."""

    def __init__(self, tenant_id: int, balance, amount):
        self.tenant_id = tenant_id
        self.balance = balance
        self.amount = amount
        super().__init__(
            f"Tenant {tenant_id}: balance {balance} is lower than {amount}"
        )


class TransientItemError(BillingError):
    """Per-item failure that leaves the subscription untouched."""


class LedgerUnavailableError(TransientItemError):
    """Wallet ledger timed out or could not be reached."""
