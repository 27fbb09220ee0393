"""
Collaborator contracts of the billing loop.

The processors only talk to these protocols. SQL and HTTP implementations
live in the sibling modules; tests may swap in their own.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Protocol

from core.state_machine import LockReason


# ==================== VALUE OBJECTS ====================

@dataclass(frozen=True)
class SubscriptionSnapshot:
    """Read-only view of a subscription joined with its plan and tenant."""

    id: int
    tenant_id: int
    owner_id: str
    shop_name: str
    plan_id: int
    plan_name: str
    price: Decimal
    status: str
    trial_end: Optional[datetime] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    locked_at: Optional[datetime] = None
    data_retention_until: Optional[datetime] = None


@dataclass(frozen=True)
class LockCandidate:
    subscription: SubscriptionSnapshot
    reason: LockReason


@dataclass(frozen=True)
class DebitResult:
    new_balance: Decimal
    entry_ref: str
    replayed: bool = False


@dataclass(frozen=True)
class InvoiceDraft:
    subscription_id: int
    tenant_id: int
    plan_id: int
    amount: Decimal
    status: str
    period_start: datetime
    period_end: datetime
    paid_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    ledger_entry_ref: Optional[str] = None


@dataclass
class LifecycleEvent:
    """Typed notification payload. Locale rendering is the dispatcher's job."""

    event_type: str  # subscription_renewed, renewal_failed, account_locked, trial_reminder
    tenant_id: int
    subscription_id: int
    shop_name: str
    plan_name: Optional[str] = None
    amount: Optional[Decimal] = None
    balance: Optional[Decimal] = None
    lock_reason: Optional[str] = None
    days_remaining: Optional[int] = None
    trial_end: Optional[datetime] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        payload = {
            "subscription_id": self.subscription_id,
            "merchant_id": self.tenant_id,
            "shop_name": self.shop_name,
        }
        if self.plan_name is not None:
            payload["plan_name"] = self.plan_name
        if self.amount is not None:
            payload["amount"] = float(self.amount)
        if self.balance is not None:
            payload["remaining_balance"] = float(self.balance)
        if self.lock_reason is not None:
            payload["lock_reason"] = self.lock_reason
        if self.days_remaining is not None:
            payload["days_remaining"] = self.days_remaining
        if self.trial_end is not None:
            payload["trial_end"] = self.trial_end.isoformat()
        payload.update(self.extra)
        return payload


# ==================== COLLABORATORS ====================

class WalletLedger(Protocol):
    def get_balance(self, tenant_id: int) -> Decimal: ...

    def debit(self, tenant_id: int, amount: Decimal, idempotency_key: str,
              description: str = "") -> DebitResult:
        """
        A key that already holds a completed debit of the same amount returns
        that debit with replayed=True instead of charging again.
        Raises InsufficientFundsError, ConflictError or LedgerUnavailableError.
        """
        ...

    def reverse(self, tenant_id: int, entry_ref: str, idempotency_key: str) -> DebitResult:
        """Compensating credit for a previous debit."""
        ...


class SubscriptionStore(Protocol):
    def get(self, subscription_id: int) -> Optional[SubscriptionSnapshot]: ...

    def query_renewal_eligible(self, now: datetime) -> List[SubscriptionSnapshot]: ...

    def query_lock_eligible(self, now: datetime) -> List[LockCandidate]: ...

    def query_trial_ending(self, start: datetime, end: datetime) -> List[SubscriptionSnapshot]: ...

    def compare_and_update(self, subscription_id: int, expected: Dict[str, Any],
                           values: Dict[str, Any]) -> bool:
        """Apply values only if every expected field still matches. False = Conflict."""
        ...


class InvoiceStore(Protocol):
    def create(self, invoice: InvoiceDraft) -> int:
        """Raises ConflictError when the period is already invoiced."""
        ...


class NotificationDispatcher(Protocol):
    def notify(self, owner_id: str, event: LifecycleEvent) -> bool:
        """Best effort. Never raises; False when delivery failed."""
        ...


class AuditLog(Protocol):
    def record(self, job_name: str, executed_at: datetime,
               result: Dict[str, Any], success: bool) -> None: ...


class UnitOfWork(Protocol):
    """
    Per-item bundle of the three mutable stores.

    transactional is True when ledger, subscriptions and invoices commit
    together; otherwise a lost race after a debit needs ledger.reverse().
    """

    transactional: bool
    ledger: WalletLedger
    subscriptions: SubscriptionStore
    invoices: InvoiceStore

    def commit(self) -> None: ...

    def rollback(self) -> None: ...

    def close(self) -> None: ...
