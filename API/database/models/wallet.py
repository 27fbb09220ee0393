"""
Merchant wallet — current balance plus an append-only entry log.
"""

from sqlalchemy import (
    Column, String, Integer, Numeric, Text,
    ForeignKey, UniqueConstraint, CheckConstraint
)

from ..base import Base, BaseModel, TimestampMixin


class Wallet(BaseModel):
    """Current balance of one tenant."""

    __tablename__ = 'wallets'

    tenant_id = Column(Integer, ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False)
    balance = Column(Numeric(20, 2), default=0, nullable=False)

    __table_args__ = (
        UniqueConstraint('tenant_id', name='uq_wallet_tenant'),
        CheckConstraint('balance >= 0', name='ck_wallet_balance_non_negative'),
    )


class LedgerEntry(Base, TimestampMixin):
    """
    One balance change. Never updated; reversals are new entries.

    amount is signed (debits negative), balance_after is the wallet
    balance right after this entry was applied.
    """

    __tablename__ = 'wallet_ledger_entries'

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(Integer, ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False, index=True)
    entry_type = Column(String(30), nullable=False)  # subscription_renewal, reversal, top_up
    amount = Column(Numeric(20, 2), nullable=False)
    balance_after = Column(Numeric(20, 2), nullable=False)
    idempotency_key = Column(String(200), nullable=False)
    reference = Column(String(64), nullable=True)  # reversed entry id
    description = Column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint('idempotency_key', name='uq_ledger_entry_idempotency_key'),
    )
