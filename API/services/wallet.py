"""
Wallet ledger implementations.

SqlWalletLedger shares the billing database and its transaction.
HttpWalletLedger talks to an external wallet service; its debits commit on
their own, so renewals compensate with reverse() when a later step fails.
"""

import logging
from decimal import Decimal
from typing import Optional

import httpx
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from core.exceptions import ConflictError, InsufficientFundsError, LedgerUnavailableError
from database.models import LedgerEntry, Wallet
from services.ports import DebitResult

logger = logging.getLogger(__name__)


class SqlWalletLedger:
    """Balance row + append-only entries in the billing database."""

    def __init__(self, db: Session):
        self.db = db

    def get_balance(self, tenant_id: int) -> Decimal:
        try:
            balance = self.db.query(Wallet.balance).filter(Wallet.tenant_id == tenant_id).scalar()
        except OperationalError as e:
            raise LedgerUnavailableError(f"Wallet read failed for tenant {tenant_id}: {e}") from e
        return Decimal(balance) if balance is not None else Decimal("0")

    def debit(self, tenant_id: int, amount: Decimal, idempotency_key: str,
              description: str = "") -> DebitResult:
        amount = Decimal(amount)
        existing = self._entry_for_key(idempotency_key)
        if existing is not None:
            return self._replay(tenant_id, amount, existing)

        # Conditional debit: never drives the balance below zero
        result = self.db.execute(
            update(Wallet)
            .where(Wallet.tenant_id == tenant_id, Wallet.balance >= amount)
            .values(balance=Wallet.balance - amount)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InsufficientFundsError(tenant_id, self.get_balance(tenant_id), amount)

        new_balance = self.get_balance(tenant_id)
        try:
            entry = self._append(
                tenant_id, 'subscription_renewal', -amount, new_balance,
                idempotency_key, description=description,
            )
        except ConflictError:
            existing = self._entry_for_key(idempotency_key)
            if existing is None:
                raise
            return self._replay(tenant_id, amount, existing)
        return DebitResult(new_balance=new_balance, entry_ref=str(entry.id))

    def reverse(self, tenant_id: int, entry_ref: str, idempotency_key: str) -> DebitResult:
        original = self.db.query(LedgerEntry).filter(
            LedgerEntry.id == int(entry_ref),
            LedgerEntry.tenant_id == tenant_id,
        ).first()
        if original is None:
            raise ValueError(f"Ledger entry {entry_ref} not found for tenant {tenant_id}")

        credit = -Decimal(original.amount)
        self.db.execute(
            update(Wallet)
            .where(Wallet.tenant_id == tenant_id)
            .values(balance=Wallet.balance + credit)
            .execution_options(synchronize_session=False)
        )
        new_balance = self.get_balance(tenant_id)
        entry = self._append(
            tenant_id, 'reversal', credit, new_balance,
            f"{idempotency_key}:reversal", reference=entry_ref,
            description=f"Reversal of entry {entry_ref}",
        )
        return DebitResult(new_balance=new_balance, entry_ref=str(entry.id))

    def top_up(self, tenant_id: int, amount: Decimal, idempotency_key: str) -> DebitResult:
        """Credit the wallet, creating it on first use."""
        wallet = self.db.query(Wallet).filter(Wallet.tenant_id == tenant_id).first()
        if wallet is None:
            wallet = Wallet(tenant_id=tenant_id, balance=Decimal("0"))
            self.db.add(wallet)
            self.db.flush()
        self.db.execute(
            update(Wallet)
            .where(Wallet.tenant_id == tenant_id)
            .values(balance=Wallet.balance + Decimal(amount))
            .execution_options(synchronize_session=False)
        )
        new_balance = self.get_balance(tenant_id)
        entry = self._append(tenant_id, 'top_up', Decimal(amount), new_balance, idempotency_key)
        return DebitResult(new_balance=new_balance, entry_ref=str(entry.id))

    def _entry_for_key(self, idempotency_key: str) -> Optional[LedgerEntry]:
        return self.db.query(LedgerEntry).filter(
            LedgerEntry.idempotency_key == idempotency_key
        ).first()

    def _replay(self, tenant_id: int, amount: Decimal, entry: LedgerEntry) -> DebitResult:
        key = entry.idempotency_key
        if (
            entry.tenant_id != tenant_id
            or Decimal(entry.amount) != -amount
            or self._entry_for_key(f"{key}:reversal") is not None
        ):
            raise ConflictError(f"Idempotency key already used: {key}")
        logger.info(f"Debit {key} already applied as entry {entry.id}, replaying")
        return DebitResult(
            new_balance=Decimal(entry.balance_after), entry_ref=str(entry.id), replayed=True
        )

    def _append(self, tenant_id: int, entry_type: str, amount: Decimal, balance_after: Decimal,
                idempotency_key: str, reference: Optional[str] = None,
                description: Optional[str] = None) -> LedgerEntry:
        entry = LedgerEntry(
            tenant_id=tenant_id,
            entry_type=entry_type,
            amount=amount,
            balance_after=balance_after,
            idempotency_key=idempotency_key,
            reference=reference,
            description=description,
        )
        self.db.add(entry)
        try:
            self.db.flush()
        except IntegrityError as e:
            # Concurrent writer used the same key between the check and the insert
            self.db.rollback()
            raise ConflictError(f"Idempotency key already used: {idempotency_key}") from e
        return entry


class HttpWalletLedger:
    """
    Client for an external wallet service.

    GET  /wallets/{tenant_id}/balance  -> {"balance": "150.00"}
    POST /wallets/{tenant_id}/debit    -> {"balance": "50.00", "entry_id": "...", "replayed": false}
         a reused Idempotency-Key replays the original debit with "replayed": true;
         402 insufficient funds, 409 key held by a different or reversed debit
    POST /wallets/{tenant_id}/reverse  -> {"balance": "150.00", "entry_id": "..."}
    """

    def __init__(self, base_url: str, timeout: float = 10.0,
                 transport: Optional[httpx.BaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(base_url=self.base_url, timeout=self.timeout, transport=self._transport)

    def get_balance(self, tenant_id: int) -> Decimal:
        resp = self._request("GET", f"/wallets/{tenant_id}/balance", tenant_id)
        return Decimal(str(resp.json()["balance"]))

    def debit(self, tenant_id: int, amount: Decimal, idempotency_key: str,
              description: str = "") -> DebitResult:
        resp = self._request(
            "POST", f"/wallets/{tenant_id}/debit", tenant_id,
            json={"amount": str(amount), "description": description},
            headers={"Idempotency-Key": idempotency_key},
        )
        if resp.status_code == 402:
            balance = resp.json().get("balance")
            if balance is None:
                balance = self.get_balance(tenant_id)
            raise InsufficientFundsError(tenant_id, Decimal(str(balance)), amount)
        if resp.status_code == 409:
            raise ConflictError(f"Idempotency key already used: {idempotency_key}")
        data = resp.json()
        if data.get("replayed"):
            logger.info(f"Debit {idempotency_key} replayed by wallet service as entry {data['entry_id']}")
        return DebitResult(
            new_balance=Decimal(str(data["balance"])),
            entry_ref=str(data["entry_id"]),
            replayed=bool(data.get("replayed", False)),
        )

    def reverse(self, tenant_id: int, entry_ref: str, idempotency_key: str) -> DebitResult:
        key = f"{idempotency_key}:reversal"
        resp = self._request(
            "POST", f"/wallets/{tenant_id}/reverse", tenant_id,
            json={"entry_id": entry_ref},
            headers={"Idempotency-Key": key},
        )
        if resp.status_code == 409:
            # Already reversed by an earlier attempt
            logger.info(f"Reversal {key} already applied")
            data = resp.json()
            return DebitResult(new_balance=Decimal(str(data.get("balance", "0"))), entry_ref=entry_ref)
        data = resp.json()
        return DebitResult(new_balance=Decimal(str(data["balance"])), entry_ref=str(data["entry_id"]))

    def _request(self, method: str, path: str, tenant_id: int, **kwargs) -> httpx.Response:
        try:
            with self._client() as client:
                resp = client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise LedgerUnavailableError(f"Wallet service timed out for tenant {tenant_id}") from e
        except httpx.HTTPError as e:
            raise LedgerUnavailableError(f"Wallet service unreachable for tenant {tenant_id}: {e}") from e

        if resp.status_code in (402, 409):
            return resp
        if resp.status_code >= 400:
            raise LedgerUnavailableError(
                f"Wallet service error for tenant {tenant_id}: HTTP {resp.status_code}"
            )
        return resp
