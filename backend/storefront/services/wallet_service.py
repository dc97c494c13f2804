# Overview: Service-layer operations for the wallet; an append-only ledger whose sum is the balance.

"""
Wallet Service

INVARIANT: balance(user) == SUM(WalletLedgerEntry.amount_cents) for that user.
There is no balance column to drift.

Every credit/debit:
- carries an idempotency key; replaying it returns the original entry
- locks the user's WalletAccount row first, so a balance check and the debit
  that depends on it cannot interleave with another debit
- runs in the caller's transaction (no commit here) so a wallet payment
  and the order confirmation it pays for commit or roll back together
"""

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import WalletAccount, WalletLedgerEntry
from ..errors import InsufficientBalanceError, ValidationError
from storefront.time_utils import utcnow
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry
from .ledger_service import append_ledger_event


ENTRY_ORDER_PAYMENT = "ORDER_PAYMENT"
ENTRY_REFUND = "REFUND"
ENTRY_PAYMENT_REVERSAL = "PAYMENT_REVERSAL"
ENTRY_REFERRAL_REWARD = "REFERRAL_REWARD"
ENTRY_ADJUSTMENT = "ADJUSTMENT"

CREDIT_TYPES = {ENTRY_REFUND, ENTRY_PAYMENT_REVERSAL, ENTRY_REFERRAL_REWARD, ENTRY_ADJUSTMENT}
DEBIT_TYPES = {ENTRY_ORDER_PAYMENT, ENTRY_ADJUSTMENT}


def get_balance(user_id: int) -> int:
    return db.session.query(func.coalesce(func.sum(WalletLedgerEntry.amount_cents), 0)).filter(
        WalletLedgerEntry.user_id == user_id
    ).scalar() or 0


def get_entry(idempotency_key: str) -> WalletLedgerEntry | None:
    return db.session.query(WalletLedgerEntry).filter_by(idempotency_key=idempotency_key).first()


def _lock_account(user_id: int) -> WalletAccount:
    account = lock_for_update(db.session.query(WalletAccount).filter_by(user_id=user_id)).first()
    if account is None:
        account = WalletAccount(user_id=user_id)
        db.session.add(account)
        db.session.flush()
    return account


def _append(account: WalletAccount, amount_cents: int, entry_type: str, idempotency_key: str,
            order_id: int | None, description: str | None) -> WalletLedgerEntry:
    entry = WalletLedgerEntry(
        user_id=account.user_id,
        amount_cents=amount_cents,
        entry_type=entry_type,
        idempotency_key=idempotency_key,
        order_id=order_id,
        description=description,
    )
    db.session.add(entry)
    # Touching the anchor bumps its version, so an unlocked concurrent writer gets StaleDataError
    account.last_entry_at = utcnow()
    db.session.flush()

    append_ledger_event(
        event_type=f"WALLET_{'CREDIT' if amount_cents > 0 else 'DEBIT'}",
        event_category="wallet",
        entity_type="wallet_ledger_entry",
        entity_id=entry.id,
        actor_user_id=account.user_id,
        order_id=order_id,
        note=entry_type,
        payload={"amount_cents": amount_cents, "idempotency_key": idempotency_key},
    )
    return entry


def credit(
    user_id: int,
    amount_cents: int,
    *,
    entry_type: str,
    idempotency_key: str,
    order_id: int | None = None,
    description: str | None = None,
) -> WalletLedgerEntry:
    """Add money. Idempotent on idempotency_key. Does not commit."""
    if amount_cents <= 0:
        raise ValidationError("Credit amount must be positive")
    if entry_type not in CREDIT_TYPES:
        raise ValueError(f"Not a credit entry type: {entry_type}")

    existing = get_entry(idempotency_key)
    if existing is not None:
        return existing

    account = _lock_account(user_id)
    return _append(account, amount_cents, entry_type, idempotency_key, order_id, description)


def debit(
    user_id: int,
    amount_cents: int,
    *,
    entry_type: str,
    idempotency_key: str,
    order_id: int | None = None,
    description: str | None = None,
) -> WalletLedgerEntry:
    """
    Take money, never below zero. Idempotent on idempotency_key. Does not commit.

    Raises InsufficientBalanceError, leaving nothing written.
    """
    if amount_cents <= 0:
        raise ValidationError("Debit amount must be positive")
    if entry_type not in DEBIT_TYPES:
        raise ValueError(f"Not a debit entry type: {entry_type}")

    existing = get_entry(idempotency_key)
    if existing is not None:
        return existing

    account = _lock_account(user_id)
    balance = get_balance(user_id)
    if balance < amount_cents:
        raise InsufficientBalanceError(balance, amount_cents)

    return _append(account, -amount_cents, entry_type, idempotency_key, order_id, description)


def list_entries(user_id: int, limit: int = 100) -> list[WalletLedgerEntry]:
    return (
        db.session.query(WalletLedgerEntry)
        .filter_by(user_id=user_id)
        .order_by(WalletLedgerEntry.id.desc())
        .limit(limit)
        .all()
    )


def admin_adjust(user_id: int, amount_cents: int, *, idempotency_key: str, description: str | None = None) -> WalletLedgerEntry:
    """Standalone manual credit (positive) or debit (negative); commits."""
    if amount_cents == 0:
        raise ValidationError("amount_cents must be non-zero")

    def _op():
        begin_write_transaction()
        if amount_cents > 0:
            entry = credit(user_id, amount_cents, entry_type=ENTRY_ADJUSTMENT,
                           idempotency_key=idempotency_key, description=description)
        else:
            entry = debit(user_id, -amount_cents, entry_type=ENTRY_ADJUSTMENT,
                          idempotency_key=idempotency_key, description=description)
        db.session.commit()
        return entry

    try:
        return run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise
