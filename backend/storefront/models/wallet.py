from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z


class WalletAccount(db.Model):
    """
    Per-user wallet anchor row.

    Holds no balance. It exists so credits and debits for one user can lock
    a single row; the balance is always SUM(WalletLedgerEntry.amount_cents).
    """
    __tablename__ = "wallet_accounts"
    __table_args__ = (
        db.UniqueConstraint("user_id", name="uq_wallet_accounts_user"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_entry_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}


class WalletLedgerEntry(db.Model):
    """
    Signed wallet movement. Never updated or deleted.

    ENTRY TYPES:
    - ORDER_PAYMENT: debit for a wallet-paid order
    - REFUND: credit for a cancelled or returned item
    - PAYMENT_REVERSAL: credit giving back money captured for a failed order
    - REFERRAL_REWARD: credit to a referrer
    - ADJUSTMENT: manual admin correction
    """
    __tablename__ = "wallet_ledger_entries"
    __table_args__ = (
        db.UniqueConstraint("idempotency_key", name="uq_wallet_ledger_entries_idem"),
        db.Index("ix_wallet_ledger_entries_user_created", "user_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    amount_cents = db.Column(db.Integer, nullable=False)
    entry_type = db.Column(db.String(24), nullable=False, index=True)
    idempotency_key = db.Column(db.String(128), nullable=False)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    description = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "amount_cents": self.amount_cents,
            "entry_type": self.entry_type,
            "order_id": self.order_id,
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
        }
