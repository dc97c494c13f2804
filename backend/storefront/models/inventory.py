from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z


class InventoryRecord(db.Model):
    """
    Sellable quantity for one product.

    `available` is only ever changed by inventory_service, always together with
    an InventoryTransaction row, so that
        available == SUM(InventoryTransaction.quantity_delta)
    holds for every product. The CHECK constraint is the last line against
    overselling; the compare-and-set update in inventory_service is the first.
    """
    __tablename__ = "inventory_records"
    __table_args__ = (
        db.UniqueConstraint("product_id", name="uq_inventory_records_product"),
        db.CheckConstraint("available >= 0", name="ck_inventory_records_available_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    available = db.Column(db.Integer, nullable=False, default=0)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product", backref=db.backref("inventory", uselist=False, lazy=True))

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "available": self.available,
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryTransaction(db.Model):
    """
    Append-only stock movement.

    TYPES:
    - RECEIVE: stock added by an admin
    - SALE: decrement at order confirmation (negative delta)
    - CANCEL_RESTOCK: item cancelled before shipment
    - RETURN_RESTOCK: return approved
    - ADJUST: manual correction

    idempotency_key makes each order-driven movement happen at most once.
    """
    __tablename__ = "inventory_transactions"
    __table_args__ = (
        db.UniqueConstraint("idempotency_key", name="uq_inventory_transactions_idem"),
        db.Index("ix_inventory_transactions_product_occurred", "product_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    type = db.Column(db.String(32), nullable=False, index=True)
    quantity_delta = db.Column(db.Integer, nullable=False)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    order_item_id = db.Column(db.Integer, db.ForeignKey("order_items.id"), nullable=True)

    idempotency_key = db.Column(db.String(128), nullable=True)
    note = db.Column(db.String(255), nullable=True)
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "type": self.type,
            "quantity_delta": self.quantity_delta,
            "order_id": self.order_id,
            "order_item_id": self.order_item_id,
            "idempotency_key": self.idempotency_key,
            "note": self.note,
            "actor_user_id": self.actor_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
