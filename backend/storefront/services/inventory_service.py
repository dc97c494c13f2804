# Overview: Service-layer operations for inventory; compare-and-set stock movements with an append-only ledger.

"""
Inventory Service

INVARIANT: for every product,
    InventoryRecord.available == SUM(InventoryTransaction.quantity_delta)

Every function here that changes `available` writes exactly one
InventoryTransaction in the same transaction. Order-driven movements carry an
idempotency key (`sale:{order_item_id}`, `restock:{order_item_id}`), so a
replay finds the existing row and changes nothing.

None of these functions commit except receive_stock/adjust_stock, which are
standalone admin operations.
"""

from __future__ import annotations

from sqlalchemy import func, select, update

from ..extensions import db
from ..models import InventoryRecord, InventoryTransaction, OrderItem, Product
from ..errors import NotFoundError, StockUnavailableError, ValidationError
from .concurrency import begin_write_transaction, run_with_retry
from .ledger_service import append_ledger_event


TX_RECEIVE = "RECEIVE"
TX_SALE = "SALE"
TX_CANCEL_RESTOCK = "CANCEL_RESTOCK"
TX_RETURN_RESTOCK = "RETURN_RESTOCK"
TX_ADJUST = "ADJUST"


def sale_key(order_item_id: int) -> str:
    return f"sale:{order_item_id}"


def restock_key(order_item_id: int) -> str:
    return f"restock:{order_item_id}"


def get_available(product_id: int) -> int:
    return _fresh_available(product_id)


def ensure_record(product_id: int) -> InventoryRecord:
    record = db.session.query(InventoryRecord).filter_by(product_id=product_id).first()
    if record is None:
        record = InventoryRecord(product_id=product_id, available=0)
        db.session.add(record)
        db.session.flush()
    return record


def _existing_movement(idempotency_key: str) -> InventoryTransaction | None:
    return db.session.query(InventoryTransaction).filter_by(idempotency_key=idempotency_key).first()


def _apply_delta(product_id: int, delta: int) -> bool:
    """
    Compare-and-set stock change. A negative delta only applies while
    enough stock remains; returns False when it did not apply.
    """
    stmt = update(InventoryRecord).where(InventoryRecord.product_id == product_id)
    if delta < 0:
        stmt = stmt.where(InventoryRecord.available >= -delta)
    stmt = stmt.values(available=InventoryRecord.available + delta, updated_at=func.now())
    result = db.session.execute(stmt.execution_options(synchronize_session=False))
    return result.rowcount == 1


# =============================================================================
# ORDER-DRIVEN MOVEMENTS
# =============================================================================

def commit_sale(item: OrderItem, actor_user_id: int | None = None) -> InventoryTransaction:
    """
    Decrement stock for a confirmed order line.

    Raises StockUnavailableError (nothing applied) when stock is short.
    """
    key = sale_key(item.id)
    existing = _existing_movement(key)
    if existing is not None:
        return existing

    ensure_record(item.product_id)
    if not _apply_delta(item.product_id, -item.quantity):
        raise StockUnavailableError(
            item.product_id,
            requested=item.quantity,
            available=_fresh_available(item.product_id),
        )

    tx = InventoryTransaction(
        product_id=item.product_id,
        type=TX_SALE,
        quantity_delta=-item.quantity,
        order_id=item.order_id,
        order_item_id=item.id,
        idempotency_key=key,
        actor_user_id=actor_user_id,
    )
    db.session.add(tx)
    db.session.flush()
    return tx


def restock_item(item: OrderItem, tx_type: str, actor_user_id: int | None = None) -> InventoryTransaction | None:
    """
    Put a cancelled or returned line back on the shelf, once.

    Only lines whose sale was committed are restocked; returns None otherwise.
    """
    if tx_type not in (TX_CANCEL_RESTOCK, TX_RETURN_RESTOCK):
        raise ValueError(f"Not a restock type: {tx_type}")

    key = restock_key(item.id)
    existing = _existing_movement(key)
    if existing is not None:
        return existing
    if _existing_movement(sale_key(item.id)) is None:
        return None

    ensure_record(item.product_id)
    _apply_delta(item.product_id, item.quantity)

    tx = InventoryTransaction(
        product_id=item.product_id,
        type=tx_type,
        quantity_delta=item.quantity,
        order_id=item.order_id,
        order_item_id=item.id,
        idempotency_key=key,
        actor_user_id=actor_user_id,
    )
    db.session.add(tx)
    db.session.flush()
    return tx


def _fresh_available(product_id: int) -> int:
    return db.session.execute(
        select(InventoryRecord.available).where(InventoryRecord.product_id == product_id)
    ).scalar() or 0


# =============================================================================
# ADMIN MOVEMENTS
# =============================================================================

def receive_stock(
    product_id: int,
    quantity: int,
    *,
    actor_user_id: int | None = None,
    note: str | None = None,
    idempotency_key: str | None = None,
) -> InventoryTransaction:
    if quantity <= 0:
        raise ValidationError("quantity must be > 0 for RECEIVE")
    return _admin_movement(product_id, quantity, TX_RECEIVE, actor_user_id, note, idempotency_key)


def adjust_stock(
    product_id: int,
    quantity_delta: int,
    *,
    actor_user_id: int | None = None,
    note: str | None = None,
    idempotency_key: str | None = None,
) -> InventoryTransaction:
    """Manual correction; a negative adjustment cannot take stock below zero."""
    if quantity_delta == 0:
        raise ValidationError("quantity_delta must be non-zero for ADJUST")
    return _admin_movement(product_id, quantity_delta, TX_ADJUST, actor_user_id, note, idempotency_key)


def _admin_movement(product_id, delta, tx_type, actor_user_id, note, idempotency_key):
    def _op():
        begin_write_transaction()
        if idempotency_key:
            existing = _existing_movement(idempotency_key)
            if existing is not None:
                return existing

        if db.session.get(Product, product_id) is None:
            raise NotFoundError("Product not found")

        ensure_record(product_id)
        if not _apply_delta(product_id, delta):
            raise StockUnavailableError(product_id, requested=-delta, available=_fresh_available(product_id))

        tx = InventoryTransaction(
            product_id=product_id,
            type=tx_type,
            quantity_delta=delta,
            idempotency_key=idempotency_key,
            note=note,
            actor_user_id=actor_user_id,
        )
        db.session.add(tx)
        db.session.flush()

        append_ledger_event(
            event_type=f"STOCK_{tx_type}",
            event_category="inventory",
            entity_type="inventory_transaction",
            entity_id=tx.id,
            actor_user_id=actor_user_id,
            note=note,
            payload={"product_id": product_id, "quantity_delta": delta},
        )
        db.session.commit()
        return tx

    try:
        return run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise


# =============================================================================
# VERIFICATION
# =============================================================================

def verify_stock_ledger() -> list[dict]:
    """
    Products whose `available` disagrees with their transaction sum.

    Empty list means the invariant holds everywhere.
    """
    sums = dict(
        db.session.query(InventoryTransaction.product_id, func.coalesce(func.sum(InventoryTransaction.quantity_delta), 0))
        .group_by(InventoryTransaction.product_id)
        .all()
    )
    mismatches = []
    for record in db.session.query(InventoryRecord).order_by(InventoryRecord.product_id).populate_existing().all():
        expected = int(sums.get(record.product_id, 0))
        if record.available != expected:
            mismatches.append({
                "product_id": record.product_id,
                "available": record.available,
                "ledger_sum": expected,
            })
    return mismatches


def list_movements(product_id: int, limit: int = 200) -> list[InventoryTransaction]:
    return (
        db.session.query(InventoryTransaction)
        .filter_by(product_id=product_id)
        .order_by(InventoryTransaction.id.asc())
        .limit(limit)
        .all()
    )
