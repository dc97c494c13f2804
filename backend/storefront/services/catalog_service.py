# Overview: Service-layer operations for the catalog; availability predicate and admin product management.

"""
Catalog Service

WHY: Every "can this be sold?" question in checkout, cart and confirmation
goes through is_product_available(). Listing rules live in one place.

DESIGN:
- get_listed_product() always re-reads storage (populate_existing), so a
  draft built after an admin unlists a product sees the change.
- Products and categories are soft-deleted; order history keeps pointing at them.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Category, InventoryRecord, Product
from ..errors import ConflictError, NotFoundError
from ..validation import (
    CATEGORY_POLICY,
    PRODUCT_POLICY,
    enforce_rules_category,
    enforce_rules_product,
    validate_payload,
)
from .ledger_service import append_ledger_event
from .pricing import unit_price_for


@dataclass(frozen=True)
class ListedProduct:
    product_id: int
    name: str
    category_id: int
    price_cents: int
    available: int
    is_listed: bool


# =============================================================================
# AVAILABILITY
# =============================================================================

def is_product_available(product: Product | None) -> bool:
    """Listed and not deleted, in a category that is listed and not deleted."""
    if product is None:
        return False
    if not product.is_listed or product.is_deleted:
        return False
    category = product.category
    if category is None or not category.is_listed or category.is_deleted:
        return False
    return True


def get_listed_product(product_id: int) -> ListedProduct | None:
    """Fresh read of price, stock and listing state. None if the product does not exist."""
    product = (
        db.session.query(Product)
        .filter(Product.id == product_id)
        .populate_existing()
        .first()
    )
    if product is None:
        return None
    if product.category is not None:
        db.session.refresh(product.category)

    record = (
        db.session.query(InventoryRecord)
        .filter(InventoryRecord.product_id == product_id)
        .populate_existing()
        .first()
    )

    return ListedProduct(
        product_id=product.id,
        name=product.name,
        category_id=product.category_id,
        price_cents=unit_price_for(product),
        available=record.available if record else 0,
        is_listed=is_product_available(product),
    )


def list_products(*, listed_only: bool = True) -> list[Product]:
    query = db.session.query(Product).join(Category).filter(Product.is_deleted.is_(False))
    if listed_only:
        query = query.filter(
            Product.is_listed.is_(True),
            Category.is_listed.is_(True),
            Category.is_deleted.is_(False),
        )
    return query.order_by(Product.id.asc()).all()


# =============================================================================
# ADMIN: CATEGORIES
# =============================================================================

def create_category(payload: dict, actor_user_id: int | None = None) -> Category:
    patch = validate_payload(model=Category, payload=payload, policy=CATEGORY_POLICY, partial=False)
    enforce_rules_category(patch)

    category = Category(**patch)
    db.session.add(category)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"Category '{patch.get('name')}' already exists")

    append_ledger_event(
        event_type="CATEGORY_CREATED",
        event_category="catalog",
        entity_type="category",
        entity_id=category.id,
        actor_user_id=actor_user_id,
        note=category.name,
    )
    db.session.commit()
    return category


def update_category(category_id: int, payload: dict, actor_user_id: int | None = None) -> Category:
    category = db.session.get(Category, category_id)
    if category is None or category.is_deleted:
        raise NotFoundError("Category not found")

    patch = validate_payload(model=Category, payload=payload, policy=CATEGORY_POLICY, partial=True)
    enforce_rules_category(patch)
    for key, value in patch.items():
        setattr(category, key, value)

    append_ledger_event(
        event_type="CATEGORY_UPDATED",
        event_category="catalog",
        entity_type="category",
        entity_id=category.id,
        actor_user_id=actor_user_id,
        payload=patch,
    )
    db.session.commit()
    return category


# =============================================================================
# ADMIN: PRODUCTS
# =============================================================================

def create_product(payload: dict, actor_user_id: int | None = None) -> Product:
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
    enforce_rules_product(patch)

    category = db.session.get(Category, patch["category_id"])
    if category is None or category.is_deleted:
        raise NotFoundError("Category not found")

    product = Product(**patch)
    db.session.add(product)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"SKU '{patch.get('sku')}' already exists")

    db.session.add(InventoryRecord(product_id=product.id, available=0))
    append_ledger_event(
        event_type="PRODUCT_CREATED",
        event_category="catalog",
        entity_type="product",
        entity_id=product.id,
        actor_user_id=actor_user_id,
        note=product.sku,
    )
    db.session.commit()
    return product


def update_product(product_id: int, payload: dict, actor_user_id: int | None = None) -> Product:
    product = db.session.get(Product, product_id)
    if product is None or product.is_deleted:
        raise NotFoundError("Product not found")

    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
    merged = {
        "regular_price_cents": product.regular_price_cents,
        "sale_price_cents": product.sale_price_cents,
        **patch,
    }
    enforce_rules_product(merged)
    if "category_id" in patch:
        category = db.session.get(Category, patch["category_id"])
        if category is None or category.is_deleted:
            raise NotFoundError("Category not found")

    for key, value in patch.items():
        setattr(product, key, value)

    append_ledger_event(
        event_type="PRODUCT_UPDATED",
        event_category="catalog",
        entity_type="product",
        entity_id=product.id,
        actor_user_id=actor_user_id,
        payload=patch,
    )
    db.session.commit()
    return product


def delete_product(product_id: int, actor_user_id: int | None = None) -> Product:
    """Soft delete. Open carts holding it will fail the draft with ProductUnavailableError."""
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found")
    if product.is_deleted:
        return product

    product.is_deleted = True
    product.is_listed = False
    append_ledger_event(
        event_type="PRODUCT_DELETED",
        event_category="catalog",
        entity_type="product",
        entity_id=product.id,
        actor_user_id=actor_user_id,
    )
    db.session.commit()
    return product
