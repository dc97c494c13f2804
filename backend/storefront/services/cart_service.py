# Overview: Service-layer operations for the shopping cart.

"""
Cart Service

The cart is a convenience: prices stored on it are display snapshots and are
never trusted by checkout, which re-reads every product through the catalog.

RULES:
- Only available products can be added
- At most MAX_QTY_PER_PRODUCT units of one product
- Cannot add more than is currently in stock
- Cleared only by order confirmation (or the user)
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Cart, CartItem
from ..errors import NotFoundError, ProductUnavailableError, StockUnavailableError, ValidationError
from .catalog_service import get_listed_product
from .session_service import RequestContext


def get_or_create_cart(user_id: int) -> Cart:
    cart = db.session.query(Cart).filter_by(user_id=user_id).first()
    if cart is None:
        cart = Cart(user_id=user_id)
        db.session.add(cart)
        db.session.flush()
    return cart


def get_cart(ctx: RequestContext) -> Cart:
    cart = get_or_create_cart(ctx.user_id)
    db.session.commit()
    return cart


def _check_quantity(product_id: int, quantity: int):
    max_qty = current_app.config["MAX_QTY_PER_PRODUCT"]
    if quantity > max_qty:
        raise ValidationError(
            f"You can only add up to {max_qty} units of this product",
            details={"product_id": product_id, "max_quantity": max_qty},
        )

    listed = get_listed_product(product_id)
    if listed is None:
        raise NotFoundError("Product not found")
    if not listed.is_listed:
        raise ProductUnavailableError(product_id)
    if quantity > listed.available:
        raise StockUnavailableError(product_id, requested=quantity, available=listed.available)
    return listed


def add_item(ctx: RequestContext, product_id: int, quantity: int = 1) -> Cart:
    """Add units of a product; adding an existing product increases its quantity."""
    if quantity <= 0:
        raise ValidationError("quantity must be > 0")

    cart = get_or_create_cart(ctx.user_id)
    item = db.session.query(CartItem).filter_by(cart_id=cart.id, product_id=product_id).first()
    new_quantity = quantity + (item.quantity if item else 0)

    listed = _check_quantity(product_id, new_quantity)

    if item is None:
        item = CartItem(cart_id=cart.id, product_id=product_id, quantity=new_quantity, unit_price_cents=listed.price_cents)
        db.session.add(item)
    else:
        item.quantity = new_quantity
        item.unit_price_cents = listed.price_cents

    db.session.commit()
    db.session.refresh(cart)
    return cart


def update_quantity(ctx: RequestContext, product_id: int, quantity: int) -> Cart:
    """Set an absolute quantity; zero removes the line."""
    if quantity < 0:
        raise ValidationError("quantity must be >= 0")
    if quantity == 0:
        return remove_item(ctx, product_id)

    cart = get_or_create_cart(ctx.user_id)
    item = db.session.query(CartItem).filter_by(cart_id=cart.id, product_id=product_id).first()
    if item is None:
        raise NotFoundError("Product is not in your cart")

    listed = _check_quantity(product_id, quantity)
    item.quantity = quantity
    item.unit_price_cents = listed.price_cents

    db.session.commit()
    db.session.refresh(cart)
    return cart


def remove_item(ctx: RequestContext, product_id: int) -> Cart:
    cart = get_or_create_cart(ctx.user_id)
    item = db.session.query(CartItem).filter_by(cart_id=cart.id, product_id=product_id).first()
    if item is None:
        raise NotFoundError("Product is not in your cart")

    db.session.delete(item)
    db.session.commit()
    db.session.refresh(cart)
    return cart


def clear_cart(user_id: int) -> int:
    """
    Delete every line of the user's cart in the current transaction.

    Called from order confirmation; does not commit. Returns lines removed.
    """
    cart = db.session.query(Cart).filter_by(user_id=user_id).first()
    if cart is None:
        return 0
    removed = db.session.query(CartItem).filter_by(cart_id=cart.id).delete(synchronize_session="fetch")
    db.session.expire(cart, ["items"])
    return removed


def cart_lines(user_id: int) -> list[CartItem]:
    cart = db.session.query(Cart).filter_by(user_id=user_id).first()
    if cart is None:
        return []
    return db.session.query(CartItem).filter_by(cart_id=cart.id).order_by(CartItem.id.asc()).all()
