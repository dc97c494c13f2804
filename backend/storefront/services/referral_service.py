# Overview: Service-layer operations for referrals; linking users and rewarding first purchases.

from __future__ import annotations

import secrets
import string

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Order, Referral, User
from ..errors import ConflictError, NotFoundError, ValidationError
from storefront.time_utils import utcnow
from .ledger_service import append_ledger_event
from .wallet_service import ENTRY_REFERRAL_REWARD, credit


REFERRAL_CODE_ALPHABET = string.ascii_uppercase + string.digits


def referral_reward_key(referrer_user_id: int, referred_user_id: int) -> str:
    return f"referral:{referrer_user_id}:{referred_user_id}"


def generate_referral_code(length: int = 8) -> str:
    while True:
        code = "".join(secrets.choice(REFERRAL_CODE_ALPHABET) for _ in range(length))
        if db.session.query(User.id).filter_by(referral_code=code).first() is None:
            return code


def ensure_referral_code(user: User) -> str:
    if not user.referral_code:
        user.referral_code = generate_referral_code()
        db.session.flush()
    return user.referral_code


def register_referral(referrer_code: str, referred_user_id: int) -> Referral:
    """
    Link a referred user to the owner of referrer_code.

    Raises NotFoundError for an unknown code, ValidationError for a
    self-referral, ConflictError if the user was already referred.
    """
    code = (referrer_code or "").strip().upper()
    referrer = db.session.query(User).filter_by(referral_code=code).first() if code else None
    if referrer is None:
        raise NotFoundError("Referral code not found")
    if referrer.id == referred_user_id:
        raise ValidationError("You cannot refer yourself")

    if db.session.query(Referral).filter_by(referred_user_id=referred_user_id).first() is not None:
        raise ConflictError("This account was already referred")

    referral = Referral(
        referrer_user_id=referrer.id,
        referred_user_id=referred_user_id,
        status="PENDING",
    )
    db.session.add(referral)
    referred = db.session.get(User, referred_user_id)
    if referred is not None:
        referred.referred_by_user_id = referrer.id

    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("This account was already referred")

    append_ledger_event(
        event_type="REFERRAL_REGISTERED",
        event_category="referrals",
        entity_type="referral",
        entity_id=referral.id,
        actor_user_id=referred_user_id,
    )
    db.session.commit()
    return referral


def reward_first_purchase(order: Order):
    """
    Credit the referrer when `order` is the referred user's first confirmed order.

    Runs inside order confirmation. Returns the wallet entry, or None when
    there is nothing to reward.
    """
    referral = db.session.query(Referral).filter_by(
        referred_user_id=order.user_id,
        status="PENDING",
    ).first()
    if referral is None:
        return None

    earlier_confirmed = db.session.query(Order.id).filter(
        Order.user_id == order.user_id,
        Order.id != order.id,
        Order.confirmed_at.isnot(None),
    ).first()
    if earlier_confirmed is not None:
        return None

    reward_cents = current_app.config["REFERRAL_REWARD_CENTS"]
    entry = credit(
        referral.referrer_user_id,
        reward_cents,
        entry_type=ENTRY_REFERRAL_REWARD,
        idempotency_key=referral_reward_key(referral.referrer_user_id, referral.referred_user_id),
        order_id=order.id,
        description=f"Referral reward for order {order.order_number}",
    )
    referral.status = "REWARDED"
    referral.reward_cents = reward_cents
    referral.rewarded_order_id = order.id
    referral.rewarded_at = utcnow()
    return entry


def list_referrals(referrer_user_id: int) -> list[Referral]:
    return (
        db.session.query(Referral)
        .filter_by(referrer_user_id=referrer_user_id)
        .order_by(Referral.id.desc())
        .all()
    )
