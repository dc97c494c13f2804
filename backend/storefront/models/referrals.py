from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z


class Referral(db.Model):
    """A user may be referred once. The referrer is rewarded on the referred user's first confirmed order."""
    __tablename__ = "referrals"
    __table_args__ = (
        db.UniqueConstraint("referred_user_id", name="uq_referrals_referred"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    referrer_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    referred_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="PENDING")  # PENDING, REWARDED
    reward_cents = db.Column(db.Integer, nullable=True)
    rewarded_order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    rewarded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "referrer_user_id": self.referrer_user_id,
            "referred_user_id": self.referred_user_id,
            "status": self.status,
            "reward_cents": self.reward_cents,
            "rewarded_order_id": self.rewarded_order_id,
            "created_at": to_utc_z(self.created_at),
            "rewarded_at": to_utc_z(self.rewarded_at),
        }
