from __future__ import annotations

from datetime import datetime
from typing import Iterable
from uuid import UUID

from sqlalchemy import or_, update
from sqlmodel import Session, func, select

from creditdesk.core.errors import ConflictError, NotFoundError, ValidationError
from creditdesk.core.logging_setup import logger
from creditdesk.models.base import utcnow
from creditdesk.models.coupon import Coupon, CouponRedemption
from creditdesk.models.user import User
from creditdesk.schemas.coupon import CouponCreate, CouponUpdate


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


class CouponService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_coupons(self) -> Iterable[Coupon]:
        return self.session.exec(select(Coupon).order_by(Coupon.created_at.desc())).all()

    def list_available(self, email: str, *, now: datetime | None = None) -> list[Coupon]:
        """Active, unexpired coupons that are unrestricted or restricted to ``email``."""
        now = now or utcnow()
        normalized = (email or "").strip().lower()
        statement = (
            select(Coupon)
            .where(Coupon.is_active.is_(True))
            .where(or_(Coupon.expiry_date.is_(None), Coupon.expiry_date >= now))
            .where(or_(Coupon.restricted_email.is_(None), func.lower(Coupon.restricted_email) == normalized))
            .order_by(Coupon.created_at.desc())
        )
        return [
            coupon
            for coupon in self.session.exec(statement).all()
            if coupon.usage_limit is None or coupon.usage_count < coupon.usage_limit
        ]

    def get_coupon(self, coupon_id: str | UUID) -> Coupon | None:
        return self.session.get(Coupon, UUID(str(coupon_id)))

    def require_coupon(self, coupon_id: str | UUID) -> Coupon:
        coupon = self.get_coupon(coupon_id)
        if not coupon:
            raise NotFoundError("Coupon not found")
        return coupon

    def get_by_code(self, code: str | None) -> Coupon | None:
        normalized = normalize_code(code)
        if not normalized:
            return None
        return self.session.exec(select(Coupon).where(Coupon.code == normalized)).first()

    def create_coupon(self, payload: CouponCreate) -> Coupon:
        if self.get_by_code(payload.code):
            raise ConflictError("Coupon code already exists")
        data = payload.model_dump()
        data["discount_type"] = payload.discount_type.value
        if payload.restricted_email:
            data["restricted_email"] = payload.restricted_email.lower()
        coupon = Coupon(**data)
        self.session.add(coupon)
        self.session.commit()
        self.session.refresh(coupon)
        return coupon

    def update_coupon(self, coupon: Coupon, payload: CouponUpdate) -> Coupon:
        for field, value in payload.changes().items():
            if field == "discount_type":
                value = value.value if hasattr(value, "value") else value
            if field == "restricted_email" and value:
                value = value.lower()
            setattr(coupon, field, value)
        coupon.updated_at = utcnow()
        self.session.add(coupon)
        self.session.commit()
        self.session.refresh(coupon)
        return coupon

    def delete_coupon(self, coupon: Coupon) -> None:
        self.session.delete(coupon)
        self.session.commit()

    def get_stats(self, *, now: datetime | None = None) -> dict[str, int]:
        now = now or utcnow()
        coupons = list(self.list_coupons())
        expired = sum(1 for coupon in coupons if coupon.is_expired(now))
        active = sum(1 for coupon in coupons if coupon.is_active and not coupon.is_expired(now))
        redemptions = self.session.exec(select(func.count()).select_from(CouponRedemption)).one()
        return {
            "total_coupons": len(coupons),
            "active_coupons": active,
            "expired_coupons": expired,
            "total_redemptions": int(redemptions or 0),
        }

    def ensure_redeemable(self, coupon: Coupon, user: User, *, now: datetime | None = None) -> None:
        """Reject a coupon the user may not apply; called before any charge is attempted."""
        now = now or utcnow()
        if not coupon.is_active:
            raise ValidationError(f'Coupon "{coupon.code}" is not active')
        if coupon.is_expired(now):
            raise ValidationError(f'Coupon "{coupon.code}" has expired')
        if coupon.usage_limit is not None and coupon.usage_count >= coupon.usage_limit:
            raise ValidationError(f'Coupon "{coupon.code}" has reached its usage limit')
        if coupon.restricted_email and coupon.restricted_email.lower() != user.email.lower():
            raise ValidationError(f'Coupon "{coupon.code}" is not available for this account')
        if coupon.individual_use:
            already_used = self.session.exec(
                select(CouponRedemption)
                .where(CouponRedemption.coupon_id == coupon.id)
                .where(CouponRedemption.user_id == user.id)
            ).first()
            if already_used:
                raise ValidationError(f'Coupon "{coupon.code}" was already used by this account')

    def record_redemption(self, coupon: Coupon, user: User) -> bool:
        """Increment usage in the caller's transaction. Returns False when the limit was hit concurrently."""
        statement = (
            update(Coupon)
            .where(Coupon.id == coupon.id)
            .where(or_(Coupon.usage_limit.is_(None), Coupon.usage_count < Coupon.usage_limit))
            .values(usage_count=Coupon.usage_count + 1)
        )
        result = self.session.connection().execute(statement)
        if result.rowcount == 0:
            logger.warning("Coupon usage limit reached during redemption coupon=%s user=%s", coupon.code, user.id)
            return False
        self.session.add(CouponRedemption(coupon_id=coupon.id, user_id=user.id, email=user.email))
        return True
