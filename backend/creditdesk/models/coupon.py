from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List
from uuid import UUID

from sqlmodel import Field, Relationship

from creditdesk.models.base import TimestampedModel, UUIDModel, utcnow


class DiscountType(str, Enum):
    PERCENT = "percent"
    FIXED = "fixed"


class Coupon(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "coupons"

    code: str = Field(unique=True, index=True, max_length=64)
    discount_type: str = Field(default=DiscountType.PERCENT.value, max_length=16)
    amount: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    usage_limit: int | None = Field(default=None)
    usage_count: int = Field(default=0)
    expiry_date: datetime | None = Field(default=None)
    restricted_email: str | None = Field(default=None, index=True)
    individual_use: bool = Field(default=False)
    is_active: bool = Field(default=True)

    redemptions: List["CouponRedemption"] = Relationship(
        back_populates="coupon",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )

    def is_expired(self, now: datetime) -> bool:
        return self.expiry_date is not None and self.expiry_date < now


class CouponRedemption(UUIDModel, table=True):
    __tablename__ = "coupon_redemptions"

    coupon_id: UUID = Field(foreign_key="coupons.id", index=True)
    user_id: UUID = Field(foreign_key="users.id", index=True)
    email: str
    redeemed_at: datetime = Field(default_factory=utcnow, nullable=False)

    coupon: Coupon = Relationship(back_populates="redemptions")
