from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import EmailStr, Field, field_validator

from creditdesk.models.coupon import DiscountType
from creditdesk.schemas.common import CamelModel, IDModel, PatchModel, Timestamped


class CouponCreate(CamelModel):
    code: str = Field(min_length=1, max_length=64)
    discount_type: DiscountType = DiscountType.PERCENT
    amount: Decimal = Field(ge=0)
    usage_limit: int | None = Field(default=None, ge=1)
    expiry_date: datetime | None = None
    restricted_email: EmailStr | None = None
    individual_use: bool = False
    is_active: bool = True

    @field_validator("code")
    @classmethod
    def normalize_code(cls, value: str) -> str:
        return value.strip().upper()


class CouponUpdate(PatchModel):
    nullable_fields = frozenset({"usage_limit", "expiry_date", "restricted_email"})

    discount_type: DiscountType | None = None
    amount: Decimal | None = Field(default=None, ge=0)
    usage_limit: int | None = Field(default=None, ge=1)
    expiry_date: datetime | None = None
    restricted_email: EmailStr | None = None
    individual_use: bool | None = None
    is_active: bool | None = None


class RedemptionRead(CamelModel):
    user_id: UUID
    email: str
    redeemed_at: datetime


class CouponRead(IDModel, Timestamped):
    code: str
    discount_type: DiscountType
    amount: Decimal
    usage_limit: int | None = None
    usage_count: int
    expiry_date: datetime | None = None
    restricted_email: str | None = None
    individual_use: bool
    is_active: bool
    redemptions: list[RedemptionRead] = []


class CouponStats(CamelModel):
    total_coupons: int
    active_coupons: int
    expired_coupons: int
    total_redemptions: int
