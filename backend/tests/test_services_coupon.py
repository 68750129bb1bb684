from datetime import datetime, timedelta
from decimal import Decimal

import pydantic
import pytest

from creditdesk.core.errors import ConflictError, ValidationError
from creditdesk.models.coupon import Coupon, CouponRedemption
from creditdesk.schemas.coupon import CouponCreate, CouponUpdate
from creditdesk.services.coupon import CouponService

NOW = datetime(2026, 10, 14, 12, 0)


def _coupon(session, **fields) -> Coupon:
    data = {"code": "SAVE10", "amount": Decimal("10")}
    data.update(fields)
    coupon = Coupon(**data)
    session.add(coupon)
    session.commit()
    session.refresh(coupon)
    return coupon


def test_create_coupon_normalizes_code_and_rejects_duplicates(db_session):
    service = CouponService(db_session)

    coupon = service.create_coupon(CouponCreate(code=" spring ", amount=Decimal("15"), usage_limit=3))

    assert coupon.code == "SPRING"
    assert coupon.discount_type == "percent"
    with pytest.raises(ConflictError):
        service.create_coupon(CouponCreate(code="Spring", amount=Decimal("5")))


@pytest.mark.parametrize(
    "fields",
    [
        {"is_active": False},
        {"expiry_date": NOW - timedelta(days=1)},
        {"usage_limit": 2, "usage_count": 2},
        {"restricted_email": "someone-else@example.com"},
    ],
)
def test_ensure_redeemable_rejects(db_session, make_user, fields):
    user = make_user()
    coupon = _coupon(db_session, **fields)

    with pytest.raises(ValidationError):
        CouponService(db_session).ensure_redeemable(coupon, user, now=NOW)


def test_individual_use_coupon_only_once_per_user(db_session, make_user):
    user = make_user()
    coupon = _coupon(db_session, individual_use=True)
    service = CouponService(db_session)

    service.ensure_redeemable(coupon, user, now=NOW)
    assert service.record_redemption(coupon, user) is True
    db_session.commit()

    with pytest.raises(ValidationError):
        service.ensure_redeemable(coupon, user, now=NOW)


def test_record_redemption_respects_usage_limit(db_session, make_user):
    first = make_user()
    second = make_user()
    coupon = _coupon(db_session, usage_limit=1)
    service = CouponService(db_session)

    assert service.record_redemption(coupon, first) is True
    assert service.record_redemption(coupon, second) is False
    db_session.commit()

    db_session.refresh(coupon)
    assert coupon.usage_count == 1
    assert len(coupon.redemptions) == 1
    assert coupon.redemptions[0].user_id == first.id


def test_list_available_filters_by_email_and_state(db_session):
    _coupon(db_session, code="OPEN")
    _coupon(db_session, code="MINE", restricted_email="me@example.com")
    _coupon(db_session, code="THEIRS", restricted_email="them@example.com")
    _coupon(db_session, code="OLD", expiry_date=NOW - timedelta(days=1))
    _coupon(db_session, code="OFF", is_active=False)
    _coupon(db_session, code="FULL", usage_limit=1, usage_count=1)

    coupons = CouponService(db_session).list_available("ME@example.com", now=NOW)

    assert sorted(coupon.code for coupon in coupons) == ["MINE", "OPEN"]


def test_update_coupon_applies_only_sent_fields(db_session):
    coupon = _coupon(db_session, usage_limit=5, expiry_date=NOW + timedelta(days=10))
    service = CouponService(db_session)

    updated = service.update_coupon(coupon, CouponUpdate.model_validate({"usageLimit": None, "isActive": False}))

    assert updated.usage_limit is None
    assert updated.is_active is False
    assert updated.expiry_date == NOW + timedelta(days=10)
    assert updated.amount == Decimal("10")


def test_patch_rejects_null_on_required_field():
    with pytest.raises(pydantic.ValidationError):
        CouponUpdate.model_validate({"isActive": None})


def test_coupon_stats(db_session, make_user):
    user = make_user()
    active = _coupon(db_session, code="A")
    _coupon(db_session, code="B", expiry_date=datetime(2000, 1, 1))
    _coupon(db_session, code="C", is_active=False)
    db_session.add(CouponRedemption(coupon_id=active.id, user_id=user.id, email=user.email))
    db_session.commit()

    stats = CouponService(db_session).get_stats()

    assert stats == {
        "total_coupons": 3,
        "active_coupons": 1,
        "expired_coupons": 1,
        "total_redemptions": 1,
    }
