from __future__ import annotations

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlmodel import Session

from creditdesk.api.deps import get_db
from creditdesk.schemas.coupon import CouponCreate, CouponRead, CouponStats, CouponUpdate
from creditdesk.services.coupon import CouponService

router = APIRouter(prefix="/coupons", tags=["coupons"])


def _service(session: Session) -> CouponService:
    return CouponService(session)


@router.get("", response_model=List[CouponRead])
def list_coupons(session: Session = Depends(get_db)) -> List[CouponRead]:
    return [CouponRead.model_validate(coupon, from_attributes=True) for coupon in _service(session).list_coupons()]


@router.post("", response_model=CouponRead, status_code=status.HTTP_201_CREATED)
def create_coupon(payload: CouponCreate, session: Session = Depends(get_db)) -> CouponRead:
    coupon = _service(session).create_coupon(payload)
    return CouponRead.model_validate(coupon, from_attributes=True)


@router.get("/stats", response_model=CouponStats)
def coupon_stats(session: Session = Depends(get_db)) -> CouponStats:
    return CouponStats(**_service(session).get_stats())


@router.get("/available", response_model=List[CouponRead])
def available_coupons(
    email: str = Query(..., min_length=3),
    session: Session = Depends(get_db),
) -> List[CouponRead]:
    coupons = _service(session).list_available(email)
    return [CouponRead.model_validate(coupon, from_attributes=True) for coupon in coupons]


@router.get("/{coupon_id}", response_model=CouponRead)
def get_coupon(coupon_id: UUID, session: Session = Depends(get_db)) -> CouponRead:
    coupon = _service(session).require_coupon(coupon_id)
    return CouponRead.model_validate(coupon, from_attributes=True)


@router.patch("/{coupon_id}", response_model=CouponRead)
def update_coupon(
    coupon_id: UUID,
    payload: CouponUpdate,
    session: Session = Depends(get_db),
) -> CouponRead:
    service = _service(session)
    coupon = service.update_coupon(service.require_coupon(coupon_id), payload)
    return CouponRead.model_validate(coupon, from_attributes=True)


@router.delete("/{coupon_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_coupon(coupon_id: UUID, session: Session = Depends(get_db)) -> Response:
    service = _service(session)
    service.delete_coupon(service.require_coupon(coupon_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)
