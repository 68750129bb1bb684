from __future__ import annotations

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlmodel import Session

from creditdesk.api.deps import get_db, get_payment_gateway, get_vat_service
from creditdesk.models.user import User
from creditdesk.schemas.billing import InvoiceRead
from creditdesk.schemas.user import UserCreate, UserRead, UserUpdate
from creditdesk.services.billing import BillingService
from creditdesk.services.payments import PaymentGateway
from creditdesk.services.user import UserService
from creditdesk.services.vat import VatService

router = APIRouter(prefix="/users", tags=["users"])


def _serialize_user(service: UserService, user: User) -> UserRead:
    wallet = service.get_wallet(user.id)
    read = UserRead.model_validate(user, from_attributes=True)
    return read.model_copy(update={"wallet_balance": wallet.balance if wallet else None})


@router.get("", response_model=List[UserRead])
def list_users(session: Session = Depends(get_db)) -> List[UserRead]:
    service = UserService(session)
    return [_serialize_user(service, user) for user in service.list_users()]


@router.post("", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def create_user(payload: UserCreate, session: Session = Depends(get_db)) -> UserRead:
    service = UserService(session)
    user = service.create_user(payload)
    return _serialize_user(service, user)


@router.get("/{user_id}", response_model=UserRead)
def get_user(user_id: UUID, session: Session = Depends(get_db)) -> UserRead:
    service = UserService(session)
    return _serialize_user(service, service.require_user(user_id))


@router.patch("/{user_id}", response_model=UserRead)
def update_user(user_id: UUID, payload: UserUpdate, session: Session = Depends(get_db)) -> UserRead:
    service = UserService(session)
    user = service.update_user(service.require_user(user_id), payload)
    return _serialize_user(service, user)


@router.get("/{user_id}/invoices", response_model=List[InvoiceRead])
def list_user_invoices(
    user_id: UUID,
    session: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    vat_service: VatService = Depends(get_vat_service),
) -> List[InvoiceRead]:
    UserService(session).require_user(user_id)
    invoices = BillingService(session, gateway=gateway, vat_service=vat_service).list_invoices(user_id)
    return [InvoiceRead.model_validate(invoice, from_attributes=True) for invoice in invoices]
