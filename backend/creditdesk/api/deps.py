from fastapi import Depends, Request
from sqlmodel import Session

from creditdesk.db.session import get_session
from creditdesk.services.notification import NotificationService
from creditdesk.services.payments import PaymentGateway
from creditdesk.services.vat import VatRegistry, VatService


def get_db(session: Session = Depends(get_session)) -> Session:
    return session


# Clients are built once in the application lifespan and shared by every request.
def get_payment_gateway(request: Request) -> PaymentGateway:
    return request.app.state.payment_gateway


def get_vat_registry(request: Request) -> VatRegistry:
    return request.app.state.vat_registry


def get_vat_service(registry: VatRegistry = Depends(get_vat_registry)) -> VatService:
    return VatService(registry)


def get_notifier(request: Request) -> NotificationService:
    return request.app.state.notifier
