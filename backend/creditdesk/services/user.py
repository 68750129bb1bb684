from __future__ import annotations

from typing import Iterable
from uuid import UUID

from sqlmodel import Session, select

from creditdesk.core.errors import ConflictError, NotFoundError
from creditdesk.models.base import utcnow
from creditdesk.models.user import User
from creditdesk.models.wallet import Wallet
from creditdesk.schemas.user import UserCreate, UserUpdate


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_users(self) -> Iterable[User]:
        return self.session.exec(select(User).order_by(User.created_at.desc())).all()

    def get_user(self, user_id: str | UUID) -> User | None:
        return self.session.get(User, UUID(str(user_id)))

    def require_user(self, user_id: str | UUID) -> User:
        user = self.get_user(user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def get_by_email(self, email: str) -> User | None:
        normalized = (email or "").strip().lower()
        return self.session.exec(select(User).where(User.email == normalized)).first()

    def get_wallet(self, user_id: UUID) -> Wallet | None:
        return self.session.exec(select(Wallet).where(Wallet.user_id == user_id)).first()

    def create_user(self, payload: UserCreate) -> User:
        """Register a user together with its empty wallet."""
        normalized_email = payload.email.strip().lower()
        if self.get_by_email(normalized_email):
            raise ConflictError("A user with this e-mail already exists")

        user = User(
            email=normalized_email,
            first_name=payload.first_name.strip(),
            last_name=payload.last_name.strip() if payload.last_name else None,
            country=payload.country.strip() if payload.country else None,
        )
        self.session.add(user)
        self.session.flush()
        self.session.add(Wallet(user_id=user.id))
        self.session.commit()
        self.session.refresh(user)
        return user

    def update_user(self, user: User, payload: UserUpdate) -> User:
        for field, value in payload.changes().items():
            setattr(user, field, value.strip() if isinstance(value, str) else value)
        user.updated_at = utcnow()
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user
