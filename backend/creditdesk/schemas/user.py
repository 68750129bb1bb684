from __future__ import annotations

from pydantic import EmailStr

from creditdesk.schemas.common import CamelModel, IDModel, PatchModel, Timestamped


class UserCreate(CamelModel):
    email: EmailStr
    first_name: str
    last_name: str | None = None
    country: str | None = None


class UserUpdate(PatchModel):
    nullable_fields = frozenset({"last_name", "country"})

    first_name: str | None = None
    last_name: str | None = None
    country: str | None = None


class UserRead(IDModel, Timestamped):
    email: str
    first_name: str
    last_name: str | None = None
    country: str | None = None
    wallet_balance: int | None = None
