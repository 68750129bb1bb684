from datetime import datetime
from typing import List
from uuid import UUID

from sqlmodel import Field, Relationship

from creditdesk.models.base import TimestampedModel, UUIDModel, utcnow


class Wallet(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "wallets"

    user_id: UUID = Field(foreign_key="users.id", unique=True, index=True)
    stripe_customer_id: str | None = Field(default=None, max_length=64)
    balance: int = Field(default=0)
    total_purchased: int = Field(default=0)

    cards: List["PaymentCard"] = Relationship(
        back_populates="wallet",
        sa_relationship_kwargs={"cascade": "all, delete-orphan", "order_by": "PaymentCard.created_at"},
    )


class PaymentCard(UUIDModel, table=True):
    __tablename__ = "payment_cards"

    wallet_id: UUID = Field(foreign_key="wallets.id", index=True)
    stripe_card_id: str = Field(index=True, max_length=64)
    brand: str | None = Field(default=None, max_length=32)
    last4: str | None = Field(default=None, max_length=4)
    exp_month: int | None = Field(default=None)
    exp_year: int | None = Field(default=None)
    is_primary: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow, nullable=False)

    wallet: Wallet = Relationship(back_populates="cards")
