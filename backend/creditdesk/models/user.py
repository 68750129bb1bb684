from sqlmodel import Field

from creditdesk.models.base import TimestampedModel, UUIDModel


class User(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "users"

    email: str = Field(index=True, unique=True)
    first_name: str
    last_name: str | None = Field(default=None)
    # Free-text country name, resolved to an ISO code only when billing needs it.
    country: str | None = Field(default=None, max_length=128)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name or ''}".strip()
