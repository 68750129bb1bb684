from __future__ import annotations

from alembic import op
from sqlmodel import SQLModel
from creditdesk.db.base import *  # noqa: F401,F403 register billing tables on SQLModel.metadata

# revision identifiers, used by Alembic.
revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Users, wallets, cards, invoices, credit lines, invoice sequence and coupons
    bind = op.get_bind()
    SQLModel.metadata.create_all(bind=bind)


def downgrade() -> None:
    bind = op.get_bind()
    SQLModel.metadata.drop_all(bind=bind)
