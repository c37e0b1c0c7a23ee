"""Remember the user's preferred card on file.

Revision ID: 8b3d2f61c4a7
Revises: 5f1c0e7a9b2d
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

revision = "8b3d2f61c4a7"
down_revision = "5f1c0e7a9b2d"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column("users", sa.Column("default_card_id", sa.String(255), nullable=True))


def downgrade() -> None:
    op.drop_column("users", "default_card_id")
