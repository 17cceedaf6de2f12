"""reconciler event cursor

Revision ID: 0002_reconciler_state
Revises: 0001_initial
Create Date: 2026-10-19 15:00:00
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "0002_reconciler_state"
down_revision: Union[str, Sequence[str], None] = "0001_initial"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "reconciler_state",
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("last_block", sa.BigInteger(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("name", name="pk_reconciler_state"),
    )


def downgrade() -> None:
    op.drop_table("reconciler_state")
