"""lottery audit trail

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-19 00:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0002"
down_revision: Union[str, None] = "0001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ID_TYPE = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def upgrade() -> None:
    op.create_table(
        "lottery_audit",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("lottery_id", ID_TYPE, nullable=False),
        sa.Column("action", sa.String(length=32), nullable=False),
        sa.Column("actor", sa.String(length=64), nullable=False),
        sa.Column("ticket_number", sa.String(length=32), nullable=True),
        sa.Column("selection_method", sa.String(length=32), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["lottery_id"],
            ["lotteries.id"],
            name=op.f("fk_lottery_audit_lottery_id_lotteries"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_lottery_audit")),
    )
    op.create_index(
        "ix_lottery_audit_lottery_action",
        "lottery_audit",
        ["lottery_id", "action"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_lottery_audit_lottery_action", table_name="lottery_audit")
    op.drop_table("lottery_audit")
