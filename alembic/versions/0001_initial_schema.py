"""initial lottery schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19 00:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ID_TYPE = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def upgrade() -> None:
    op.create_table(
        "lotteries",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("campaign_id", sa.String(length=64), nullable=False),
        sa.Column("draw_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ticket_price", sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column("currency", sa.String(length=10), nullable=False),
        sa.Column("max_tickets", sa.Integer(), nullable=False),
        sa.Column("sold_tickets", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("drawn_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "max_tickets > 0", name=op.f("ck_lotteries_max_tickets_positive")
        ),
        sa.CheckConstraint(
            "sold_tickets >= 0 AND sold_tickets <= max_tickets",
            name=op.f("ck_lotteries_sold_tickets_within_capacity"),
        ),
        sa.CheckConstraint(
            "status IN ('ACTIVE','DRAWING','COMPLETED')",
            name=op.f("ck_lotteries_status_enum"),
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_lotteries")),
    )
    op.create_index(
        op.f("ix_lotteries_campaign_id"), "lotteries", ["campaign_id"], unique=False
    )
    op.create_index("ix_lotteries_status", "lotteries", ["status"], unique=False)

    op.create_table(
        "lottery_prizes",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("lottery_id", ID_TYPE, nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("value", sa.Numeric(precision=14, scale=2), nullable=False),
        sa.Column("currency", sa.String(length=10), nullable=True),
        sa.ForeignKeyConstraint(
            ["lottery_id"],
            ["lotteries.id"],
            name=op.f("fk_lottery_prizes_lottery_id_lotteries"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_lottery_prizes")),
        sa.UniqueConstraint(
            "lottery_id", "position", name="uq_lottery_prize_position"
        ),
    )

    op.create_table(
        "lottery_tickets",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("lottery_id", ID_TYPE, nullable=False),
        sa.Column("number", sa.String(length=32), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("purchase_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("transaction_id", sa.String(length=64), nullable=False),
        sa.ForeignKeyConstraint(
            ["lottery_id"],
            ["lotteries.id"],
            name=op.f("fk_lottery_tickets_lottery_id_lotteries"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_lottery_tickets")),
        sa.UniqueConstraint("lottery_id", "number", name="uq_lottery_ticket_number"),
        sa.UniqueConstraint("transaction_id", name="uq_lottery_ticket_transaction"),
    )
    op.create_index(
        "ix_lottery_tickets_lottery_user",
        "lottery_tickets",
        ["lottery_id", "user_id"],
        unique=False,
    )

    op.create_table(
        "lottery_winners",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("lottery_id", ID_TYPE, nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("prize_id", ID_TYPE, nullable=False),
        sa.Column("ticket_id", ID_TYPE, nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("ticket_number", sa.String(length=32), nullable=False),
        sa.Column("draw_date", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["lottery_id"],
            ["lotteries.id"],
            name=op.f("fk_lottery_winners_lottery_id_lotteries"),
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["prize_id"],
            ["lottery_prizes.id"],
            name=op.f("fk_lottery_winners_prize_id_lottery_prizes"),
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["ticket_id"],
            ["lottery_tickets.id"],
            name=op.f("fk_lottery_winners_ticket_id_lottery_tickets"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_lottery_winners")),
        sa.UniqueConstraint("lottery_id", "ticket_id", name="uq_lottery_winner_ticket"),
        sa.UniqueConstraint("lottery_id", "prize_id", name="uq_lottery_winner_prize"),
        sa.UniqueConstraint(
            "lottery_id", "position", name="uq_lottery_winner_position"
        ),
    )
    op.create_index(
        op.f("ix_lottery_winners_user_id"), "lottery_winners", ["user_id"], unique=False
    )


def downgrade() -> None:
    op.drop_index(op.f("ix_lottery_winners_user_id"), table_name="lottery_winners")
    op.drop_table("lottery_winners")
    op.drop_index("ix_lottery_tickets_lottery_user", table_name="lottery_tickets")
    op.drop_table("lottery_tickets")
    op.drop_table("lottery_prizes")
    op.drop_index("ix_lotteries_status", table_name="lotteries")
    op.drop_index(op.f("ix_lotteries_campaign_id"), table_name="lotteries")
    op.drop_table("lotteries")
