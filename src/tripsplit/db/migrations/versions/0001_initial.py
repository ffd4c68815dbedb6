"""expense splitting schema

Revision ID: 0001
Revises:
Create Date: 2026-10-16 00:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID


revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def _uuid_pk() -> sa.Column:
    return sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()"))


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())


def _share_columns() -> list[sa.Column]:
    return [
        sa.Column("participant_id", UUID(as_uuid=True), sa.ForeignKey("group_members.id", ondelete="RESTRICT")),
        sa.Column(
            "external_participant_id",
            UUID(as_uuid=True),
            sa.ForeignKey("external_participants.id", ondelete="SET NULL"),
        ),
        sa.Column("external_name", sa.String(length=255)),
        sa.Column("split_percentage", sa.Numeric(9, 6), nullable=False, server_default="0"),
        sa.Column("amount_owed", sa.Numeric(12, 2), nullable=False),
        _created_at(),
    ]


def upgrade() -> None:
    op.create_table(
        "group_members",
        _uuid_pk(),
        sa.Column("group_id", UUID(as_uuid=True), nullable=False),
        sa.Column("display_name", sa.Text(), nullable=False),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "trips",
        _uuid_pk(),
        sa.Column("group_id", UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("destination", sa.Text()),
        sa.Column("start_date", sa.Date()),
        sa.Column("end_date", sa.Date()),
    )

    op.create_table(
        "external_participants",
        _uuid_pk(),
        sa.Column("group_id", UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        _created_at(),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("group_id", "name", name="external_participants_group_id_name_key"),
    )

    op.create_table(
        "expenses",
        _uuid_pk(),
        sa.Column("group_id", UUID(as_uuid=True), nullable=False),
        sa.Column("trip_id", UUID(as_uuid=True), sa.ForeignKey("trips.id", ondelete="CASCADE"), nullable=False),
        # days and events live outside this schema
        sa.Column("day_id", UUID(as_uuid=True)),
        sa.Column("event_id", UUID(as_uuid=True)),
        sa.Column(
            "owner_id",
            UUID(as_uuid=True),
            sa.ForeignKey("group_members.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("category", sa.String(length=100)),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("amount >= 0", name="expenses_amount_check"),
    )

    op.create_table(
        "expense_participants",
        _uuid_pk(),
        sa.Column("expense_id", UUID(as_uuid=True), sa.ForeignKey("expenses.id", ondelete="CASCADE"), nullable=False),
        *_share_columns(),
        sa.CheckConstraint(
            "(participant_id IS NULL) <> (external_name IS NULL)",
            name="expense_participants_ref_check",
        ),
        sa.UniqueConstraint("expense_id", "participant_id", name="expense_participants_expense_id_participant_id_key"),
        sa.UniqueConstraint("expense_id", "external_name", name="expense_participants_expense_id_external_name_key"),
    )

    op.create_table(
        "expense_line_items",
        _uuid_pk(),
        sa.Column("expense_id", UUID(as_uuid=True), sa.ForeignKey("expenses.id", ondelete="CASCADE"), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("category", sa.String(length=100)),
        _created_at(),
        sa.CheckConstraint("quantity >= 1", name="expense_line_items_quantity_check"),
    )

    op.create_table(
        "line_item_participants",
        _uuid_pk(),
        sa.Column(
            "line_item_id",
            UUID(as_uuid=True),
            sa.ForeignKey("expense_line_items.id", ondelete="CASCADE"),
            nullable=False,
        ),
        *_share_columns(),
        sa.CheckConstraint(
            "(participant_id IS NULL) <> (external_name IS NULL)",
            name="line_item_participants_ref_check",
        ),
        sa.UniqueConstraint("line_item_id", "participant_id", name="line_item_participants_line_item_id_participant_id_key"),
        sa.UniqueConstraint("line_item_id", "external_name", name="line_item_participants_line_item_id_external_name_key"),
    )

    op.create_index("idx_group_members_group_id", "group_members", ["group_id"])
    op.create_index("idx_trips_group_id", "trips", ["group_id"])
    op.create_index("idx_external_participants_last_used", "external_participants", ["group_id", "last_used_at"])
    op.create_index("idx_expenses_group_trip", "expenses", ["group_id", "trip_id"])
    op.create_index("idx_expense_participants_expense_id", "expense_participants", ["expense_id"])
    op.create_index("idx_expense_line_items_expense_id", "expense_line_items", ["expense_id"])
    op.create_index("idx_line_item_participants_line_item_id", "line_item_participants", ["line_item_id"])


def downgrade() -> None:
    op.drop_index("idx_line_item_participants_line_item_id", table_name="line_item_participants")
    op.drop_index("idx_expense_line_items_expense_id", table_name="expense_line_items")
    op.drop_index("idx_expense_participants_expense_id", table_name="expense_participants")
    op.drop_index("idx_expenses_group_trip", table_name="expenses")
    op.drop_index("idx_external_participants_last_used", table_name="external_participants")
    op.drop_index("idx_trips_group_id", table_name="trips")
    op.drop_index("idx_group_members_group_id", table_name="group_members")

    op.drop_table("line_item_participants")
    op.drop_table("expense_line_items")
    op.drop_table("expense_participants")
    op.drop_table("expenses")
    op.drop_table("external_participants")
    op.drop_table("trips")
    op.drop_table("group_members")
