"""Add warehouse tables: IPOW items, delivery receipts, release forms, PO overrides.

Revision ID: 7d4b2e8a1c55
Revises: 3f1a9c2e7b10
Create Date: 2026-03-16
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "7d4b2e8a1c55"
down_revision: Union[str, Sequence[str], None] = "3f1a9c2e7b10"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    bind = op.get_bind()
    insp = sa.inspect(bind)
    existing = set(insp.get_table_names())

    if "ipow_items" not in existing:
        op.create_table(
            "ipow_items",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("wbs", sa.String(64), nullable=False),
            sa.Column("item_description", sa.Text(), nullable=False),
            sa.Column("resource", sa.String(255), nullable=True),
            sa.Column("type", sa.String(64), nullable=True),
            sa.Column("unit", sa.String(32), nullable=True),
            sa.Column("latest_ipow_qty", sa.Float(), nullable=False, server_default="0"),
            sa.Column("unit_cost", sa.Float(), nullable=True),
            sa.Column("total_cost", sa.Float(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        )
        op.create_index("idx_ipow_items_project_wbs", "ipow_items", ["project_id", "wbs"])

    if "delivery_receipts" not in existing:
        op.create_table(
            "delivery_receipts",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("dr_no", sa.String(32), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("supplier", sa.String(255), nullable=False),
            sa.Column("date", sa.Date(), nullable=False),
            sa.Column("time", sa.String(16), nullable=True),
            sa.Column("warehouseman", sa.String(255), nullable=False),
            sa.Column("locked", sa.Boolean(), nullable=False, server_default=sa.text("true")),
            sa.Column("dr_photo_key", sa.String(512), nullable=True),
            sa.Column("po_photo_key", sa.String(512), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.Column("created_by_user_id", sa.Integer(), nullable=True),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"], ondelete="SET NULL"),
            sa.UniqueConstraint("dr_no"),
        )
        op.create_index("idx_delivery_receipts_project_date", "delivery_receipts", ["project_id", "date"])

    if "dr_items" not in existing:
        op.create_table(
            "dr_items",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("dr_id", sa.Integer(), nullable=False),
            sa.Column("item_description", sa.Text(), nullable=False),
            sa.Column("wbs", sa.String(64), nullable=True),
            sa.Column("qty_in_dr", sa.Float(), nullable=False, server_default="0"),
            sa.Column("qty_in_po", sa.Float(), nullable=False, server_default="0"),
            sa.Column("unit", sa.String(32), nullable=True),
            sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
            sa.ForeignKeyConstraint(["dr_id"], ["delivery_receipts.id"], ondelete="CASCADE"),
        )
        op.create_index("ix_dr_items_dr_id", "dr_items", ["dr_id"])

    if "release_forms" not in existing:
        op.create_table(
            "release_forms",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("release_no", sa.String(32), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("received_by", sa.String(255), nullable=False),
            sa.Column("date", sa.Date(), nullable=False),
            sa.Column("warehouseman", sa.String(255), nullable=True),
            sa.Column("purpose", sa.Text(), nullable=True),
            sa.Column("locked", sa.Boolean(), nullable=False, server_default=sa.text("true")),
            sa.Column("attachment_key", sa.String(512), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.Column("created_by_user_id", sa.Integer(), nullable=True),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"], ondelete="SET NULL"),
            sa.UniqueConstraint("release_no"),
        )
        op.create_index("idx_release_forms_project_date", "release_forms", ["project_id", "date"])

    if "release_items" not in existing:
        op.create_table(
            "release_items",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("release_id", sa.Integer(), nullable=False),
            sa.Column("item_description", sa.Text(), nullable=False),
            sa.Column("wbs", sa.String(64), nullable=True),
            sa.Column("qty", sa.Float(), nullable=False, server_default="0"),
            sa.Column("unit", sa.String(32), nullable=True),
            sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
            sa.ForeignKeyConstraint(["release_id"], ["release_forms.id"], ondelete="CASCADE"),
        )
        op.create_index("ix_release_items_release_id", "release_items", ["release_id"])

    if "stock_po_overrides" not in existing:
        op.create_table(
            "stock_po_overrides",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("wbs", sa.String(64), nullable=False, server_default=""),
            sa.Column("item_description", sa.String(512), nullable=False),
            sa.Column("po", sa.Float(), nullable=False, server_default="0"),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.Column("updated_by_user_id", sa.Integer(), nullable=True),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["updated_by_user_id"], ["users.id"], ondelete="SET NULL"),
            sa.UniqueConstraint("project_id", "wbs", "item_description", name="uq_stock_po_overrides_item"),
        )


def downgrade() -> None:
    op.drop_table("stock_po_overrides")
    op.drop_table("release_items")
    op.drop_table("release_forms")
    op.drop_table("dr_items")
    op.drop_table("delivery_receipts")
    op.drop_index("idx_ipow_items_project_wbs", table_name="ipow_items")
    op.drop_table("ipow_items")
