"""Initial schema: accounts, RBAC, audit, projects and accomplishment reports.

Revision ID: 3f1a9c2e7b10
Revises:
Create Date: 2026-03-02
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3f1a9c2e7b10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _parsed_table(name: str, *columns: sa.Column) -> None:
    op.create_table(
        name,
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("accomplishment_report_id", sa.Integer(), nullable=False),
        sa.Column("project_code", sa.String(128), nullable=False),
        *columns,
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["accomplishment_report_id"], ["accomplishment_reports.id"], ondelete="CASCADE"),
    )
    op.create_index(f"ix_{name}_accomplishment_report_id", name, ["accomplishment_report_id"])


def upgrade() -> None:
    bind = op.get_bind()
    insp = sa.inspect(bind)
    existing = set(insp.get_table_names())

    if "users" not in existing:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("email", sa.String(320), nullable=False),
            sa.Column("password_hash", sa.String(255), nullable=False),
            sa.Column("display_name", sa.String(255), nullable=True),
            sa.Column("status", sa.String(16), nullable=False, server_default="active"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
            sa.UniqueConstraint("email"),
        )

    if "roles" not in existing:
        op.create_table(
            "roles",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("key", sa.String(64), nullable=False),
            sa.Column("name", sa.String(128), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.UniqueConstraint("key"),
        )

    if "permissions" not in existing:
        op.create_table(
            "permissions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("key", sa.String(128), nullable=False),
            sa.Column("name", sa.String(128), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.UniqueConstraint("key"),
        )

    if "user_roles" not in existing:
        op.create_table(
            "user_roles",
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("role_id", sa.Integer(), nullable=False),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("user_id", "role_id"),
        )

    if "role_permissions" not in existing:
        op.create_table(
            "role_permissions",
            sa.Column("role_id", sa.Integer(), nullable=False),
            sa.Column("permission_id", sa.Integer(), nullable=False),
            sa.ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["permission_id"], ["permissions.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("role_id", "permission_id"),
        )

    if "audit_events" not in existing:
        op.create_table(
            "audit_events",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("request_id", sa.String(64), nullable=True),
            sa.Column("client_ip", sa.String(64), nullable=True),
            sa.Column("actor_user_id", sa.Integer(), nullable=True),
            sa.Column("actor_user_email", sa.String(320), nullable=True),
            sa.Column("action", sa.String(128), nullable=False),
            sa.Column("entity_type", sa.String(128), nullable=True),
            sa.Column("entity_id", sa.String(128), nullable=True),
            sa.Column("reason", sa.String(512), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"], ondelete="SET NULL"),
        )

    if "projects" not in existing:
        op.create_table(
            "projects",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("project_code", sa.String(32), nullable=False),
            sa.Column("parsed_project_id", sa.String(128), nullable=True),
            sa.Column("project_name", sa.String(255), nullable=False),
            sa.Column("client", sa.String(255), nullable=False),
            sa.Column("location", sa.String(255), nullable=False),
            sa.Column("status", sa.String(32), nullable=False, server_default="in_planning"),
            sa.Column("project_manager_id", sa.Integer(), nullable=True),
            sa.Column("project_inspector_id", sa.Integer(), nullable=True),
            sa.Column("warehouseman_id", sa.Integer(), nullable=True),
            sa.Column("latest_accomplishment_update", sa.Date(), nullable=True),
            sa.Column("has_parsed_data", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.Column("created_by_user_id", sa.Integer(), nullable=True),
            sa.Column("updated_by_user_id", sa.Integer(), nullable=True),
            sa.ForeignKeyConstraint(["project_manager_id"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["project_inspector_id"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["warehouseman_id"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["updated_by_user_id"], ["users.id"], ondelete="SET NULL"),
            sa.UniqueConstraint("project_code"),
        )
        op.create_index("idx_projects_status", "projects", ["status"])
        op.create_index("idx_projects_manager", "projects", ["project_manager_id"])
        op.create_index("idx_projects_inspector", "projects", ["project_inspector_id"])
        op.create_index("idx_projects_warehouseman", "projects", ["warehouseman_id"])

    if "accomplishment_reports" not in existing:
        op.create_table(
            "accomplishment_reports",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("uploaded_by_user_id", sa.Integer(), nullable=True),
            sa.Column("file_name", sa.String(255), nullable=False),
            sa.Column("file_size", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("content_type", sa.String(128), nullable=True),
            sa.Column("storage_key", sa.String(512), nullable=True),
            sa.Column("upload_date", sa.DateTime(), nullable=False),
            sa.Column("week_ending_date", sa.Date(), nullable=False),
            sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("reviewed_by_user_id", sa.Integer(), nullable=True),
            sa.Column("reviewed_at", sa.DateTime(), nullable=True),
            sa.Column("parsed_at", sa.DateTime(), nullable=True),
            sa.Column("parsed_status", sa.String(16), nullable=True),
            sa.Column("parse_error", sa.Text(), nullable=True),
            sa.Column("file_deleted_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["uploaded_by_user_id"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["reviewed_by_user_id"], ["users.id"], ondelete="SET NULL"),
            sa.UniqueConstraint("project_id", "week_ending_date", name="uq_accomplishment_reports_project_week"),
        )
        op.create_index("idx_accomplishment_reports_status", "accomplishment_reports", ["status"])
        op.create_index("idx_accomplishment_reports_week", "accomplishment_reports", ["week_ending_date"])

    if "project_details" not in existing:
        _parsed_table(
            "project_details",
            sa.Column("project_name", sa.String(255), nullable=True),
            sa.Column("client", sa.String(255), nullable=True),
            sa.Column("contractor_license", sa.String(128), nullable=True),
            sa.Column("project_location", sa.String(255), nullable=True),
            sa.Column("contract_amount", sa.Float(), nullable=True),
            sa.Column("direct_contract_amount", sa.Float(), nullable=True),
            sa.Column("planned_start_date", sa.Date(), nullable=True),
            sa.Column("planned_end_date", sa.Date(), nullable=True),
            sa.Column("actual_start_date", sa.Date(), nullable=True),
            sa.Column("actual_end_date", sa.Date(), nullable=True),
            sa.Column("calendar_days", sa.Float(), nullable=True),
            sa.Column("working_days", sa.Float(), nullable=True),
            sa.Column("pm_name", sa.String(255), nullable=True),
            sa.Column("site_engineer_name", sa.String(255), nullable=True),
            sa.Column("priority_level", sa.String(64), nullable=True),
            sa.Column("remarks", sa.Text(), nullable=True),
        )

    if "project_costs" not in existing:
        _parsed_table(
            "project_costs",
            sa.Column("target_cost_total", sa.Float(), nullable=True),
            sa.Column("swa_cost_total", sa.Float(), nullable=True),
            sa.Column("billed_cost_total", sa.Float(), nullable=True),
            sa.Column("direct_cost_total", sa.Float(), nullable=True),
            sa.Column("balance", sa.Float(), nullable=True),
            sa.Column("collectibles", sa.Float(), nullable=True),
            sa.Column("direct_cost_savings", sa.Float(), nullable=True),
            sa.Column("target_percentage", sa.Float(), nullable=True),
            sa.Column("received_percentage", sa.Float(), nullable=True),
            sa.Column("utilization_percentage", sa.Float(), nullable=True),
            sa.Column("total_pos", sa.Float(), nullable=True),
        )

    if "man_hours" not in existing:
        _parsed_table(
            "man_hours",
            sa.Column("date", sa.Date(), nullable=False),
            sa.Column("actual_man_hours", sa.Float(), nullable=True),
            sa.Column("projected_man_hours", sa.Float(), nullable=True),
        )

    if "cost_items" not in existing:
        _parsed_table(
            "cost_items",
            sa.Column("item_no", sa.String(64), nullable=True),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("date", sa.Date(), nullable=True),
            sa.Column("type", sa.String(64), nullable=True),
            sa.Column("cost", sa.Float(), nullable=True),
            sa.Column("wbs", sa.String(64), nullable=True),
        )

    if "cost_items_secondary" not in existing:
        _parsed_table(
            "cost_items_secondary",
            sa.Column("item_no", sa.String(64), nullable=True),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("date", sa.Date(), nullable=True),
            sa.Column("type", sa.String(64), nullable=True),
            sa.Column("cost", sa.Float(), nullable=True),
        )

    if "monthly_costs" not in existing:
        _parsed_table(
            "monthly_costs",
            sa.Column("month", sa.Date(), nullable=True),
            sa.Column("target_cost", sa.Float(), nullable=True),
            sa.Column("swa_cost", sa.Float(), nullable=True),
            sa.Column("billed_cost", sa.Float(), nullable=True),
            sa.Column("direct_cost", sa.Float(), nullable=True),
        )

    if "materials" not in existing:
        _parsed_table(
            "materials",
            sa.Column("material", sa.String(255), nullable=True),
            sa.Column("type", sa.String(64), nullable=True),
            sa.Column("unit", sa.String(32), nullable=True),
            sa.Column("sum_qty", sa.Float(), nullable=True),
        )

    if "purchase_orders" not in existing:
        _parsed_table(
            "purchase_orders",
            sa.Column("po_number", sa.String(64), nullable=True),
            sa.Column("date_requested", sa.Date(), nullable=True),
            sa.Column("expected_delivery_date", sa.Date(), nullable=True),
            sa.Column("materials_requested", sa.Text(), nullable=True),
            sa.Column("qty", sa.Float(), nullable=True),
            sa.Column("unit", sa.String(32), nullable=True),
            sa.Column("status", sa.String(64), nullable=True),
            sa.Column("priority_level", sa.String(64), nullable=True),
        )


def downgrade() -> None:
    for table in (
        "purchase_orders",
        "materials",
        "monthly_costs",
        "cost_items_secondary",
        "cost_items",
        "man_hours",
        "project_costs",
        "project_details",
        "accomplishment_reports",
        "projects",
        "audit_events",
        "role_permissions",
        "user_roles",
        "permissions",
        "roles",
        "users",
    ):
        op.drop_table(table)
