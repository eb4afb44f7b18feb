"""initial schema

Revision ID: 5d1e8a2c4b70
Revises:
Create Date: 2026-02-02 09:12:41.337120

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '5d1e8a2c4b70'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _created_updated() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    ]


def _user_fk(name: str, ondelete: str = "SET NULL", nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.Integer(), sa.ForeignKey("users.id", ondelete=ondelete), nullable=nullable)


def upgrade() -> None:
    """Create auth, fleet, agreement, compliance and settings tables."""
    # ---------- Auth ----------
    op.create_table(
        "roles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("key", sa.String(64), nullable=False, unique=True),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_table(
        "permissions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("key", sa.String(128), nullable=False, unique=True),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_table(
        "role_permissions",
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("permission_id", sa.Integer(), sa.ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
    )
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("username", sa.String(50), nullable=False, unique=True),
        sa.Column("email", sa.String(320), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("first_name", sa.String(50), nullable=False, server_default=""),
        sa.Column("last_name", sa.String(50), nullable=False, server_default=""),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_created_updated(),
    )
    op.create_index("idx_users_role_id", "users", ["role_id"])
    op.create_table(
        "password_reset_tokens",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("token", sa.String(128), nullable=False, unique=True),
        _user_fk("user_id", ondelete="CASCADE", nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("used_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("request_id", sa.String(64), nullable=True),
        _user_fk("actor_user_id"),
        sa.Column("actor_user_email", sa.String(320), nullable=True),
        sa.Column("action", sa.String(128), nullable=False),
        sa.Column("entity_type", sa.String(128), nullable=True),
        sa.Column("entity_id", sa.String(128), nullable=True),
        sa.Column("reason", sa.String(1024), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.UniqueConstraint("request_id", "id", name="uq_audit_request_id_id"),
    )
    op.create_index("idx_audit_events_entity", "audit_events", ["entity_type", "entity_id"])

    # ---------- Vehicles ----------
    op.create_table(
        "vehicles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("make", sa.String(100), nullable=False),
        sa.Column("model", sa.String(100), nullable=False),
        sa.Column("license_plate", sa.String(32), nullable=False),
        sa.Column("vin", sa.String(64), nullable=False),
        sa.Column("status", sa.String(32), nullable=False, server_default="available"),
        sa.Column("ownership", sa.String(32), nullable=False, server_default="owned"),
        sa.Column("owner_company", sa.String(255), nullable=True),
        sa.Column("fuel_type", sa.String(32), nullable=True),
        sa.Column("transmission", sa.String(32), nullable=True),
        sa.Column("engine_size_l", sa.Numeric(4, 1), nullable=True),
        sa.Column("odometer", sa.Numeric(10, 1), nullable=True),
        sa.Column("purchase_date", sa.Date(), nullable=True),
        sa.Column("last_service_date", sa.Date(), nullable=True),
        sa.Column("next_service_due", sa.Date(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        *_created_updated(),
        _user_fk("created_by_user_id"),
        _user_fk("updated_by_user_id"),
    )
    op.create_index("idx_vehicles_license_plate", "vehicles", ["license_plate"])
    op.create_index("idx_vehicles_status", "vehicles", ["status"])
    op.create_index("idx_vehicles_updated_at", "vehicles", ["updated_at"])
    op.create_table(
        "vehicle_attachments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("vehicle_id", sa.Integer(), sa.ForeignKey("vehicles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("storage_key", sa.String(512), nullable=False),
        sa.Column("file_name", sa.String(255), nullable=False),
        sa.Column("file_size_bytes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("content_type", sa.String(128), nullable=False, server_default="application/octet-stream"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        _user_fk("created_by_user_id"),
    )
    op.create_index("idx_vehicle_attachments_vehicle_id", "vehicle_attachments", ["vehicle_id"])

    # ---------- Vehicle groups ----------
    op.create_table(
        "vehicle_groups",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("type", sa.String(64), nullable=True),
        sa.Column("contract_id", sa.String(128), nullable=True),
        sa.Column("area_manager_contact", sa.String(255), nullable=True),
        sa.Column("signature_mode", sa.String(16), nullable=False, server_default="dual"),
        *_created_updated(),
        _user_fk("created_by_user_id"),
    )
    op.create_index("idx_vehicle_groups_name", "vehicle_groups", ["name"])
    op.create_table(
        "vehicle_group_assignments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("vehicle_id", sa.Integer(), sa.ForeignKey("vehicles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("group_id", sa.Integer(), sa.ForeignKey("vehicle_groups.id", ondelete="CASCADE"), nullable=False),
        sa.Column("assigned_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        _user_fk("assigned_by_user_id"),
        sa.UniqueConstraint("vehicle_id", name="uq_vehicle_group_assignments_vehicle"),
    )
    op.create_index("idx_vehicle_group_assignments_group_id", "vehicle_group_assignments", ["group_id"])
    op.create_table(
        "group_manager_assignments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("group_id", sa.Integer(), sa.ForeignKey("vehicle_groups.id", ondelete="CASCADE"), nullable=False),
        _user_fk("manager_id", ondelete="CASCADE", nullable=False),
        sa.Column("assigned_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("group_id", "manager_id", name="uq_group_manager_assignments_pair"),
    )

    # ---------- Drivers ----------
    op.create_table(
        "drivers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        *_created_updated(),
        _user_fk("created_by_user_id"),
    )
    op.create_index("idx_drivers_last_name", "drivers", ["last_name"])
    op.create_index("idx_drivers_email", "drivers", ["email"])

    # ---------- Inspections ----------
    op.create_table(
        "inspections",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("vehicle_id", sa.Integer(), sa.ForeignKey("vehicles.id", ondelete="RESTRICT"), nullable=False),
        _user_fk("inspector_id"),
        sa.Column("status", sa.String(16), nullable=False, server_default="draft"),
        sa.Column("exterior_condition", sa.Text(), nullable=False),
        sa.Column("interior_condition", sa.Text(), nullable=False),
        sa.Column("mechanical_condition", sa.Text(), nullable=False),
        sa.Column("additional_notes", sa.Text(), nullable=True),
        sa.Column("submitted_at", sa.DateTime(), nullable=True),
        *_created_updated(),
    )
    op.create_index("idx_inspections_vehicle_id", "inspections", ["vehicle_id"])
    op.create_index("idx_inspections_status", "inspections", ["status"])
    op.create_index("idx_inspections_updated_at", "inspections", ["updated_at"])
    op.create_table(
        "inspection_images",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("inspection_id", sa.Integer(), sa.ForeignKey("inspections.id", ondelete="CASCADE"), nullable=False),
        sa.Column("section", sa.String(16), nullable=False),
        sa.Column("storage_key", sa.String(512), nullable=False),
        sa.Column("file_name", sa.String(255), nullable=False),
        sa.Column("file_size_bytes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("content_type", sa.String(128), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        _user_fk("created_by_user_id"),
    )
    op.create_index("idx_inspection_images_inspection_id", "inspection_images", ["inspection_id"])

    # ---------- Agreements ----------
    op.create_table(
        "agreement_templates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("content_richtext", sa.Text(), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_created_updated(),
        _user_fk("created_by_user_id"),
    )
    op.create_table(
        "agreements",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("vehicle_id", sa.Integer(), sa.ForeignKey("vehicles.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("inspection_id", sa.Integer(), sa.ForeignKey("inspections.id", ondelete="RESTRICT"), nullable=False),
        sa.Column(
            "template_id", sa.Integer(), sa.ForeignKey("agreement_templates.id", ondelete="RESTRICT"), nullable=False
        ),
        sa.Column("status", sa.String(32), nullable=False, server_default="draft"),
        sa.Column("final_content_richtext", sa.Text(), nullable=True),
        sa.Column("signing_token", sa.String(64), nullable=True),
        sa.Column("signed_by_driver_id", sa.Integer(), sa.ForeignKey("drivers.id", ondelete="SET NULL"), nullable=True),
        sa.Column("driver_signature_data", sa.Text(), nullable=True),
        sa.Column("signed_at", sa.DateTime(), nullable=True),
        sa.Column("terminated_at", sa.DateTime(), nullable=True),
        sa.Column("termination_reason", sa.String(1000), nullable=True),
        *_created_updated(),
        _user_fk("created_by_user_id"),
        sa.UniqueConstraint("signing_token", name="uq_agreements_signing_token"),
    )
    op.create_index("idx_agreements_status", "agreements", ["status"])
    op.create_index("idx_agreements_vehicle_id", "agreements", ["vehicle_id"])
    op.create_index("idx_agreements_created_at", "agreements", ["created_at"])
    op.create_table(
        "driver_agreements",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("driver_id", sa.Integer(), sa.ForeignKey("drivers.id", ondelete="CASCADE"), nullable=False),
        sa.Column("agreement_id", sa.Integer(), sa.ForeignKey("agreements.id", ondelete="CASCADE"), nullable=False),
        sa.Column("role", sa.String(16), nullable=False, server_default="signer"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("driver_id", "agreement_id", name="uq_driver_agreements_pair"),
    )

    # ---------- Compliance ----------
    op.create_table(
        "contractor_vehicle_checks",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("driver_id", sa.Integer(), sa.ForeignKey("drivers.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("vehicle_id", sa.Integer(), sa.ForeignKey("vehicles.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("cycle_week_start", sa.Date(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("submitted_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        _user_fk("completed_by_user_id"),
        *_created_updated(),
        sa.UniqueConstraint(
            "driver_id", "vehicle_id", "cycle_week_start", name="uq_contractor_checks_driver_vehicle_week"
        ),
    )
    op.create_index("idx_contractor_checks_week", "contractor_vehicle_checks", ["cycle_week_start"])
    op.create_index("idx_contractor_checks_status", "contractor_vehicle_checks", ["status"])

    # ---------- Settings ----------
    op.create_table(
        "email_configs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("smtp_host", sa.String(255), nullable=False),
        sa.Column("smtp_port", sa.Integer(), nullable=False, server_default="587"),
        sa.Column("smtp_username", sa.String(255), nullable=False),
        sa.Column("smtp_password_enc", sa.Text(), nullable=False),
        sa.Column("from_email", sa.String(320), nullable=False),
        sa.Column("from_name", sa.String(100), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_created_updated(),
    )
    op.create_table(
        "organizations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("logo_storage_key", sa.String(512), nullable=True),
        *_created_updated(),
        sa.Column(
            "created_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True
        ),
        _user_fk("updated_by_user_id"),
    )


def downgrade() -> None:
    """Drop all tables in reverse dependency order."""
    for table in (
        "organizations",
        "email_configs",
        "contractor_vehicle_checks",
        "driver_agreements",
        "agreements",
        "agreement_templates",
        "inspection_images",
        "inspections",
        "drivers",
        "group_manager_assignments",
        "vehicle_group_assignments",
        "vehicle_groups",
        "vehicle_attachments",
        "vehicles",
        "audit_events",
        "password_reset_tokens",
        "users",
        "role_permissions",
        "permissions",
        "roles",
    ):
        op.drop_table(table)
