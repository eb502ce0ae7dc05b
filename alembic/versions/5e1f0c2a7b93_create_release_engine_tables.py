"""create release engine tables

Revision ID: 5e1f0c2a7b93
Revises:
Create Date: 2026-10-19 09:30:00.000000

"""

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

from alembic import op

revision = "5e1f0c2a7b93"
down_revision = None
branch_labels = None
depends_on = None

app_platform_enum = sa.Enum("ios", "android", "react-native", name="appplatform")
deployment_status_enum = sa.Enum("active", "disabled", name="deploymentstatus")
release_method_enum = sa.Enum("upload", "promote", "rollback", name="releasemethod")
report_status_enum = sa.Enum("DOWNLOADED", "DEPLOYED", "FAILED", "ROLLED_BACK", name="reportstatus")

_ENUMS = (app_platform_enum, deployment_status_enum, release_method_enum, report_status_enum)


def upgrade() -> None:
    op.create_table(
        "apps",
        sa.Column("app_id", UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("platform", app_platform_enum, nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("owner_id", sa.String(length=36), nullable=False),
        sa.Column("owner_email", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("app_id"),
        sa.UniqueConstraint("owner_id", "name", name="uq_apps_owner_name"),
    )
    op.create_index("ix_apps_owner_id", "apps", ["owner_id"])

    op.create_table(
        "deployments",
        sa.Column("deployment_id", UUID(as_uuid=True), nullable=False),
        sa.Column("app_id", UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("key", sa.String(length=64), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("mandatory", sa.Boolean(), nullable=True),
        sa.Column("status", deployment_status_enum, nullable=True),
        sa.Column("last_label", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("key_rotated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["app_id"], ["apps.app_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("deployment_id"),
        sa.UniqueConstraint("app_id", "name", name="uq_deployments_app_name"),
    )
    op.create_index("ix_deployments_app_id", "deployments", ["app_id"])
    op.create_index("ix_deployments_key", "deployments", ["key"], unique=True)

    op.create_table(
        "packages",
        sa.Column("package_id", UUID(as_uuid=True), nullable=False),
        sa.Column("deployment_id", UUID(as_uuid=True), nullable=False),
        sa.Column("label_number", sa.Integer(), nullable=False),
        sa.Column("app_version", sa.String(length=120), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("package_hash", sa.String(length=64), nullable=False),
        sa.Column("blob_url", sa.String(length=500), nullable=False),
        sa.Column("size", sa.BigInteger(), nullable=False),
        sa.Column("is_disabled", sa.Boolean(), nullable=True),
        sa.Column("is_mandatory", sa.Boolean(), nullable=True),
        sa.Column("rollout", sa.Integer(), nullable=False, server_default="100"),
        sa.Column("release_method", release_method_enum, nullable=True),
        sa.Column("released_from", sa.String(length=200), nullable=True),
        sa.Column("uploaded_by", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["deployment_id"], ["deployments.deployment_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("package_id"),
        sa.UniqueConstraint("deployment_id", "label_number", name="uq_packages_deployment_label"),
    )
    op.create_index("ix_packages_deployment_id", "packages", ["deployment_id"])
    op.create_index("ix_packages_package_hash", "packages", ["package_hash"])

    op.create_table(
        "package_tombstones",
        sa.Column("package_id", UUID(as_uuid=True), nullable=False),
        sa.Column("deployment_id", UUID(as_uuid=True), nullable=False),
        sa.Column("label_number", sa.Integer(), nullable=False),
        sa.Column("app_version", sa.String(length=120), nullable=False),
        sa.Column("package_hash", sa.String(length=64), nullable=False),
        sa.Column("size", sa.BigInteger(), nullable=False),
        sa.Column("deleted_by", sa.String(length=255), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("package_id"),
    )
    op.create_index("ix_package_tombstones_deployment_id", "package_tombstones", ["deployment_id"])
    op.create_index("ix_package_tombstones_package_hash", "package_tombstones", ["package_hash"])

    op.create_table(
        "status_reports",
        sa.Column("report_id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("report_key", sa.String(length=64), nullable=False),
        sa.Column("deployment_id", UUID(as_uuid=True), nullable=False),
        sa.Column("deployment_key", sa.String(length=64), nullable=False),
        sa.Column("client_unique_id", sa.String(length=200), nullable=False),
        sa.Column("package_hash", sa.String(length=64), nullable=True),
        sa.Column("label_number", sa.Integer(), nullable=True),
        sa.Column("app_version", sa.String(length=120), nullable=True),
        sa.Column("previous_label_or_app_version", sa.String(length=120), nullable=True),
        sa.Column("status", report_status_enum, nullable=False),
        sa.Column("reported_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("report_id"),
        sa.UniqueConstraint("report_key", name="uq_status_reports_report_key"),
    )
    op.create_index("ix_status_reports_package_hash", "status_reports", ["package_hash"])
    op.create_index(
        "ix_status_reports_deployment_label_status",
        "status_reports",
        ["deployment_id", "label_number", "status"],
    )
    op.create_index("ix_status_reports_deployment_device", "status_reports", ["deployment_id", "client_unique_id"])

    op.create_table(
        "device_active_packages",
        sa.Column("pointer_id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("deployment_id", UUID(as_uuid=True), nullable=False),
        sa.Column("client_unique_id", sa.String(length=200), nullable=False),
        sa.Column("package_hash", sa.String(length=64), nullable=True),
        sa.Column("label_number", sa.Integer(), nullable=True),
        sa.Column("app_version", sa.String(length=120), nullable=True),
        sa.Column("previous_package_hash", sa.String(length=64), nullable=True),
        sa.Column("previous_label_number", sa.Integer(), nullable=True),
        sa.Column("previous_app_version", sa.String(length=120), nullable=True),
        sa.Column("last_report_id", sa.Integer(), nullable=False),
        sa.Column("last_reported_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("pointer_id"),
        sa.UniqueConstraint("deployment_id", "client_unique_id", name="uq_device_active_packages_device"),
    )
    op.create_index(
        "ix_device_active_packages_deployment_label",
        "device_active_packages",
        ["deployment_id", "label_number"],
    )

    op.create_table(
        "audit_log_entries",
        sa.Column("audit_id", UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=True),
        sa.Column("user_email", sa.String(length=255), nullable=True),
        sa.Column("action", sa.String(length=40), nullable=False),
        sa.Column("entity", sa.String(length=40), nullable=False),
        sa.Column("entity_id", sa.String(length=36), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("ip_address", sa.String(length=45), nullable=True),
        sa.Column("user_agent", sa.String(length=500), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("audit_id"),
    )
    op.create_index("ix_audit_log_entries_entity", "audit_log_entries", ["entity", "entity_id"])
    op.create_index("ix_audit_log_entries_user_id", "audit_log_entries", ["user_id"])
    op.create_index("ix_audit_log_entries_action", "audit_log_entries", ["action"])
    op.create_index("ix_audit_log_entries_created_at", "audit_log_entries", ["created_at"])


def downgrade() -> None:
    bind = op.get_bind()

    op.drop_table("audit_log_entries")
    op.drop_table("device_active_packages")
    op.drop_table("status_reports")
    op.drop_table("package_tombstones")
    op.drop_table("packages")
    op.drop_table("deployments")
    op.drop_table("apps")

    if bind.dialect.name == "postgresql":
        for enum in reversed(_ENUMS):
            enum.drop(bind, checkfirst=True)
