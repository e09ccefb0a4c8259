"""client_portal_core_tables

Create the client engagement tables: clients and their dependents
(deliveries, versions, comments, revision requests, progress, history,
messages, documents) plus the orphaned identity queue.

Revision ID: 0a1b2c3d4e51
Revises:
Create Date: 2026-10-12 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "0a1b2c3d4e51"
down_revision = None
branch_labels = None
depends_on = None

_OPEN_FILTER = sa.text("status != 'completed'")


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "clients" not in existing_tables:
        op.create_table(
            "clients",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("phone", sa.String(length=50), nullable=True),
            sa.Column("service_type", sa.String(length=100), nullable=True),
            sa.Column("is_rush", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("rush_deadline", sa.DateTime(timezone=True), nullable=True),
            sa.Column("estimated_delivery_date", sa.Date(), nullable=True),
            sa.Column("intake_submitted", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("resume_uploaded", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("session_booked", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("status", sa.String(length=30), nullable=False, server_default="active"),
            sa.Column("payment_status", sa.String(length=30), nullable=False, server_default="pending"),
            sa.Column("identity_id", sa.String(length=64), nullable=True),
            sa.Column("created_via", sa.String(length=30), nullable=False, server_default="staff"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("identity_id"),
        )
        op.create_index("ix_clients_email", "clients", ["email"])

    if "deliveries" not in existing_tables:
        op.create_table(
            "deliveries",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("client_id", sa.String(length=36), nullable=False),
            sa.Column("document_title", sa.String(length=300), nullable=False),
            sa.Column("document_type", sa.String(length=50), nullable=False, server_default="document"),
            sa.Column("file_ref", sa.String(length=500), nullable=False),
            sa.Column("file_size", sa.Integer(), nullable=True),
            sa.Column("mime_type", sa.String(length=100), nullable=True),
            sa.Column("status", sa.String(length=30), nullable=False, server_default="delivered"),
            sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("version_id", sa.Integer(), nullable=False),
            sa.ForeignKeyConstraint(["client_id"], ["clients.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_deliveries_client_id", "deliveries", ["client_id"])
        op.create_index("ix_deliveries_document_title", "deliveries", ["document_title"])
        op.create_index("ix_deliveries_client_status", "deliveries", ["client_id", "status"])

    if "delivery_versions" not in existing_tables:
        op.create_table(
            "delivery_versions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("delivery_id", sa.String(length=36), nullable=False),
            sa.Column("version_number", sa.Integer(), nullable=False),
            sa.Column("document_title", sa.String(length=300), nullable=False),
            sa.Column("file_ref", sa.String(length=500), nullable=False),
            sa.Column("file_size", sa.Integer(), nullable=True),
            sa.Column("revision_request_id", sa.String(length=36), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["delivery_id"], ["deliveries.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("delivery_id", "version_number", name="uq_delivery_version_number"),
        )
        op.create_index("ix_delivery_versions_delivery_id", "delivery_versions", ["delivery_id"])

    if "delivery_comments" not in existing_tables:
        op.create_table(
            "delivery_comments",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("delivery_id", sa.String(length=36), nullable=False),
            sa.Column("author", sa.String(length=150), nullable=False),
            sa.Column("is_staff", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("content", sa.Text(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["delivery_id"], ["deliveries.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_delivery_comments_delivery_id", "delivery_comments", ["delivery_id"])

    if "revision_requests" not in existing_tables:
        op.create_table(
            "revision_requests",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("delivery_id", sa.String(length=36), nullable=False),
            sa.Column("client_id", sa.String(length=36), nullable=False),
            sa.Column("reasons", sa.JSON(), nullable=False),
            sa.Column("custom_reason", sa.Text(), nullable=True),
            sa.Column("description", sa.Text(), nullable=False),
            sa.Column("attachment_refs", sa.JSON(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("due_date", sa.Date(), nullable=True),
            sa.Column("estimated_completion", sa.Date(), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("version_id", sa.Integer(), nullable=False),
            sa.ForeignKeyConstraint(["client_id"], ["clients.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["delivery_id"], ["deliveries.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_revision_requests_delivery_id", "revision_requests", ["delivery_id"])
        op.create_index("ix_revision_requests_client_id", "revision_requests", ["client_id"])
        op.create_index("ix_revision_client_status", "revision_requests", ["client_id", "status"])
        op.create_index(
            "uq_revision_open_per_delivery",
            "revision_requests",
            ["delivery_id"],
            unique=True,
            postgresql_where=_OPEN_FILTER,
            sqlite_where=_OPEN_FILTER,
        )

    if "progress_records" not in existing_tables:
        op.create_table(
            "progress_records",
            sa.Column("client_id", sa.String(length=36), nullable=False),
            sa.Column("step_1", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("step_2", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("step_3", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("step_4", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("step_5", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("current_step", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("version_id", sa.Integer(), nullable=False),
            sa.ForeignKeyConstraint(["client_id"], ["clients.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("client_id"),
        )

    for table, extra_cols in (
        ("client_history", [
            sa.Column("action_type", sa.String(length=60), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("entity_id", sa.String(length=36), nullable=True),
            sa.Column("old_value", sa.JSON(), nullable=True),
            sa.Column("new_value", sa.JSON(), nullable=True),
            sa.Column("actor", sa.String(length=150), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        ]),
        ("client_messages", [
            sa.Column("sender_type", sa.String(length=20), nullable=False, server_default="staff"),
            sa.Column("body", sa.Text(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        ]),
        ("client_documents", [
            sa.Column("kind", sa.String(length=30), nullable=False, server_default="other"),
            sa.Column("file_ref", sa.String(length=500), nullable=False),
            sa.Column("file_size", sa.Integer(), nullable=True),
            sa.Column("uploaded_at", sa.DateTime(timezone=True), nullable=False),
        ]),
    ):
        if table in existing_tables:
            continue
        op.create_table(
            table,
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("client_id", sa.String(length=36), nullable=False),
            *extra_cols,
            sa.ForeignKeyConstraint(["client_id"], ["clients.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        if table == "client_history":
            op.create_index("idx_client_history_client_ts", table, ["client_id", "created_at"])
        else:
            op.create_index(f"ix_{table}_client_id", table, ["client_id"])

    if "orphaned_identities" not in existing_tables:
        op.create_table(
            "orphaned_identities",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("identity_id", sa.String(length=64), nullable=False),
            sa.Column("client_id", sa.String(length=36), nullable=True),
            sa.Column("attempts", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("last_error", sa.Text(), nullable=True),
            sa.Column("abandoned", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("identity_id"),
        )


def downgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    for table in (
        "orphaned_identities",
        "client_documents",
        "client_messages",
        "client_history",
        "progress_records",
        "revision_requests",
        "delivery_comments",
        "delivery_versions",
        "deliveries",
        "clients",
    ):
        if table in existing_tables:
            op.drop_table(table)
