"""Initial ABA back office schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


ENUMS = {
    "role": ("SUPER_ADMIN", "ADMIN", "USER", "CUSTOM"),
    "timesheet_status": ("DRAFT", "SUBMITTED", "APPROVED", "REJECTED", "QUEUED", "EMAILED", "LOCKED"),
    "invoice_status": ("DRAFT", "READY", "SENT", "PARTIALLY_PAID", "PAID", "VOID"),
    "payment_method": ("CHECK", "ACH", "CASH", "CARD", "OTHER"),
    "community_client_status": ("ACTIVE", "INACTIVE"),
    "community_invoice_status": ("DRAFT", "APPROVED", "REJECTED", "QUEUED", "EMAILED", "FAILED"),
    "email_queue_status": ("QUEUED", "SENDING", "SENT", "FAILED"),
    "email_queue_entity_type": ("REGULAR", "BCBA", "COMMUNITY_INVOICE"),
    "email_queue_context": ("MAIN", "COMMUNITY"),
    "notification_type": (
        "TIMESHEET_SUBMITTED",
        "TIMESHEET_APPROVED",
        "TIMESHEET_REJECTED",
        "INVOICE_GENERATED",
        "INVOICE_PAYMENT",
        "EMAIL_BATCH_SENT",
        "EMAIL_BATCH_FAILED",
        "PAYROLL_RUN",
        "SYSTEM",
    ),
    "audit_action": (
        "CREATE",
        "UPDATE",
        "DELETE",
        "SUBMIT",
        "APPROVE",
        "REJECT",
        "QUEUE",
        "EMAIL_SENT",
        "EMAIL_FAILED",
        "PAYMENT",
        "ADJUSTMENT",
        "ARCHIVE",
        "GENERATE",
    ),
    "payroll_run_status": ("DRAFT", "APPROVED", "PAID_PARTIAL", "PAID"),
    "payroll_import_status": ("DRAFT", "FINALIZED"),
    "scheduled_job_type": ("INVOICE_GENERATION", "COMMUNITY_EMAIL_SENDER"),
    "form_type": ("VISIT_ATTESTATION", "PARENT_TRAINING_SIGN_IN", "PARENT_ABC_DATA"),
}


def enum_type(name: str) -> sa.types.TypeEngine:
    # Postgres types are created once in upgrade(); tables only reference them.
    values = ENUMS[name]
    return sa.Enum(*values, name=name).with_variant(
        postgresql.ENUM(*values, name=name, create_type=False),
        "postgresql",
    )


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def _deleted_at() -> sa.Column:
    return sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True)


def _index(table: str, *columns: str, unique: bool = False) -> None:
    for column in columns:
        op.create_index(f"ix_{table}_{column}", table, [column], unique=unique)


def upgrade() -> None:
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        for name, values in ENUMS.items():
            postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    op.create_table(
        "custom_roles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        _deleted_at(),
    )
    _index("custom_roles", "name", unique=True)
    _index("custom_roles", "id", "deleted_at")

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("hashed_password", sa.String(length=255), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=True),
        sa.Column("role", enum_type("role"), nullable=False, server_default="USER"),
        sa.Column("custom_role_id", sa.Integer(), sa.ForeignKey("custom_roles.id", ondelete="SET NULL"), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_seen_activity_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        _deleted_at(),
    )
    _index("users", "email", unique=True)
    _index("users", "id", "role", "custom_role_id", "is_active", "deleted_at")

    op.create_table(
        "role_permissions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("custom_roles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("permission_key", sa.String(length=120), nullable=False),
        sa.Column("can_view", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("can_create", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("can_update", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("can_delete", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("can_approve", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("can_export", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.UniqueConstraint("role_id", "permission_key", name="uq_role_permissions_role_key"),
    )
    _index("role_permissions", "id", "role_id", "permission_key")

    op.create_table(
        "role_dashboard_visibility",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("custom_roles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("section", sa.String(length=80), nullable=False),
        sa.Column("visible", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint("role_id", "section", name="uq_role_dashboard_visibility_role_section"),
    )
    _index("role_dashboard_visibility", "id", "role_id")

    op.create_table(
        "providers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=50), nullable=True),
        sa.Column("signature", sa.Text(), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        _deleted_at(),
    )
    _index("providers", "id", "name", "active", "deleted_at")

    op.create_table(
        "insurances",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("rate_per_unit", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("regular_rate_per_unit", sa.Numeric(10, 2), nullable=True),
        sa.Column("bcba_rate_per_unit", sa.Numeric(10, 2), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        _deleted_at(),
    )
    _index("insurances", "name", unique=True)
    _index("insurances", "id", "active", "deleted_at")

    op.create_table(
        "insurance_rate_history",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("insurance_id", sa.Integer(), sa.ForeignKey("insurances.id", ondelete="CASCADE"), nullable=False),
        sa.Column("rate_per_unit", sa.Numeric(10, 2), nullable=False),
        sa.Column("effective_from", sa.DateTime(timezone=True), nullable=False),
        sa.Column("effective_to", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    _index("insurance_rate_history", "id", "insurance_id")

    op.create_table(
        "bcba_insurances",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("rate_per_unit", sa.Numeric(10, 2), nullable=False),
        sa.Column("unit_minutes", sa.Integer(), nullable=False, server_default="15"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        _deleted_at(),
    )
    _index("bcba_insurances", "name", unique=True)
    _index("bcba_insurances", "id", "active", "deleted_at")

    op.create_table(
        "clients",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=50), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("medicaid_id", sa.String(length=100), nullable=True),
        sa.Column("insurance_id", sa.Integer(), sa.ForeignKey("insurances.id"), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        _deleted_at(),
    )
    _index("clients", "id", "name", "insurance_id", "active", "deleted_at")

    op.create_table(
        "bcbas",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=50), nullable=True),
        sa.Column("signature", sa.Text(), nullable=True),
        *_timestamps(),
        _deleted_at(),
    )
    _index("bcbas", "id", "name", "deleted_at")

    op.create_table(
        "invoices",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("invoice_number", sa.String(length=50), nullable=False),
        sa.Column("client_id", sa.Integer(), sa.ForeignKey("clients.id"), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("status", enum_type("invoice_status"), nullable=False, server_default="DRAFT"),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("paid_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("adjustments", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("outstanding", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("view_token", sa.String(length=64), nullable=True),
        sa.Column("token_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("voided_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        _deleted_at(),
    )
    _index("invoices", "invoice_number", "view_token", unique=True)
    _index("invoices", "id", "client_id", "start_date", "end_date", "status", "created_by_user_id", "deleted_at")

    op.create_table(
        "timesheets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("timesheet_number", sa.String(length=20), nullable=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("provider_id", sa.Integer(), sa.ForeignKey("providers.id"), nullable=False),
        sa.Column("client_id", sa.Integer(), sa.ForeignKey("clients.id"), nullable=False),
        sa.Column("bcba_id", sa.Integer(), sa.ForeignKey("bcbas.id"), nullable=False),
        sa.Column("insurance_id", sa.Integer(), sa.ForeignKey("insurances.id"), nullable=True),
        sa.Column("bcba_insurance_id", sa.Integer(), sa.ForeignKey("bcba_insurances.id"), nullable=True),
        sa.Column("is_bcba", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("timezone", sa.String(length=64), nullable=False, server_default="America/New_York"),
        sa.Column("service_type", sa.String(length=100), nullable=True),
        sa.Column("session_data", sa.JSON(), nullable=True),
        sa.Column("status", enum_type("timesheet_status"), nullable=False, server_default="DRAFT"),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("queued_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("emailed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("archived", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("invoiced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("invoice_id", sa.Integer(), sa.ForeignKey("invoices.id", ondelete="SET NULL"), nullable=True),
        *_timestamps(),
        _deleted_at(),
    )
    _index("timesheets", "timesheet_number", unique=True)
    _index(
        "timesheets",
        "id",
        "user_id",
        "provider_id",
        "client_id",
        "bcba_id",
        "insurance_id",
        "bcba_insurance_id",
        "is_bcba",
        "start_date",
        "end_date",
        "status",
        "archived",
        "invoice_id",
        "deleted_at",
    )

    op.create_table(
        "timesheet_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("timesheet_id", sa.Integer(), sa.ForeignKey("timesheets.id", ondelete="CASCADE"), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.String(length=5), nullable=False),
        sa.Column("end_time", sa.String(length=5), nullable=False),
        sa.Column("minutes", sa.Integer(), nullable=False),
        sa.Column("units", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("notes", sa.String(length=10), nullable=True),
        sa.Column("invoiced", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    _index("timesheet_entries", "id", "timesheet_id", "date", "invoiced")

    op.create_table(
        "invoice_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("invoice_id", sa.Integer(), sa.ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False),
        sa.Column("timesheet_id", sa.Integer(), sa.ForeignKey("timesheets.id"), nullable=False),
        sa.Column(
            "timesheet_entry_id",
            sa.Integer(),
            sa.ForeignKey("timesheet_entries.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("provider_id", sa.Integer(), sa.ForeignKey("providers.id"), nullable=False),
        sa.Column("insurance_id", sa.Integer(), sa.ForeignKey("insurances.id"), nullable=False),
        sa.Column("service_date", sa.Date(), nullable=True),
        sa.Column("entry_type", sa.String(length=10), nullable=True),
        sa.Column("units", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("billable_units", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("rate", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        *_timestamps(),
    )
    _index("invoice_entries", "id", "invoice_id", "timesheet_id", "timesheet_entry_id", "provider_id", "insurance_id")

    op.create_table(
        "invoice_payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("invoice_id", sa.Integer(), sa.ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("payment_date", sa.Date(), nullable=False),
        sa.Column("method", enum_type("payment_method"), nullable=False, server_default="CHECK"),
        sa.Column("reference", sa.String(length=100), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        *_timestamps(),
    )
    _index("invoice_payments", "id", "invoice_id", "created_by_user_id")

    op.create_table(
        "invoice_adjustments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("invoice_id", sa.Integer(), sa.ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("created_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        *_timestamps(),
    )
    _index("invoice_adjustments", "id", "invoice_id", "created_by_user_id")

    op.create_table(
        "email_queue_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("entity_type", enum_type("email_queue_entity_type"), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("context", enum_type("email_queue_context"), nullable=False, server_default="MAIN"),
        sa.Column("status", enum_type("email_queue_status"), nullable=False, server_default="QUEUED"),
        sa.Column("queued_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("queued_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("scheduled_send_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("batch_id", sa.String(length=64), nullable=True),
        sa.Column("recipient_email", sa.String(length=320), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        *_timestamps(),
        _deleted_at(),
        sa.UniqueConstraint("entity_type", "entity_id", name="uq_email_queue_items_entity"),
    )
    _index(
        "email_queue_items",
        "id",
        "entity_type",
        "entity_id",
        "context",
        "status",
        "queued_by_user_id",
        "scheduled_send_at",
        "batch_id",
        "deleted_at",
    )

    op.create_table(
        "community_clients",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("first_name", sa.String(length=120), nullable=False),
        sa.Column("last_name", sa.String(length=120), nullable=False),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("city", sa.String(length=120), nullable=True),
        sa.Column("state", sa.String(length=50), nullable=True),
        sa.Column("zip_code", sa.String(length=20), nullable=True),
        sa.Column("phone", sa.String(length=50), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("status", enum_type("community_client_status"), nullable=False, server_default="ACTIVE"),
        *_timestamps(),
        _deleted_at(),
    )
    _index("community_clients", "id", "last_name", "status", "deleted_at")

    op.create_table(
        "community_classes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("rate_per_unit", sa.Numeric(10, 2), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        _deleted_at(),
    )
    _index("community_classes", "id", "name", "is_active", "deleted_at")

    op.create_table(
        "community_invoices",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("client_id", sa.Integer(), sa.ForeignKey("community_clients.id"), nullable=False),
        sa.Column("class_id", sa.Integer(), sa.ForeignKey("community_classes.id"), nullable=False),
        sa.Column("units", sa.Integer(), nullable=False),
        sa.Column("unit_minutes", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("rate_per_unit", sa.Numeric(10, 2), nullable=False),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", enum_type("community_invoice_status"), nullable=False, server_default="DRAFT"),
        sa.Column("service_date", sa.Date(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("queued_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("emailed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("email_error", sa.Text(), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("view_token", sa.String(length=64), nullable=True),
        sa.Column("token_expires_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        _deleted_at(),
    )
    _index("community_invoices", "view_token", unique=True)
    _index("community_invoices", "id", "client_id", "class_id", "status", "created_by_user_id", "deleted_at")

    op.create_table(
        "payroll_employees",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=50), nullable=True),
        sa.Column("scanner_external_id", sa.String(length=100), nullable=True),
        sa.Column("default_hourly_rate", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("overtime_rate_multiplier", sa.Numeric(4, 2), nullable=False, server_default="1.50"),
        sa.Column("overtime_after_hours", sa.Numeric(6, 2), nullable=False, server_default="40.00"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        _deleted_at(),
    )
    _index("payroll_employees", "id", "full_name", "scanner_external_id", "active", "deleted_at")

    op.create_table(
        "payroll_imports",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("original_file_name", sa.String(length=255), nullable=True),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("period_end", sa.Date(), nullable=False),
        sa.Column("status", enum_type("payroll_import_status"), nullable=False, server_default="DRAFT"),
        sa.Column("row_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        *_timestamps(),
    )
    _index("payroll_imports", "id", "created_by_user_id")

    op.create_table(
        "payroll_import_rows",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("import_id", sa.Integer(), sa.ForeignKey("payroll_imports.id", ondelete="CASCADE"), nullable=False),
        sa.Column("employee_name_raw", sa.String(length=255), nullable=True),
        sa.Column("employee_external_id_raw", sa.String(length=100), nullable=True),
        sa.Column("work_date", sa.Date(), nullable=False),
        sa.Column("in_time", sa.String(length=5), nullable=True),
        sa.Column("out_time", sa.String(length=5), nullable=True),
        sa.Column("minutes_worked", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("hours_worked", sa.Numeric(8, 2), nullable=False, server_default="0"),
        sa.Column(
            "linked_employee_id",
            sa.Integer(),
            sa.ForeignKey("payroll_employees.id", ondelete="SET NULL"),
            nullable=True,
        ),
        *_timestamps(),
    )
    _index("payroll_import_rows", "id", "import_id", "work_date", "linked_employee_id")

    op.create_table(
        "payroll_runs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("period_end", sa.Date(), nullable=False),
        sa.Column("status", enum_type("payroll_run_status"), nullable=False, server_default="DRAFT"),
        sa.Column(
            "source_import_id",
            sa.Integer(),
            sa.ForeignKey("payroll_imports.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("created_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("approved_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_gross", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("total_paid", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("total_owed", sa.Numeric(12, 2), nullable=False, server_default="0"),
        *_timestamps(),
    )
    _index("payroll_runs", "id", "period_start", "period_end", "status", "source_import_id", "created_by_user_id")

    op.create_table(
        "payroll_run_lines",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("run_id", sa.Integer(), sa.ForeignKey("payroll_runs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("employee_id", sa.Integer(), sa.ForeignKey("payroll_employees.id"), nullable=False),
        sa.Column("hourly_rate_used", sa.Numeric(10, 2), nullable=False),
        sa.Column("total_minutes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_hours", sa.Numeric(8, 2), nullable=False, server_default="0"),
        sa.Column("regular_hours", sa.Numeric(8, 2), nullable=False, server_default="0"),
        sa.Column("overtime_hours", sa.Numeric(8, 2), nullable=False, server_default="0"),
        sa.Column("gross_pay", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("amount_paid", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("amount_owed", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("run_id", "employee_id", name="uq_payroll_run_lines_run_employee"),
    )
    _index("payroll_run_lines", "id", "run_id", "employee_id")

    op.create_table(
        "payroll_payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "run_line_id",
            sa.Integer(),
            sa.ForeignKey("payroll_run_lines.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("payment_date", sa.Date(), nullable=False),
        sa.Column("method", enum_type("payment_method"), nullable=False, server_default="CHECK"),
        sa.Column("reference", sa.String(length=255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        *_timestamps(),
    )
    _index("payroll_payments", "id", "run_line_id")

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", enum_type("notification_type"), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payload_json", sa.JSON(), nullable=True),
        *_timestamps(),
    )
    _index("notifications", "id", "user_id", "type", "read_at")

    op.create_table(
        "activity_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("actor_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("actor_email", sa.String(length=255), nullable=True),
        sa.Column("actor_role", enum_type("role"), nullable=True),
        sa.Column("type", sa.String(length=100), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.String(length=500), nullable=True),
        sa.Column("payload_json", sa.JSON(), nullable=True),
        *_timestamps(),
    )
    _index("activity_logs", "id", "actor_user_id", "type")

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("action", enum_type("audit_action"), nullable=False),
        sa.Column("entity_type", sa.String(length=100), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("old_values", sa.JSON(), nullable=True),
        sa.Column("new_values", sa.JSON(), nullable=True),
        sa.Column("metadata_json", sa.JSON(), nullable=True),
        *_timestamps(),
    )
    _index("audit_logs", "id", "action", "entity_type", "entity_id", "user_id")

    op.create_table(
        "scheduled_jobs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("job_type", enum_type("scheduled_job_type"), nullable=False),
        sa.Column("schedule", sa.String(length=64), nullable=False, comment="cron expression"),
        sa.Column("timezone", sa.String(length=64), nullable=False, server_default="America/New_York"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("next_run", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_run", sa.DateTime(timezone=True), nullable=True),
        sa.Column("metadata_json", sa.JSON(), nullable=True),
        *_timestamps(),
    )
    _index("scheduled_jobs", "job_type", unique=True)
    _index("scheduled_jobs", "id", "next_run")

    op.create_table(
        "form_documents",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("form_type", enum_type("form_type"), nullable=False),
        sa.Column("client_id", sa.Integer(), sa.ForeignKey("clients.id"), nullable=False),
        sa.Column("provider_id", sa.Integer(), sa.ForeignKey("providers.id"), nullable=True),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("behavior", sa.Text(), nullable=True),
        sa.Column("rows", sa.JSON(), nullable=False),
        sa.Column("created_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        *_timestamps(),
        _deleted_at(),
    )
    _index("form_documents", "id", "form_type", "client_id", "provider_id", "created_by_user_id", "deleted_at")


TABLES = (
    "form_documents",
    "scheduled_jobs",
    "audit_logs",
    "activity_logs",
    "notifications",
    "payroll_payments",
    "payroll_run_lines",
    "payroll_runs",
    "payroll_import_rows",
    "payroll_imports",
    "payroll_employees",
    "community_invoices",
    "community_classes",
    "community_clients",
    "email_queue_items",
    "invoice_adjustments",
    "invoice_payments",
    "invoice_entries",
    "timesheet_entries",
    "timesheets",
    "invoices",
    "bcbas",
    "clients",
    "bcba_insurances",
    "insurance_rate_history",
    "insurances",
    "providers",
    "role_dashboard_visibility",
    "role_permissions",
    "users",
    "custom_roles",
)


def downgrade() -> None:
    # Indexes go with their tables.
    for table in TABLES:
        op.drop_table(table)

    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        for name, values in ENUMS.items():
            postgresql.ENUM(*values, name=name).drop(bind, checkfirst=True)
