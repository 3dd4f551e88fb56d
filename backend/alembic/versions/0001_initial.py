"""initial schema

Revision ID: 0001_initial
Revises: 
Create Date: 2026-10-19 09:30:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

ROLE_VALUES = ("admin", "operator", "viewer")
PERMISSION_VALUES = (
    "patients:create",
    "patients:read",
    "patients:update",
    "expenses:create",
    "expenses:read",
    "expenses:update",
    "expenses:delete",
    "trials:create",
    "trials:read",
    "trials:update",
    "trials:delete",
    "trial_services:read",
    "trial_services:manage",
    "service_allocations:read",
    "service_allocations:manage",
    "reports:read",
    "reports:export",
    "users:create",
    "users:read",
    "users:update",
    "permissions:read",
    "permissions:grant",
    "permissions:revoke",
    "audit:read",
    "impersonation:use",
)
EXPENSE_CATEGORIES = ("transport", "trip1", "trip2", "trip3", "trip4", "food", "accommodation")


def _audit_columns() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("created_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("updated_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
    ]


def upgrade() -> None:
    role_enum = sa.Enum(*ROLE_VALUES, name="role_enum")
    currency_enum = sa.Enum("USD", "CLP", name="currency_enum")

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("full_name", sa.String(length=200), nullable=False, server_default=""),
        sa.Column("role", role_enum, nullable=False, server_default="operator"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("must_change_password", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("hashed_password", sa.String(length=255), nullable=False),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("email"),
    )
    op.create_index("ix_users_email", "users", ["email"])

    op.create_table(
        "user_permissions",
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), primary_key=True),
        sa.Column(
            "permission",
            sa.Enum(*PERMISSION_VALUES, name="permission_enum"),
            primary_key=True,
        ),
        sa.Column("granted_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )

    op.create_table(
        "user_preferences",
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), primary_key=True),
        sa.Column("sidebar_collapsed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column(
            "impersonating_role",
            postgresql.ENUM(*ROLE_VALUES, name="role_enum", create_type=False),
            nullable=True,
        ),
        sa.Column("impersonation_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )

    op.create_table(
        "patients",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("first_name", sa.String(length=120), nullable=False),
        sa.Column("second_name", sa.String(length=120), nullable=True),
        sa.Column("first_surname", sa.String(length=120), nullable=False),
        sa.Column("second_surname", sa.String(length=120), nullable=True),
        sa.Column(
            "status",
            sa.Enum("active", "inactive", name="patient_status"),
            nullable=False,
            server_default="active",
        ),
        *_audit_columns(),
        sa.UniqueConstraint("code"),
    )
    op.create_index("ix_patients_code", "patients", ["code"])

    op.create_table(
        "trials",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("sponsor", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("medical_specialty", sa.String(length=120), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_audit_columns(),
    )
    op.create_index("ix_trials_name", "trials", ["name"])

    op.create_table(
        "visit_types",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("trial_id", sa.Integer(), sa.ForeignKey("trials.id"), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("order_number", sa.Integer(), nullable=False),
        *_audit_columns(),
        sa.UniqueConstraint("trial_id", "order_number", name="uq_visit_types_trial_order"),
        sa.UniqueConstraint("trial_id", "name", name="uq_visit_types_trial_name"),
    )
    op.create_index("ix_visit_types_trial_id", "visit_types", ["trial_id"])

    op.create_table(
        "trial_services",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("trial_id", sa.Integer(), sa.ForeignKey("trials.id"), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("currency", currency_enum, nullable=False, server_default="USD"),
        *_audit_columns(),
    )
    op.create_index("ix_trial_services_trial_id", "trial_services", ["trial_id"])

    op.create_table(
        "service_allocations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("trial_service_id", sa.Integer(), sa.ForeignKey("trial_services.id"), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column(
            "currency",
            postgresql.ENUM("USD", "CLP", name="currency_enum", create_type=False),
            nullable=False,
            server_default="USD",
        ),
        sa.Column(
            "allocation_type",
            sa.Enum("principal_investigator", "sub_investigator", name="allocation_type"),
            nullable=False,
        ),
        *_audit_columns(),
    )
    op.create_index(
        "ix_service_allocations_trial_service_id", "service_allocations", ["trial_service_id"]
    )

    op.create_table(
        "patient_expenses",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("patient_id", sa.Integer(), sa.ForeignKey("patients.id"), nullable=False),
        sa.Column("trial_id", sa.Integer(), sa.ForeignKey("trials.id"), nullable=False),
        sa.Column("visit_type", sa.String(length=120), nullable=False),
        sa.Column("visit_date", sa.Date(), nullable=False),
        *_audit_columns(),
        sa.UniqueConstraint(
            "patient_id", "trial_id", "visit_type", name="uq_patient_expenses_patient_trial_visit"
        ),
    )
    op.create_index("ix_patient_expenses_patient_id", "patient_expenses", ["patient_id"])
    op.create_index("ix_patient_expenses_trial_id", "patient_expenses", ["trial_id"])

    op.create_table(
        "expense_items",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "patient_expense_id", sa.Integer(), sa.ForeignKey("patient_expenses.id"), nullable=False
        ),
        sa.Column("category", sa.Enum(*EXPENSE_CATEGORIES, name="expense_category"), nullable=False),
        sa.Column("receipt_key", sa.String(length=512), nullable=True),
        sa.Column("cost", sa.Numeric(12, 2), nullable=False, server_default="0"),
    )
    op.create_index("ix_expense_items_patient_expense_id", "expense_items", ["patient_expense_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("actor_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("actor_email", sa.String(length=320), nullable=True),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("entity_type", sa.String(length=50), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=False),
        sa.Column("request_id", sa.String(length=120), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("before_json", sa.JSON(), nullable=True),
        sa.Column("after_json", sa.JSON(), nullable=True),
    )
    op.create_index("ix_audit_logs_entity", "audit_logs", ["entity_type", "entity_id"])
    op.create_index("ix_audit_logs_action_created", "audit_logs", ["action", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_action_created", table_name="audit_logs")
    op.drop_index("ix_audit_logs_entity", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_expense_items_patient_expense_id", table_name="expense_items")
    op.drop_table("expense_items")
    op.drop_index("ix_patient_expenses_trial_id", table_name="patient_expenses")
    op.drop_index("ix_patient_expenses_patient_id", table_name="patient_expenses")
    op.drop_table("patient_expenses")
    op.drop_index("ix_service_allocations_trial_service_id", table_name="service_allocations")
    op.drop_table("service_allocations")
    op.drop_index("ix_trial_services_trial_id", table_name="trial_services")
    op.drop_table("trial_services")
    op.drop_index("ix_visit_types_trial_id", table_name="visit_types")
    op.drop_table("visit_types")
    op.drop_index("ix_trials_name", table_name="trials")
    op.drop_table("trials")
    op.drop_index("ix_patients_code", table_name="patients")
    op.drop_table("patients")
    op.drop_table("user_preferences")
    op.drop_table("user_permissions")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
    for enum_name in (
        "expense_category",
        "allocation_type",
        "currency_enum",
        "patient_status",
        "permission_enum",
        "role_enum",
    ):
        sa.Enum(name=enum_name).drop(op.get_bind(), checkfirst=True)
