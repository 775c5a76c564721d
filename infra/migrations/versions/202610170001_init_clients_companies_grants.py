"""clients, operators, companies and access grants

Revision ID: 202610170001
Revises:
Create Date: 2026-10-17
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "202610170001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "clients",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_clients_name", "clients", ["name"], unique=True)
    op.create_index("ix_clients_created_at", "clients", ["created_at"])

    op.create_table(
        "operators",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("username", sa.String(), nullable=False),
        sa.Column("password_hash", sa.String(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("permissions", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_operators_username", "operators", ["username"], unique=True)
    op.create_index("ix_operators_created_at", "operators", ["created_at"])

    op.create_table(
        "companies",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("client_id", sa.String(), nullable=False),
        sa.Column("root", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("short_name", sa.String(), nullable=True),
        sa.Column("complement_name", sa.String(), nullable=True),
        sa.Column("tax_id", sa.String(), nullable=True),
        sa.Column("integration_code", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["client_id"], ["clients.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("client_id", "id", name="uq_companies_client_id_id"),
    )
    op.create_index("ix_companies_client_id", "companies", ["client_id"])
    op.create_index("ix_companies_root", "companies", ["root"])
    op.create_index("ix_companies_client_root", "companies", ["client_id", "root"])
    op.create_index("ix_companies_created_at", "companies", ["created_at"])

    op.create_table(
        "access_grants",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("operator_id", sa.String(), nullable=False),
        sa.Column("client_id", sa.String(), nullable=False),
        sa.Column("company_id", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["operator_id"], ["operators.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["client_id"], ["clients.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["client_id", "company_id"],
            ["companies.client_id", "companies.id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_access_grants_operator_id", "access_grants", ["operator_id"])
    op.create_index("ix_access_grants_client_id", "access_grants", ["client_id"])
    op.create_index("ix_access_grants_company_id", "access_grants", ["company_id"])
    op.create_index("ix_access_grants_status", "access_grants", ["status"])
    op.create_index("ix_access_grants_created_at", "access_grants", ["created_at"])
    op.create_index("ix_access_grants_operator_client", "access_grants", ["operator_id", "client_id"])

    op.create_table(
        "events",
        sa.Column("event_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("client_id", sa.String(), nullable=False),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("event_id"),
    )
    op.create_index("ix_events_event_type", "events", ["event_type"])
    op.create_index("ix_events_client_id", "events", ["client_id"])
    op.create_index("ix_events_ts", "events", ["ts"])
    op.create_index("ix_events_actor_id", "events", ["actor_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("client_id", sa.String(), nullable=True),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("resource", sa.String(), nullable=False),
        sa.Column("method", sa.String(), nullable=False),
        sa.Column("status_code", sa.Integer(), nullable=False),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("detail", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_client_id", "audit_logs", ["client_id"])
    op.create_index("ix_audit_logs_actor_id", "audit_logs", ["actor_id"])
    op.create_index("ix_audit_logs_ts", "audit_logs", ["ts"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_ts", table_name="audit_logs")
    op.drop_index("ix_audit_logs_actor_id", table_name="audit_logs")
    op.drop_index("ix_audit_logs_client_id", table_name="audit_logs")
    op.drop_table("audit_logs")

    op.drop_index("ix_events_actor_id", table_name="events")
    op.drop_index("ix_events_ts", table_name="events")
    op.drop_index("ix_events_client_id", table_name="events")
    op.drop_index("ix_events_event_type", table_name="events")
    op.drop_table("events")

    op.drop_index("ix_access_grants_operator_client", table_name="access_grants")
    op.drop_index("ix_access_grants_created_at", table_name="access_grants")
    op.drop_index("ix_access_grants_status", table_name="access_grants")
    op.drop_index("ix_access_grants_company_id", table_name="access_grants")
    op.drop_index("ix_access_grants_client_id", table_name="access_grants")
    op.drop_index("ix_access_grants_operator_id", table_name="access_grants")
    op.drop_table("access_grants")

    op.drop_index("ix_companies_created_at", table_name="companies")
    op.drop_index("ix_companies_client_root", table_name="companies")
    op.drop_index("ix_companies_root", table_name="companies")
    op.drop_index("ix_companies_client_id", table_name="companies")
    op.drop_table("companies")

    op.drop_index("ix_operators_created_at", table_name="operators")
    op.drop_index("ix_operators_username", table_name="operators")
    op.drop_table("operators")

    op.drop_index("ix_clients_created_at", table_name="clients")
    op.drop_index("ix_clients_name", table_name="clients")
    op.drop_table("clients")
