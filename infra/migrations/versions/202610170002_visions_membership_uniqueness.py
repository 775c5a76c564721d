"""visions, membership and group roots with active-scope uniqueness

Revision ID: 202610170002
Revises: 202610170001
Create Date: 2026-10-17
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "202610170002"
down_revision = "202610170001"
branch_labels = None
depends_on = None

CLIENT_WIDE_ACTIVE = "vision_type = 'CLIENT_WIDE' AND is_active"
ROOT_SCOPED_ACTIVE = "vision_type = 'ROOT_SCOPED' AND is_active"


def upgrade() -> None:
    op.create_table(
        "visions",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("client_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("vision_type", sa.String(), nullable=False),
        sa.Column("root", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["client_id"], ["clients.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("client_id", "id", name="uq_visions_client_id_id"),
        sa.CheckConstraint(
            "vision_type IN ('CLIENT_WIDE', 'ROOT_SCOPED', 'GROUP_SCOPED', 'CUSTOM')",
            name="ck_visions_vision_type",
        ),
    )
    op.create_index("ix_visions_client_id", "visions", ["client_id"])
    op.create_index("ix_visions_name", "visions", ["name"])
    op.create_index("ix_visions_is_active", "visions", ["is_active"])
    op.create_index("ix_visions_vision_type", "visions", ["vision_type"])
    op.create_index("ix_visions_root", "visions", ["root"])
    op.create_index("ix_visions_created_at", "visions", ["created_at"])
    op.create_index("ix_visions_updated_at", "visions", ["updated_at"])
    op.create_index("ix_visions_client_type", "visions", ["client_id", "vision_type"])
    op.create_index(
        "uq_visions_active_client_wide",
        "visions",
        ["client_id"],
        unique=True,
        postgresql_where=sa.text(CLIENT_WIDE_ACTIVE),
        sqlite_where=sa.text(CLIENT_WIDE_ACTIVE),
    )
    op.create_index(
        "uq_visions_active_root",
        "visions",
        ["client_id", "root"],
        unique=True,
        postgresql_where=sa.text(ROOT_SCOPED_ACTIVE),
        sqlite_where=sa.text(ROOT_SCOPED_ACTIVE),
    )

    op.create_table(
        "vision_group_roots",
        sa.Column("vision_id", sa.String(), nullable=False),
        sa.Column("root", sa.String(), nullable=False),
        sa.Column("client_id", sa.String(), nullable=False),
        sa.Column("vision_active", sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(
            ["client_id", "vision_id"],
            ["visions.client_id", "visions.id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("vision_id", "root"),
    )
    op.create_index("ix_vision_group_roots_client_id", "vision_group_roots", ["client_id"])
    op.create_index(
        "uq_vision_group_roots_active_root",
        "vision_group_roots",
        ["client_id", "root"],
        unique=True,
        postgresql_where=sa.text("vision_active"),
        sqlite_where=sa.text("vision_active"),
    )

    op.create_table(
        "vision_memberships",
        sa.Column("vision_id", sa.String(), nullable=False),
        sa.Column("company_id", sa.String(), nullable=False),
        sa.Column("client_id", sa.String(), nullable=False),
        sa.Column("integration_code", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["client_id", "vision_id"],
            ["visions.client_id", "visions.id"],
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["client_id", "company_id"],
            ["companies.client_id", "companies.id"],
            ondelete="RESTRICT",
        ),
        sa.PrimaryKeyConstraint("vision_id", "company_id"),
    )
    op.create_index("ix_vision_memberships_client_id", "vision_memberships", ["client_id"])
    op.create_index("ix_vision_memberships_company", "vision_memberships", ["client_id", "company_id"])


def downgrade() -> None:
    op.drop_index("ix_vision_memberships_company", table_name="vision_memberships")
    op.drop_index("ix_vision_memberships_client_id", table_name="vision_memberships")
    op.drop_table("vision_memberships")

    op.drop_index("uq_vision_group_roots_active_root", table_name="vision_group_roots")
    op.drop_index("ix_vision_group_roots_client_id", table_name="vision_group_roots")
    op.drop_table("vision_group_roots")

    op.drop_index("uq_visions_active_root", table_name="visions")
    op.drop_index("uq_visions_active_client_wide", table_name="visions")
    op.drop_index("ix_visions_client_type", table_name="visions")
    op.drop_index("ix_visions_updated_at", table_name="visions")
    op.drop_index("ix_visions_created_at", table_name="visions")
    op.drop_index("ix_visions_root", table_name="visions")
    op.drop_index("ix_visions_vision_type", table_name="visions")
    op.drop_index("ix_visions_is_active", table_name="visions")
    op.drop_index("ix_visions_name", table_name="visions")
    op.drop_index("ix_visions_client_id", table_name="visions")
    op.drop_table("visions")
