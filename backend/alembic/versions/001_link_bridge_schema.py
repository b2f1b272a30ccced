"""Create users and link_tickets.

Revision ID: 001
Revises:
Create Date: 2026-10-16
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("external_id", sa.String(length=32), nullable=True),
        sa.Column("external_display_name", sa.String(length=255), nullable=True),
        sa.Column("external_avatar_url", sa.String(length=512), nullable=True),
        sa.Column("external_linked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
    )
    op.create_index("ix_users_external_id", "users", ["external_id"], unique=True)

    op.create_table(
        "link_tickets",
        sa.Column("id", sa.String(length=128), primary_key=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("used", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("issuer_user_id", sa.String(length=64), nullable=True),
    )
    op.create_index("ix_link_tickets_issuer_user_id", "link_tickets", ["issuer_user_id"])
    op.create_index(
        "idx_link_tickets_created_unused",
        "link_tickets",
        ["created_at"],
        postgresql_where=sa.text("used = false"),
    )


def downgrade() -> None:
    op.drop_index("idx_link_tickets_created_unused", table_name="link_tickets")
    op.drop_index("ix_link_tickets_issuer_user_id", table_name="link_tickets")
    op.drop_table("link_tickets")
    op.drop_index("ix_users_external_id", table_name="users")
    op.drop_table("users")
