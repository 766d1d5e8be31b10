"""phone auth core: users, phone_verifications, auth_tokens

Revision ID: 0001_phone_auth_core
Revises:
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_phone_auth_core"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid, primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("country_code", sa.String(5), nullable=False),
        sa.Column("phone_number", sa.String(15), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("display_name", sa.String(201), nullable=False),
        sa.Column("username", sa.String(50), nullable=False),
        sa.Column("email", sa.Text, nullable=False),
        sa.Column("avatar", sa.Text, nullable=True),
        sa.Column("bio", sa.String(500), nullable=True),
        sa.Column("phone_verified", sa.Boolean, nullable=False, server_default=sa.text("false")),
        sa.Column("phone_verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.Text, nullable=False, server_default="active"),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("status in ('active','blocked')", name="ck_user_status"),
        sa.UniqueConstraint("country_code", "phone_number", name="uq_users_phone"),
        sa.UniqueConstraint("username", name="uq_users_username"),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )

    op.create_table(
        "phone_verifications",
        sa.Column("id", sa.Uuid, primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("country_code", sa.String(5), nullable=False),
        sa.Column("phone_number", sa.String(15), nullable=False),
        sa.Column("channel", sa.Text, nullable=False),
        sa.Column("provider_reference", sa.Text, nullable=True),
        sa.Column("dispatch_job_id", sa.Text, nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("attempts", sa.Integer, nullable=False, server_default=sa.text("0")),
        sa.Column("verified", sa.Boolean, nullable=False, server_default=sa.text("false")),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("channel in ('sms','whatsapp')", name="ck_phone_verification_channel"),
        sa.CheckConstraint("attempts >= 0", name="ck_phone_verification_attempts"),
    )
    op.create_index(
        "ix_phone_verifications_phone_created",
        "phone_verifications",
        ["country_code", "phone_number", "created_at"],
    )

    op.create_table(
        "auth_tokens",
        sa.Column("id", sa.Uuid, primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("user_id", sa.Uuid, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.Text, nullable=False, server_default="auth_token"),
        sa.Column("token_hash", sa.String(64), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("token_hash", name="uq_auth_tokens_token_hash"),
    )
    op.create_index("ix_auth_tokens_user", "auth_tokens", ["user_id"])


def downgrade():
    op.drop_index("ix_auth_tokens_user", table_name="auth_tokens")
    op.drop_table("auth_tokens")

    op.drop_index("ix_phone_verifications_phone_created", table_name="phone_verifications")
    op.drop_table("phone_verifications")

    op.drop_table("users")
