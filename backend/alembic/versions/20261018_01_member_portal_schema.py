"""Member portal schema: accounts, credentials, profiles and personalization."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "20261018_01_member_portal_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "accounts",
        sa.Column("account_id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("subscription_status", sa.String(length=32), nullable=True),
        sa.Column("pharmacy_name", sa.Text(), nullable=True),
        sa.Column("pharmacy_phone", sa.String(length=32), nullable=True),
        sa.Column("address1", sa.Text(), nullable=True),
        sa.Column("city", sa.String(length=128), nullable=True),
        sa.Column("state", sa.String(length=64), nullable=True),
        sa.Column("zipcode", sa.String(length=16), nullable=True),
    )
    op.create_index("ix_accounts_email", "accounts", ["email"], unique=True)

    op.create_table(
        "account_credentials",
        sa.Column("account_id", sa.String(length=36), sa.ForeignKey("accounts.account_id", ondelete="CASCADE"), primary_key=True),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    )
    op.create_index("ix_account_credentials_email", "account_credentials", ["email"], unique=True)

    op.create_table(
        "member_profiles",
        sa.Column("profile_id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("account_id", sa.String(length=36), sa.ForeignKey("accounts.account_id", ondelete="CASCADE"), nullable=False),
        sa.Column("profile_role", sa.String(length=32), nullable=False),
        sa.Column("first_name", sa.String(length=128), nullable=False),
        sa.Column("last_name", sa.String(length=128), nullable=False),
        sa.Column("phone_number", sa.String(length=32), nullable=True),
        sa.Column("profile_email", sa.String(length=320), nullable=True),
        sa.Column("license_number", sa.String(length=64), nullable=True),
        sa.Column("nabp_eprofile_id", sa.String(length=64), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_index("ix_member_profiles_account_active", "member_profiles", ["account_id", "is_active"])

    op.create_table(
        "bookmarks",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("profile_id", sa.String(length=36), sa.ForeignKey("member_profiles.profile_id", ondelete="CASCADE"), nullable=False),
        sa.Column("resource_id", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.UniqueConstraint("profile_id", "resource_id", name="uq_bookmarks_profile_resource"),
    )
    op.create_index("ix_bookmarks_profile_id", "bookmarks", ["profile_id"])

    op.create_table(
        "member_training_progress",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("profile_id", sa.String(length=36), sa.ForeignKey("member_profiles.profile_id", ondelete="CASCADE"), nullable=False),
        sa.Column("training_module_id", sa.String(length=255), nullable=False),
        sa.Column("last_position", sa.Float(), nullable=True),
        sa.Column("is_completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("completion_percentage", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("score", sa.Float(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("profile_id", "training_module_id", name="uq_training_progress_profile_module"),
    )
    op.create_index("ix_member_training_progress_profile_id", "member_training_progress", ["profile_id"])

    op.create_table(
        "recent_activity",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("profile_id", sa.String(length=36), sa.ForeignKey("member_profiles.profile_id", ondelete="CASCADE"), nullable=False),
        sa.Column("resource_id", sa.String(length=255), nullable=True),
        sa.Column("resource_name", sa.Text(), nullable=False),
        sa.Column("resource_type", sa.String(length=64), nullable=False),
        sa.Column("accessed_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    )
    op.create_index("ix_recent_activity_profile_accessed", "recent_activity", ["profile_id", "accessed_at"])


def downgrade() -> None:
    op.drop_index("ix_recent_activity_profile_accessed", table_name="recent_activity")
    op.drop_table("recent_activity")
    op.drop_index("ix_member_training_progress_profile_id", table_name="member_training_progress")
    op.drop_table("member_training_progress")
    op.drop_index("ix_bookmarks_profile_id", table_name="bookmarks")
    op.drop_table("bookmarks")
    op.drop_index("ix_member_profiles_account_active", table_name="member_profiles")
    op.drop_table("member_profiles")
    op.drop_index("ix_account_credentials_email", table_name="account_credentials")
    op.drop_table("account_credentials")
    op.drop_index("ix_accounts_email", table_name="accounts")
    op.drop_table("accounts")
