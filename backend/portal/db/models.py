"""ORM models backing the member portal row store."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, utcnow


def _uuid() -> str:
    return str(uuid.uuid4())


class AccountModel(TimestampMixin, Base):
    __tablename__ = "accounts"
    __table_args__ = (Index("ix_accounts_email", "email", unique=True),)

    account_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    subscription_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    pharmacy_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    pharmacy_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    address1: Mapped[str | None] = mapped_column(Text, nullable=True)
    city: Mapped[str | None] = mapped_column(String(128), nullable=True)
    state: Mapped[str | None] = mapped_column(String(64), nullable=True)
    zipcode: Mapped[str | None] = mapped_column(String(16), nullable=True)

    credential: Mapped[Optional["AccountCredentialModel"]] = relationship(
        back_populates="account", cascade="all, delete-orphan", uselist=False
    )
    profiles: Mapped[list["MemberProfileModel"]] = relationship(back_populates="account")


class AccountCredentialModel(Base):
    __tablename__ = "account_credentials"
    __table_args__ = (Index("ix_account_credentials_email", "email", unique=True),)

    account_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("accounts.account_id", ondelete="CASCADE"), primary_key=True
    )
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    account: Mapped[AccountModel] = relationship(back_populates="credential")


class MemberProfileModel(TimestampMixin, Base):
    __tablename__ = "member_profiles"
    __table_args__ = (Index("ix_member_profiles_account_active", "account_id", "is_active"),)

    profile_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    account_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("accounts.account_id", ondelete="CASCADE"), nullable=False
    )
    profile_role: Mapped[str] = mapped_column(String(32), nullable=False)
    first_name: Mapped[str] = mapped_column(String(128), nullable=False)
    last_name: Mapped[str] = mapped_column(String(128), nullable=False)
    phone_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    profile_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    license_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    nabp_eprofile_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    account: Mapped[AccountModel] = relationship(back_populates="profiles")


class BookmarkModel(Base):
    __tablename__ = "bookmarks"
    __table_args__ = (UniqueConstraint("profile_id", "resource_id", name="uq_bookmarks_profile_resource"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    profile_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("member_profiles.profile_id", ondelete="CASCADE"), nullable=False, index=True
    )
    resource_id: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class TrainingProgressModel(TimestampMixin, Base):
    __tablename__ = "member_training_progress"
    __table_args__ = (
        UniqueConstraint("profile_id", "training_module_id", name="uq_training_progress_profile_module"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    profile_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("member_profiles.profile_id", ondelete="CASCADE"), nullable=False, index=True
    )
    training_module_id: Mapped[str] = mapped_column(String(255), nullable=False)
    last_position: Mapped[float | None] = mapped_column(Float, nullable=True)
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    completion_percentage: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    score: Mapped[float | None] = mapped_column(Float, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class RecentActivityModel(Base):
    __tablename__ = "recent_activity"
    __table_args__ = (Index("ix_recent_activity_profile_accessed", "profile_id", "accessed_at"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    profile_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("member_profiles.profile_id", ondelete="CASCADE"), nullable=False
    )
    resource_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    resource_name: Mapped[str] = mapped_column(Text, nullable=False)
    resource_type: Mapped[str] = mapped_column(String(64), nullable=False)
    accessed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


__all__ = [
    "AccountCredentialModel",
    "AccountModel",
    "BookmarkModel",
    "MemberProfileModel",
    "RecentActivityModel",
    "TrainingProgressModel",
]
