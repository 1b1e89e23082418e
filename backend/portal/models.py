"""Account, profile and personalization records shared across the portal core."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    CANCELLED = "cancelled"
    OTHER = "other"

    @classmethod
    def coerce(cls, raw: Any) -> "SubscriptionStatus":
        if isinstance(raw, cls):
            return raw
        if isinstance(raw, str):
            normalized = raw.strip().lower()
            if normalized == "canceled":
                normalized = "cancelled"
            for member in cls:
                if member.value == normalized:
                    return member
        return cls.OTHER


class ProfileRole(str, Enum):
    PHARMACIST = "Pharmacist"
    PHARMACIST_PIC = "Pharmacist-PIC"
    PHARMACY_TECHNICIAN = "Pharmacy Technician"
    INTERN = "Intern"
    PHARMACY = "Pharmacy"
    ADMIN = "Admin"


class Account(BaseModel):
    """Paying subscriber; one per authenticated identity."""

    model_config = ConfigDict(frozen=True)

    account_id: str
    email: str
    subscription_status: SubscriptionStatus = SubscriptionStatus.OTHER
    pharmacy_name: Optional[str] = None
    pharmacy_phone: Optional[str] = None
    address1: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zipcode: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("subscription_status", mode="before")
    @classmethod
    def _coerce_status(cls, value: Any) -> SubscriptionStatus:
        return SubscriptionStatus.coerce(value)

    @property
    def organization_name(self) -> Optional[str]:
        if self.pharmacy_name and self.pharmacy_name.strip():
            return self.pharmacy_name.strip()
        return None


class Profile(BaseModel):
    """Individual user of a shared Account."""

    profile_id: str
    account_id: str
    role: ProfileRole
    first_name: str
    last_name: str
    phone_number: Optional[str] = None
    profile_email: Optional[str] = None
    license_number: Optional[str] = None
    nabp_eprofile_id: Optional[str] = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=_now)
    updated_at: Optional[datetime] = None

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


def _require_text(value: Optional[str]) -> str:
    if value is None:
        raise ValueError("value is required")
    trimmed = value.strip()
    if not trimmed:
        raise ValueError("value cannot be blank")
    return trimmed


def _optional_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    trimmed = value.strip()
    return trimmed or None


class ProfileDraft(BaseModel):
    """Payload for creating a profile. Role and both names are required."""

    role: ProfileRole
    first_name: str
    last_name: str
    phone_number: Optional[str] = None
    profile_email: Optional[str] = None
    license_number: Optional[str] = None
    nabp_eprofile_id: Optional[str] = None

    @field_validator("first_name", "last_name")
    @classmethod
    def _names_not_blank(cls, value: str) -> str:
        return _require_text(value)

    @field_validator("phone_number", "profile_email", "license_number", "nabp_eprofile_id")
    @classmethod
    def _strip_optional(cls, value: Optional[str]) -> Optional[str]:
        return _optional_text(value)


class ProfileUpdate(BaseModel):
    """Partial profile edit; only explicitly supplied fields are applied."""

    role: Optional[ProfileRole] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone_number: Optional[str] = None
    profile_email: Optional[str] = None
    license_number: Optional[str] = None
    nabp_eprofile_id: Optional[str] = None

    @field_validator("role")
    @classmethod
    def _role_not_cleared(cls, value: Optional[ProfileRole]) -> ProfileRole:
        if value is None:
            raise ValueError("role cannot be cleared")
        return value

    @field_validator("first_name", "last_name")
    @classmethod
    def _names_not_cleared(cls, value: Optional[str]) -> str:
        return _require_text(value)

    @field_validator("phone_number", "profile_email", "license_number", "nabp_eprofile_id")
    @classmethod
    def _strip_optional(cls, value: Optional[str]) -> Optional[str]:
        return _optional_text(value)

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class Bookmark(BaseModel):
    id: Optional[str] = None
    profile_id: str
    resource_id: str
    created_at: datetime = Field(default_factory=_now)


class TrainingProgressUpdate(BaseModel):
    """A playback/progress event for one training module."""

    training_module_id: str = Field(..., min_length=1)
    last_position: Optional[float] = Field(default=None, ge=0)
    is_completed: bool = False
    completion_percentage: int = Field(default=0, ge=0, le=100)
    attempts: int = Field(default=0, ge=0)
    score: Optional[float] = None
    notes: Optional[str] = None


class TrainingProgress(TrainingProgressUpdate):
    profile_id: str
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class RecentActivity(BaseModel):
    id: Optional[str] = None
    profile_id: str
    resource_id: Optional[str] = None
    resource_name: str
    resource_type: str
    accessed_at: datetime = Field(default_factory=_now)


def merge_training_progress(
    existing: Optional[TrainingProgress],
    incoming: TrainingProgress,
    *,
    now: Optional[datetime] = None,
) -> TrainingProgress:
    """Fold a progress event into the stored row.

    Completion percentage and attempts never decrease, completion is sticky and
    the first completion timestamp is kept. Position, score and notes follow the
    latest event when it supplies them.
    """
    stamp = now or _now()
    if existing is None:
        completed_at = incoming.completed_at or (stamp if incoming.is_completed else None)
        return incoming.model_copy(
            update={
                "started_at": incoming.started_at or stamp,
                "completed_at": completed_at,
                "updated_at": stamp,
            }
        )

    is_completed = existing.is_completed or incoming.is_completed
    completed_at = existing.completed_at
    if is_completed and completed_at is None:
        completed_at = incoming.completed_at or stamp

    return existing.model_copy(
        update={
            "last_position": incoming.last_position if incoming.last_position is not None else existing.last_position,
            "is_completed": is_completed,
            "completion_percentage": max(existing.completion_percentage, incoming.completion_percentage),
            "attempts": max(existing.attempts, incoming.attempts),
            "score": incoming.score if incoming.score is not None else existing.score,
            "notes": incoming.notes if incoming.notes is not None else existing.notes,
            "started_at": existing.started_at or incoming.started_at or stamp,
            "completed_at": completed_at,
            "updated_at": stamp,
        }
    )


__all__ = [
    "Account",
    "Bookmark",
    "Profile",
    "ProfileDraft",
    "ProfileRole",
    "ProfileUpdate",
    "RecentActivity",
    "SubscriptionStatus",
    "TrainingProgress",
    "TrainingProgressUpdate",
    "merge_training_progress",
]
