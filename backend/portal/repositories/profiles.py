"""Database-backed member profile repository."""

from __future__ import annotations

from typing import Any, Dict, List

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from ..db.base import as_utc, utcnow
from ..db.models import BookmarkModel, MemberProfileModel, RecentActivityModel, TrainingProgressModel
from ..models import Profile, ProfileDraft, ProfileRole

_UPDATABLE_FIELDS = {
    "role": "profile_role",
    "first_name": "first_name",
    "last_name": "last_name",
    "phone_number": "phone_number",
    "profile_email": "profile_email",
    "license_number": "license_number",
    "nabp_eprofile_id": "nabp_eprofile_id",
}


class MemberProfileRepository:
    def list_active(self, session: Session, account_id: str) -> List[Profile]:
        stmt = (
            select(MemberProfileModel)
            .where(MemberProfileModel.account_id == account_id)
            .where(MemberProfileModel.is_active.is_(True))
            .order_by(MemberProfileModel.created_at.asc())
        )
        return [self._to_domain(model) for model in session.execute(stmt).scalars().all()]

    def get(self, session: Session, profile_id: str) -> Profile | None:
        model = session.get(MemberProfileModel, profile_id)
        return self._to_domain(model) if model else None

    def insert(self, session: Session, account_id: str, draft: ProfileDraft) -> Profile:
        model = MemberProfileModel(
            account_id=account_id,
            profile_role=draft.role.value,
            first_name=draft.first_name,
            last_name=draft.last_name,
            phone_number=draft.phone_number,
            profile_email=draft.profile_email,
            license_number=draft.license_number,
            nabp_eprofile_id=draft.nabp_eprofile_id,
            is_active=True,
        )
        session.add(model)
        session.flush()
        return self._to_domain(model)

    def update(self, session: Session, profile_id: str, changes: Dict[str, Any]) -> Profile:
        model = self._require_active(session, profile_id)
        for field, value in changes.items():
            column = _UPDATABLE_FIELDS.get(field)
            if column is None:
                raise ValueError(f"Profile field {field!r} cannot be updated.")
            if isinstance(value, ProfileRole):
                value = value.value
            setattr(model, column, value)
        model.updated_at = utcnow()
        session.flush()
        return self._to_domain(model)

    def deactivate(self, session: Session, profile_id: str) -> None:
        model = self._require_active(session, profile_id)
        model.is_active = False
        model.updated_at = utcnow()
        session.flush()

    def delete(self, session: Session, profile_id: str) -> None:
        """Hard delete; dependent personalization rows are removed explicitly first."""
        model = session.get(MemberProfileModel, profile_id)
        if model is None:
            raise LookupError(f"Profile {profile_id} does not exist.")
        for dependent in (BookmarkModel, TrainingProgressModel, RecentActivityModel):
            session.execute(delete(dependent).where(dependent.profile_id == profile_id))
        session.delete(model)
        session.flush()

    @staticmethod
    def _require_active(session: Session, profile_id: str) -> MemberProfileModel:
        model = session.get(MemberProfileModel, profile_id)
        if model is None or not model.is_active:
            raise LookupError(f"Profile {profile_id} does not exist or is inactive.")
        return model

    @staticmethod
    def _to_domain(model: MemberProfileModel) -> Profile:
        return Profile(
            profile_id=model.profile_id,
            account_id=model.account_id,
            role=ProfileRole(model.profile_role),
            first_name=model.first_name,
            last_name=model.last_name,
            phone_number=model.phone_number,
            profile_email=model.profile_email,
            license_number=model.license_number,
            nabp_eprofile_id=model.nabp_eprofile_id,
            is_active=model.is_active,
            created_at=as_utc(model.created_at),
            updated_at=as_utc(model.updated_at),
        )


__all__ = ["MemberProfileRepository"]
