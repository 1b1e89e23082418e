"""Database-backed bookmark, training progress and recent activity repositories."""

from __future__ import annotations

from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from ..db.base import as_utc, utcnow
from ..db.models import BookmarkModel, RecentActivityModel, TrainingProgressModel
from ..models import RecentActivity, TrainingProgress, merge_training_progress


class BookmarkRepository:
    def list_resource_ids(self, session: Session, profile_id: str) -> List[str]:
        stmt = (
            select(BookmarkModel.resource_id)
            .where(BookmarkModel.profile_id == profile_id)
            .order_by(BookmarkModel.created_at.asc())
        )
        return list(session.execute(stmt).scalars().all())

    def add(self, session: Session, profile_id: str, resource_id: str) -> bool:
        """Insert the (profile, resource) pair; returns False when it already existed."""
        stmt = select(BookmarkModel).where(
            BookmarkModel.profile_id == profile_id,
            BookmarkModel.resource_id == resource_id,
        )
        if session.execute(stmt).scalar_one_or_none() is not None:
            return False
        session.add(BookmarkModel(profile_id=profile_id, resource_id=resource_id))
        session.flush()
        return True

    def remove(self, session: Session, profile_id: str, resource_id: str) -> int:
        result = session.execute(
            delete(BookmarkModel).where(
                BookmarkModel.profile_id == profile_id,
                BookmarkModel.resource_id == resource_id,
            )
        )
        return result.rowcount or 0

    def clear(self, session: Session, profile_id: str) -> int:
        result = session.execute(delete(BookmarkModel).where(BookmarkModel.profile_id == profile_id))
        return result.rowcount or 0


class TrainingProgressRepository:
    def list_for_profile(self, session: Session, profile_id: str) -> List[TrainingProgress]:
        stmt = (
            select(TrainingProgressModel)
            .where(TrainingProgressModel.profile_id == profile_id)
            .order_by(TrainingProgressModel.updated_at.desc())
        )
        return [self._to_domain(model) for model in session.execute(stmt).scalars().all()]

    def upsert(self, session: Session, record: TrainingProgress) -> TrainingProgress:
        stmt = select(TrainingProgressModel).where(
            TrainingProgressModel.profile_id == record.profile_id,
            TrainingProgressModel.training_module_id == record.training_module_id,
        )
        model = session.execute(stmt).scalar_one_or_none()
        existing = self._to_domain(model) if model else None
        merged = merge_training_progress(existing, record, now=utcnow())
        if model is None:
            model = TrainingProgressModel(
                profile_id=record.profile_id,
                training_module_id=record.training_module_id,
            )
            session.add(model)
        model.last_position = merged.last_position
        model.is_completed = merged.is_completed
        model.completion_percentage = merged.completion_percentage
        model.attempts = merged.attempts
        model.score = merged.score
        model.notes = merged.notes
        model.started_at = merged.started_at
        model.completed_at = merged.completed_at
        model.updated_at = merged.updated_at or utcnow()
        session.flush()
        return self._to_domain(model)

    @staticmethod
    def _to_domain(model: TrainingProgressModel) -> TrainingProgress:
        return TrainingProgress(
            profile_id=model.profile_id,
            training_module_id=model.training_module_id,
            last_position=model.last_position,
            is_completed=model.is_completed,
            completion_percentage=model.completion_percentage,
            attempts=model.attempts,
            score=model.score,
            notes=model.notes,
            started_at=as_utc(model.started_at),
            completed_at=as_utc(model.completed_at),
            updated_at=as_utc(model.updated_at),
        )


class RecentActivityRepository:
    def __init__(self, retention: int = 50) -> None:
        self.retention = retention

    def list_recent(self, session: Session, profile_id: str, limit: int) -> List[RecentActivity]:
        stmt = (
            select(RecentActivityModel)
            .where(RecentActivityModel.profile_id == profile_id)
            .order_by(RecentActivityModel.accessed_at.desc())
            .limit(limit)
        )
        return [self._to_domain(model) for model in session.execute(stmt).scalars().all()]

    def record(self, session: Session, entry: RecentActivity, retention: Optional[int] = None) -> RecentActivity:
        model = RecentActivityModel(
            profile_id=entry.profile_id,
            resource_id=entry.resource_id,
            resource_name=entry.resource_name,
            resource_type=entry.resource_type,
            accessed_at=entry.accessed_at,
        )
        session.add(model)
        session.flush()

        keep = retention or self.retention
        stmt = (
            select(RecentActivityModel)
            .where(RecentActivityModel.profile_id == entry.profile_id)
            .order_by(RecentActivityModel.accessed_at.desc())
        )
        rows = session.execute(stmt).scalars().all()
        for stale in rows[keep:]:
            session.delete(stale)
        session.flush()
        return self._to_domain(model)

    @staticmethod
    def _to_domain(model: RecentActivityModel) -> RecentActivity:
        return RecentActivity(
            id=model.id,
            profile_id=model.profile_id,
            resource_id=model.resource_id,
            resource_name=model.resource_name,
            resource_type=model.resource_type,
            accessed_at=as_utc(model.accessed_at),
        )


__all__ = [
    "BookmarkRepository",
    "RecentActivityRepository",
    "TrainingProgressRepository",
]
