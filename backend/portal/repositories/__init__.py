"""SQLAlchemy repositories for accounts, profiles and personalization rows."""

from .accounts import AccountRepository
from .personalization import (
    BookmarkRepository,
    RecentActivityRepository,
    TrainingProgressRepository,
)
from .profiles import MemberProfileRepository

__all__ = [
    "AccountRepository",
    "BookmarkRepository",
    "MemberProfileRepository",
    "RecentActivityRepository",
    "TrainingProgressRepository",
]
