import os
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: Optional[str] = Field(None, alias="PORTAL_DATABASE_URL")
    database_pool_size: int = Field(10, alias="PORTAL_DATABASE_POOL_SIZE")
    database_max_overflow: int = Field(10, alias="PORTAL_DATABASE_MAX_OVERFLOW")
    database_echo: bool = Field(False, alias="PORTAL_DATABASE_ECHO")
    selection_store_path: Optional[str] = Field(None, alias="PORTAL_SELECTION_STORE_PATH")
    identity_session_minutes: int = Field(12 * 60, ge=1, alias="PORTAL_IDENTITY_SESSION_MINUTES")
    auto_provision_default_profile: bool = Field(True, alias="PORTAL_AUTO_PROVISION_PROFILE")
    default_profile_role: str = Field("Pharmacy", alias="PORTAL_DEFAULT_PROFILE_ROLE")
    default_profile_last_name: str = Field("Pharmacy", alias="PORTAL_DEFAULT_PROFILE_LAST_NAME")
    profile_removal_policy: Literal["soft", "hard"] = Field("soft", alias="PORTAL_PROFILE_REMOVAL_POLICY")
    recent_activity_limit: int = Field(5, ge=1, alias="PORTAL_RECENT_ACTIVITY_LIMIT")
    recent_activity_retention: int = Field(50, ge=1, alias="PORTAL_RECENT_ACTIVITY_RETENTION")
    client_idle_minutes: int = Field(30, ge=1, alias="PORTAL_CLIENT_IDLE_MINUTES")

    class Config:
        env_file = os.getenv("ENV_FILE", ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True
        populate_by_name = True


@lru_cache
def get_settings() -> Settings:
    try:
        return Settings()  # type: ignore[call-arg]
    except ValidationError as exc:
        raise RuntimeError(f"Invalid portal configuration: {exc}") from exc
