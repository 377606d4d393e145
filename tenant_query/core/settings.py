from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RepositorySettings(BaseSettings):
    """
    Behavioral settings for the generic repository layer.

    This is separate from tenant_query.db.config.Settings, which focuses on the
    database connection. Values are read from REPOSITORY_* environment variables.
    """

    REFETCH_AFTER_UPDATE: bool = Field(
        default=True,
        description="Re-select updated rows after an update to return the authoritative state.",
    )
    FIND_OR_CREATE_FAST: bool = Field(
        default=True,
        description=(
            "Default strategy for find_or_create. True: find, create, find again on conflict. "
            "False: single INSERT ... ON CONFLICT DO NOTHING followed by a find."
        ),
    )
    STRICT_RELATIONS: bool = Field(
        default=False,
        description="Reject includes naming undeclared relations instead of skipping them.",
    )
    MAX_LIMIT: Optional[int] = Field(
        default=None, ge=1, description="Upper bound applied to the requested page size."
    )
    LOG_QUERIES: bool = Field(
        default=False, description="Log compiled SELECT statements at DEBUG level."
    )

    model_config = SettingsConfigDict(
        env_prefix="REPOSITORY_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("MAX_LIMIT", mode="before")
    @classmethod
    def _parse_max_limit(cls, v):
        """Treat empty strings and zero as 'no limit'."""
        if v in (None, "", 0, "0"):
            return None
        return v


# PUBLIC_INTERFACE
@lru_cache(maxsize=1)
def get_repository_settings() -> RepositorySettings:
    """Return the process-wide RepositorySettings loaded from the environment."""
    return RepositorySettings()
