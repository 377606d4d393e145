"""
Database package initializer exposing key public interfaces for configuration,
engine/session management and transactions.
"""

from .base import Base, SoftDeleteMixin, TenantMixin, TimestampMixin, UUIDPkMixin
from .config import get_settings, Settings
from .session import (
    create_session_factory,
    dispose_engine,
    get_async_session,
    get_engine,
    transaction,
)

__all__ = [
    "Base",
    "Settings",
    "SoftDeleteMixin",
    "TenantMixin",
    "TimestampMixin",
    "UUIDPkMixin",
    "create_session_factory",
    "dispose_engine",
    "get_async_session",
    "get_engine",
    "get_settings",
    "transaction",
]
