"""
Tenant context consumed by tenant-scoped repositories.

The context is an explicit value handed to each repository (usually built once
per request by the transport layer) instead of process-wide ambient state.
"""
from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional, Union
from uuid import UUID

from .logging import log_context

TenantId = Union[UUID, str, int]


@dataclass(frozen=True)
class TenantContext:
    """Identifies the tenant (license) on whose behalf an operation runs."""

    tenant_id: Optional[TenantId] = None
    user_id: Optional[TenantId] = None
    correlation_id: Optional[str] = None

    @classmethod
    def empty(cls) -> "TenantContext":
        """A context with no tenant; tenant-required operations will refuse it."""
        return cls()

    # PUBLIC_INTERFACE
    def current_tenant_id(self) -> Optional[TenantId]:
        """Return the active tenant id or None. Never raises."""
        return self.tenant_id

    @property
    def has_tenant(self) -> bool:
        return self.tenant_id is not None

    @contextmanager
    def bind(self) -> Iterator["TenantContext"]:
        """Expose this context's ids to log records emitted inside the block."""
        with log_context(
            tenant_id=str(self.tenant_id) if self.tenant_id is not None else None,
            correlation_id=self.correlation_id,
        ):
            yield self
