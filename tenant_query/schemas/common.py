from __future__ import annotations

import math
from datetime import datetime
from typing import Any, Callable, Generic, List, Optional, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, computed_field

T = TypeVar("T")


class EntityRead(BaseModel):
    """Base read schema for rows built on the persistence mixins."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(..., description="Unique identifier")
    created_at: Optional[datetime] = Field(default=None, description="Creation timestamp (UTC)")
    updated_at: Optional[datetime] = Field(default=None, description="Last update timestamp (UTC)")
    deleted_at: Optional[datetime] = Field(default=None, exclude=True)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def deleted(self) -> bool:
        return self.deleted_at is not None


# PUBLIC_INTERFACE
class QueryResponse(BaseModel, Generic[T]):
    """Paginated query envelope."""

    results: List[T] = Field(default_factory=list, description="Rows of the requested page")
    page: int = Field(1, ge=1, description="1-based page number")
    limit: Optional[int] = Field(default=None, description="Page size; null when not paginated")
    pages: int = Field(1, ge=0, description="Number of pages")
    total: int = Field(0, ge=0, description="Total number of matching rows")

    @classmethod
    def from_page(
        cls,
        page_result: Any,
        options: Any = None,
        mapper: Optional[Callable[[Any], T]] = None,
    ) -> "QueryResponse[T]":
        """
        Build the envelope from a (rows, count) page result and the options that
        produced it. pages is ceil(total / limit) when a limit is set, else 1.
        """
        rows, total = page_result
        limit = getattr(options, "limit", None) or None
        page = getattr(options, "normalized_page", None) or 1
        pages = math.ceil(total / limit) if limit else 1
        results = [mapper(row) for row in rows] if mapper is not None else list(rows)
        return cls(results=results, page=page, limit=limit, pages=pages, total=total)


class ErrorInfo(BaseModel):
    """Structured error description."""
    type: str = Field(..., description="Machine-readable error type code")
    message: str = Field(..., description="Human-readable error message")
    details: Optional[Any] = Field(default=None, description="Optional error details (e.g., validation issues)")


# PUBLIC_INTERFACE
class ErrorResponse(BaseModel):
    """Standardized API error envelope returned by exception handlers."""
    status: int = Field(..., description="HTTP status code")
    error: ErrorInfo = Field(..., description="Error details")
    correlation_id: Optional[str] = Field(default=None, description="Request correlation ID")
    tenant_id: Optional[str] = Field(default=None, description="Tenant ID (if available)")
    path: Optional[str] = Field(default=None, description="Request path")
    method: Optional[str] = Field(default=None, description="HTTP method")
    timestamp: datetime = Field(..., description="Error timestamp (UTC)")
