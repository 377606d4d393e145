from __future__ import annotations

import logging
from typing import Optional
from uuid import UUID

from fastapi import Header, HTTPException, Query, status
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError

from tenant_query.core.context import TenantContext
from tenant_query.query.filters import CountOptions, FindOptions, QueryOptions

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
async def get_tenant_context(
    x_tenant_id: str | None = Header(default=None, alias="X-Tenant-ID"),
    x_correlation_id: str | None = Header(default=None, alias="X-Correlation-ID"),
) -> TenantContext:
    """
    Build the TenantContext of a request from the X-Tenant-ID header.

    Raises:
        HTTPException: 400 Bad Request if the header is not a valid UUID.
    Returns:
        TenantContext: empty when the header is absent.
    """
    if not x_tenant_id:
        return TenantContext(correlation_id=x_correlation_id)
    try:
        tenant_id = UUID(x_tenant_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Tenant-ID header must be a valid UUID string.",
        )
    return TenantContext(tenant_id=tenant_id, correlation_id=x_correlation_id)


def _validated(model, raw: dict):
    try:
        return model.model_validate({k: v for k, v in raw.items() if v is not None})
    except ValidationError as exc:
        raise RequestValidationError(exc.errors(include_url=False, include_context=False))


# PUBLIC_INTERFACE
async def get_find_options(
    select: Optional[str] = Query(default=None, description='JSON array, e.g. ["id","name"]'),
    include: Optional[str] = Query(default=None, description='JSON array or object of relations'),
    sort: Optional[str] = Query(default=None, description='JSON object, e.g. {"name":"ASC"}'),
    include_deleted: Optional[str] = Query(default=None, alias="includeDeleted"),
) -> FindOptions:
    """Parse FindOptions from per-field URL-encoded JSON query parameters."""
    return _validated(
        FindOptions,
        {"select": select, "include": include, "sort": sort, "includeDeleted": include_deleted},
    )


# PUBLIC_INTERFACE
async def get_query_options(
    select: Optional[str] = Query(default=None, description='JSON array, e.g. ["id","name"]'),
    include: Optional[str] = Query(default=None, description='JSON array or object of relations'),
    sort: Optional[str] = Query(default=None, description='JSON object, e.g. {"name":"ASC"}'),
    where: Optional[str] = Query(default=None, description="JSON filter matrix (OR of AND groups)"),
    page: Optional[str] = Query(default=None),
    limit: Optional[str] = Query(default=None),
    include_deleted: Optional[str] = Query(default=None, alias="includeDeleted"),
) -> QueryOptions:
    """Parse QueryOptions from per-field URL-encoded JSON query parameters."""
    return _validated(
        QueryOptions,
        {
            "select": select,
            "include": include,
            "sort": sort,
            "where": where,
            "page": page,
            "limit": limit,
            "includeDeleted": include_deleted,
        },
    )


# PUBLIC_INTERFACE
async def get_count_options(
    include: Optional[str] = Query(default=None),
    where: Optional[str] = Query(default=None),
    include_deleted: Optional[str] = Query(default=None, alias="includeDeleted"),
    distinct: Optional[str] = Query(default=None),
    col: Optional[str] = Query(default=None),
    group: Optional[str] = Query(default=None),
) -> CountOptions:
    """Parse CountOptions from query parameters."""
    return _validated(
        CountOptions,
        {
            "include": include,
            "where": where,
            "includeDeleted": include_deleted,
            "distinct": distinct,
            "col": col,
            "group": group,
        },
    )
