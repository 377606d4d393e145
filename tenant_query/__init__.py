"""
Tenant-aware generic repository layer over async SQLAlchemy.
"""

from .core.context import TenantContext
from .core.errors import (
    ConfigurationError,
    EntityNotFoundError,
    RepositoryError,
    TenantContextMissingError,
)
from .query.filters import CountOptions, FindOptions, QueryFilter, QueryOptions
from .repositories import (
    BaseRepository,
    DependentRelationRepository,
    PaginatedResult,
    PivotRepository,
    TenancyRepository,
)

__all__ = [
    "BaseRepository",
    "ConfigurationError",
    "CountOptions",
    "DependentRelationRepository",
    "EntityNotFoundError",
    "FindOptions",
    "PaginatedResult",
    "PivotRepository",
    "QueryFilter",
    "QueryOptions",
    "RepositoryError",
    "TenancyRepository",
    "TenantContext",
    "TenantContextMissingError",
]
