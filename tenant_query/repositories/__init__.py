"""
Repository layer for data access.

BaseRepository implements generic CRUD and wire-level querying for one mapped
model; TenancyRepository scopes it by the tenant of an explicit TenantContext;
PivotRepository and DependentRelationRepository manage link tables and owned
child rows.
"""

from .base import BaseRepository, PaginatedResult  # noqa: F401
from .dependent import ChildrenDiff, DependentRelationRepository, diff_children  # noqa: F401
from .pivot import PivotRepository  # noqa: F401
from .tenancy import TenancyRepository  # noqa: F401
