"""
Core utilities: settings, logging, errors, tenant context and FastAPI dependencies.
"""

from .context import TenantContext  # noqa: F401
from .errors import (  # noqa: F401
    ConfigurationError,
    EntityNotFoundError,
    RepositoryError,
    TenantContextMissingError,
)
