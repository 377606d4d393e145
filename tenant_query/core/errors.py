from __future__ import annotations

import json
from typing import Any, Optional


class RepositoryError(Exception):
    """Base class for errors raised by the repository layer."""


class EntityNotFoundError(RepositoryError):
    """
    Raised when a strict lookup, update or delete matches zero rows, or when an
    update target carries no identifier.

    Attributes:
      entity: name of the mapped entity (class or table name)
      criteria: identifier or criteria that was attempted
    """

    def __init__(self, entity: str, criteria: Any = None) -> None:
        self.entity = entity
        self.criteria = criteria
        super().__init__(
            f'Could not find an entity "{entity}" matching criteria: {_render_criteria(criteria)}'
        )


class ConfigurationError(RepositoryError):
    """
    Raised synchronously, before any statement is executed, when an operation's
    preconditions are violated (missing match criteria, empty identifier field,
    unsupported include depth, unknown operator).
    """


class TenantContextMissingError(ConfigurationError):
    """Raised when an operation requires a tenant but no tenant context is present."""

    def __init__(self, operation: str, entity: Optional[str] = None) -> None:
        self.operation = operation
        self.entity = entity
        target = f' on "{entity}"' if entity else ""
        super().__init__(f"Could not set tenant id for {operation}{target}: no tenant context")


def _render_criteria(criteria: Any) -> str:
    try:
        return json.dumps(criteria, default=str)
    except (TypeError, ValueError):
        return str(criteria)
