from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Optional, Type, TypeVar

from sqlalchemy import Uuid, inspect
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from tenant_query.core.context import TenantContext
from tenant_query.core.errors import ConfigurationError, TenantContextMissingError
from tenant_query.core.settings import RepositorySettings
from tenant_query.db.mapping import has_column
from .base import BaseRepository, Criteria

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TenancyRepository(BaseRepository[T]):
    """
    Repository that stamps and scopes every row by the tenant of its context.

    - create/create_many/find_or_create stamp the tenant column on each row.
    - reads, updates and deletes are restricted to `tenant_column == tenant`.
    - update payloads have the tenant column forced back to the context tenant.

    The skip_* flags disable tenancy for one kind of operation. Reads and
    updates may be made optional (no tenant means no restriction); creates and
    deletes always require a tenant unless skipped.
    """

    tenant_column: str = "tenant_id"

    skip_tenancy_for_save: bool = False
    skip_tenancy_for_update: bool = False
    skip_tenancy_for_destroy: bool = False
    skip_tenancy_for_find: bool = False

    tenancy_for_update_is_optional: bool = False
    tenancy_for_find_is_optional: bool = False

    def __init__(
        self,
        session: AsyncSession,
        context: Optional[TenantContext] = None,
        model: Optional[Type[T]] = None,
        *,
        settings: Optional[RepositorySettings] = None,
    ) -> None:
        super().__init__(session, model, settings=settings)
        if not has_column(self.model, self.tenant_column):
            raise ConfigurationError(
                f"{self.entity_name} has no tenant column {self.tenant_column!r}"
            )
        self.context = context or TenantContext.empty()

    def with_context(self, context: TenantContext) -> "TenancyRepository[T]":
        """Return a repository of the same kind bound to another tenant context."""
        return type(self)(self.session, context, self.model, settings=self.settings)

    # PUBLIC_INTERFACE
    def tenant_value(self) -> Optional[Any]:
        """The context tenant coerced to the tenant column's python type, or None."""
        tenant = self.context.current_tenant_id()
        if tenant is None:
            return None
        column = inspect(self.model).columns[self.tenant_column]
        if isinstance(column.type, Uuid) and not isinstance(tenant, uuid.UUID):
            try:
                return uuid.UUID(str(tenant))
            except ValueError:
                raise ConfigurationError(f"Invalid tenant id {tenant!r}") from None
        return tenant

    def _required_tenant(self, operation: str) -> Any:
        tenant = self.tenant_value()
        if tenant is None:
            raise TenantContextMissingError(operation, self.entity_name)
        return tenant

    def _tenant_predicate(self, tenant: Any) -> List[ColumnElement[bool]]:
        return [getattr(self.model, self.tenant_column) == tenant]

    def fetch_scope(self) -> List[ColumnElement[bool]]:
        scope = super().fetch_scope()
        if self.skip_tenancy_for_find:
            return scope
        tenant = self.tenant_value()
        if tenant is None:
            if self.tenancy_for_find_is_optional:
                return scope
            raise TenantContextMissingError("find", self.entity_name)
        return [*scope, *self._tenant_predicate(tenant)]

    def update_scope(self) -> List[ColumnElement[bool]]:
        scope = super().update_scope()
        if self.skip_tenancy_for_update:
            return scope
        tenant = self.tenant_value()
        if tenant is None:
            if self.tenancy_for_update_is_optional:
                return scope
            raise TenantContextMissingError("update", self.entity_name)
        return [*scope, *self._tenant_predicate(tenant)]

    def delete_scope(self) -> List[ColumnElement[bool]]:
        scope = super().delete_scope()
        if self.skip_tenancy_for_destroy:
            return scope
        return [*scope, *self._tenant_predicate(self._required_tenant("delete"))]

    def before_create_model(self, instance: T) -> T:
        instance = super().before_create_model(instance)
        if not self.skip_tenancy_for_save:
            setattr(instance, self.tenant_column, self._required_tenant("create"))
        return instance

    def before_update_model(self, values: Dict[str, Any], criteria: Criteria) -> Dict[str, Any]:
        values = super().before_update_model(values, criteria)
        if self.skip_tenancy_for_update:
            return values
        tenant = self.tenant_value()
        if tenant is not None:
            values[self.tenant_column] = tenant
        else:
            values.pop(self.tenant_column, None)
        return values
