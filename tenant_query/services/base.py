from __future__ import annotations

import logging
from typing import Any, Generic, Mapping, Optional, Type, TypeVar, Union

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from tenant_query.core.errors import ConfigurationError
from tenant_query.query.filters import FindOptions, QueryOptions
from tenant_query.repositories.base import BaseRepository
from tenant_query.schemas.common import QueryResponse

logger = logging.getLogger(__name__)

S = TypeVar("S", bound=BaseModel)

Payload = Union[BaseModel, Mapping[str, Any]]


class BaseService:
    """
    Base class for services. Holds a session for use across multiple repositories.

    Services should keep business logic and orchestration, delegating data access
    to repositories.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session


def _payload_values(payload: Payload) -> dict[str, Any]:
    if isinstance(payload, BaseModel):
        return payload.model_dump(exclude_unset=True)
    return dict(payload)


class CrudService(BaseService, Generic[S]):
    """
    CRUD orchestration over one repository, returning pydantic read schemas.

    Payloads may be pydantic models (only explicitly set fields are written) or
    plain mappings.
    """

    def __init__(self, repository: BaseRepository[Any], read_schema: Type[S]) -> None:
        super().__init__(repository.session)
        self.repository = repository
        self.read_schema = read_schema

    def to_read(self, row: Any) -> S:
        return self.read_schema.model_validate(row)

    # PUBLIC_INTERFACE
    async def create(self, payload: Payload) -> S:
        row = await self.repository.create(_payload_values(payload))
        return self.to_read(row)

    # PUBLIC_INTERFACE
    async def update(self, identifier: Any, payload: Payload) -> S:
        """Update the row with identifier; the payload's own id is ignored."""
        values = _payload_values(payload)
        values[self.repository.identifier_field] = identifier
        row = await self.repository.update(values)
        return self.to_read(row)

    # PUBLIC_INTERFACE
    async def delete(self, identifier: Any) -> int:
        return await self.repository.delete(identifier)

    # PUBLIC_INTERFACE
    async def find_one(
        self, identifier: Any, options: Union[FindOptions, Mapping[str, Any], None] = None
    ) -> S:
        if identifier is None or identifier == "":
            raise ConfigurationError("Id is required")
        row = await self.repository.find_one_or_fail(identifier, options)
        return self.to_read(row)

    # PUBLIC_INTERFACE
    async def query(
        self, options: Union[QueryOptions, Mapping[str, Any], None] = None
    ) -> QueryResponse[S]:
        """Run a paginated query and wrap it in a QueryResponse of read schemas."""
        if options is not None and not isinstance(options, QueryOptions):
            options = QueryOptions.model_validate(options)
        options = options or QueryOptions()
        page = await self.repository.paginated_query(options)
        logger.debug("Query on %s returned %d of %d rows", self.repository.entity_name, len(page.rows), page.count)
        return QueryResponse[self.read_schema].from_page(page, options, self.to_read)
