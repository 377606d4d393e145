import uuid
from typing import Optional

import pytest

from tenant_query.core.errors import ConfigurationError, EntityNotFoundError
from tenant_query.query.filters import QueryOptions
from tenant_query.schemas.common import EntityRead, QueryResponse
from tenant_query.services.base import CrudService

from .models import TenantMemberRepository


class MemberRead(EntityRead):
    name: str
    age: Optional[int] = None
    tenant_id: uuid.UUID


@pytest.fixture
def service(session, settings, tenant_a):
    return CrudService(TenantMemberRepository(session, tenant_a, settings=settings), MemberRead)


async def test_crud_round(service, tenant_a):
    created = await service.create({"name": "ann", "age": 3})
    assert isinstance(created, MemberRead)
    assert created.tenant_id == tenant_a.tenant_id
    assert created.deleted is False

    updated = await service.update(created.id, {"age": 4})
    assert updated.age == 4

    found = await service.find_one(str(created.id))
    assert found.name == "ann"

    assert await service.delete(created.id) == 1
    with pytest.raises(EntityNotFoundError):
        await service.find_one(created.id)


async def test_find_one_requires_an_id(service):
    with pytest.raises(ConfigurationError):
        await service.find_one("")
    with pytest.raises(ConfigurationError):
        await service.find_one(None)


async def test_query_wraps_rows_in_envelope(service):
    for name in ["a", "b", "c", "d", "e"]:
        await service.create({"name": name})

    response = await service.query(QueryOptions(sort={"name": "ASC"}, page=2, limit=2))

    assert [m.name for m in response.results] == ["c", "d"]
    assert (response.page, response.limit, response.pages, response.total) == (2, 2, 3, 5)


async def test_query_without_limit_is_one_page(service):
    await service.create({"name": "a"})
    response = await service.query({"where": [[{"col": "name", "op": "=", "value": "a"}]]})
    assert (response.pages, response.total, response.limit) == (1, 1, None)


def test_query_response_from_page():
    response = QueryResponse[int].from_page(([1, 2], 7), QueryOptions(page=0, limit=2))
    assert response.model_dump() == {"results": [1, 2], "page": 1, "limit": 2, "pages": 4, "total": 7}

    empty = QueryResponse[int].from_page(([], 0), QueryOptions(limit=10))
    assert (empty.pages, empty.total) == (0, 0)

    mapped = QueryResponse[str].from_page(([1], 1), None, str)
    assert mapped.results == ["1"]
    assert mapped.pages == 1
