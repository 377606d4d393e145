import json
import uuid
from urllib.parse import quote

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from tenant_query.api.errors import install_exception_handlers
from tenant_query.core.context import TenantContext
from tenant_query.core.deps import get_count_options, get_query_options, get_tenant_context
from tenant_query.core.errors import ConfigurationError, EntityNotFoundError
from tenant_query.query.filters import CountOptions, QueryOptions


@pytest.fixture
def client():
    app = FastAPI()
    install_exception_handlers(app)

    @app.get("/context")
    async def context(ctx: TenantContext = Depends(get_tenant_context)):
        return {"tenant_id": str(ctx.tenant_id) if ctx.has_tenant else None}

    @app.get("/options")
    async def options(opts: QueryOptions = Depends(get_query_options)):
        return {
            "where": [[f.to_wire() for f in group] for group in opts.where or []],
            "page": opts.page,
            "limit": opts.limit,
            "offset": opts.offset,
            "include_deleted": opts.include_deleted,
            "sort": {k: v.value for k, v in (opts.sort or {}).items()},
        }

    @app.get("/count-options")
    async def count_options(opts: CountOptions = Depends(get_count_options)):
        return {"group": opts.group_columns, "distinct": opts.distinct}

    @app.get("/missing")
    async def missing():
        raise EntityNotFoundError("Member", {"id": "42"})

    @app.get("/misconfigured")
    async def misconfigured():
        raise ConfigurationError("Id is required")

    return TestClient(app)


def test_tenant_header_builds_context(client):
    tenant = uuid.uuid4()
    response = client.get("/context", headers={"X-Tenant-ID": str(tenant)})
    assert response.status_code == 200
    assert response.json() == {"tenant_id": str(tenant)}
    assert response.headers["X-Correlation-ID"]


def test_missing_tenant_header_gives_empty_context(client):
    assert client.get("/context").json() == {"tenant_id": None}


def test_invalid_tenant_header_is_rejected(client):
    response = client.get("/context", headers={"X-Tenant-ID": "nope"})
    assert response.status_code == 400
    assert response.json()["error"]["type"] == "http_error"


def test_query_options_are_parsed_from_query_string(client):
    where = quote(json.dumps([[{"col": "name", "op": "ilike", "value": "an"}]]))
    response = client.get(
        f"/options?where={where}&page=3&limit=5&includeDeleted=true&sort=" + quote('{"name":"desc"}')
    )

    assert response.status_code == 200
    assert response.json() == {
        "where": [[{"col": "name", "op": "ilike", "value": "an"}]],
        "page": 3,
        "limit": 5,
        "offset": 10,
        "include_deleted": True,
        "sort": {"name": "DESC"},
    }


def test_invalid_filter_is_a_validation_error(client):
    where = quote(json.dumps([[{"col": "name", "op": "in", "value": "an"}]]))
    response = client.get(f"/options?where={where}")
    assert response.status_code == 422
    assert response.json()["error"]["type"] == "validation_error"


def test_count_options_dependency(client):
    response = client.get("/count-options?group=age&distinct=true")
    assert response.json() == {"group": ["age"], "distinct": True}


def test_entity_not_found_maps_to_404(client):
    response = client.get("/missing", headers={"X-Correlation-ID": "cid-1"})
    body = response.json()

    assert response.status_code == 404
    assert body["error"]["type"] == "not_found"
    assert body["error"]["details"] == {"entity": "Member", "criteria": {"id": "42"}}
    assert body["correlation_id"] == "cid-1"
    assert "Member" in body["error"]["message"]


def test_configuration_error_maps_to_400(client):
    response = client.get("/misconfigured")
    assert response.status_code == 400
    assert response.json()["error"]["message"] == "Id is required"
