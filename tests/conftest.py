import uuid

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from tenant_query.core.context import TenantContext
from tenant_query.core.settings import RepositorySettings
from tenant_query.db.base import Base
from tenant_query.db.session import create_session_factory

from . import models  # noqa: F401  (registers the sample tables)


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session(engine):
    factory = create_session_factory(engine)
    async with factory() as session:
        yield session


@pytest.fixture
def settings():
    """Repository settings with defaults, independent of the environment."""
    return RepositorySettings(
        REFETCH_AFTER_UPDATE=True,
        FIND_OR_CREATE_FAST=True,
        STRICT_RELATIONS=False,
        MAX_LIMIT=None,
        LOG_QUERIES=False,
    )


@pytest.fixture
def tenant_a():
    return TenantContext(tenant_id=uuid.uuid4())


@pytest.fixture
def tenant_b():
    return TenantContext(tenant_id=uuid.uuid4())
