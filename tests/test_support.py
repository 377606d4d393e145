import logging
import uuid

import pytest
from sqlalchemy import select

from tenant_query.core.context import TenantContext
from tenant_query.core.errors import ConfigurationError, EntityNotFoundError, TenantContextMissingError
from tenant_query.core.logging import LoggingContextFilter, correlation_id_var, tenant_id_var
from tenant_query.core.settings import RepositorySettings
from tenant_query.db.config import Settings
from tenant_query.db.mapping import (
    build_entity,
    coerce_value,
    copy_entity,
    entity_values,
    foreign_key_from_relation,
    resolve_identifier,
)
from tenant_query.db.session import in_caller_transaction, transaction

from .models import Group, Member, Note, Tag


def test_resolve_identifier_forms():
    ident = uuid.uuid4()
    assert resolve_identifier(ident) == ident
    assert resolve_identifier(5) == 5
    assert resolve_identifier({"id": ident}) == ident
    assert resolve_identifier(Note(id=ident, body="x")) == ident
    assert resolve_identifier({"id": ""}) is None
    assert resolve_identifier(None) is None
    assert resolve_identifier({"code": "a"}, "code") == "a"


def test_entity_values_only_reports_set_columns():
    assert entity_values(Note, Note(body="x")) == {"body": "x"}
    assert entity_values(Note, {"body": "x", "unknown": 1, "id": 3}, exclude=["id"]) == {"body": "x"}


def test_relation_payload_becomes_foreign_key():
    group_id = uuid.uuid4()
    assert foreign_key_from_relation(Member, {"name": "a", "group": {"id": group_id}})["group_id"] == group_id
    explicit = uuid.uuid4()
    assert foreign_key_from_relation(Member, {"group": {"id": group_id}, "group_id": explicit})["group_id"] == explicit


def test_build_entity_coerces_uuid_strings():
    group_id = uuid.uuid4()
    member = build_entity(Member, {"name": "a", "group_id": str(group_id)})
    assert member.group_id == group_id
    assert build_entity(Member, member) is member
    with pytest.raises(TypeError):
        build_entity(Member, 42)


def test_coerce_value():
    ident = uuid.uuid4()
    assert coerce_value(Member.id, str(ident)) == ident
    assert coerce_value(Member.id, [str(ident)]) == [ident]
    assert coerce_value(Member.name, "x") == "x"
    with pytest.raises(ConfigurationError):
        coerce_value(Member.id, "nope")


def test_copy_entity_copies_loaded_relations_one_level():
    group = Group(id=uuid.uuid4(), name="core", tenant_id=uuid.uuid4())
    member = Member(id=uuid.uuid4(), name="ann", group=group)

    copy = copy_entity(member, clear_id=True)

    assert copy is not member
    assert copy.id is None
    assert copy.name == "ann"
    assert copy.group is not group
    assert copy.group.name == "core"
    assert copy.group.id == group.id


def test_error_messages():
    error = EntityNotFoundError("Member", {"id": uuid.UUID(int=1)})
    assert str(error) == 'Could not find an entity "Member" matching criteria: {"id": "00000000-0000-0000-0000-000000000001"}'
    missing = TenantContextMissingError("update", "Member")
    assert isinstance(missing, ConfigurationError)
    assert "update" in str(missing)


def test_tenant_context_binds_logging_context():
    context = TenantContext(tenant_id="t-1", correlation_id="c-1")
    record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", None, None)

    with context.bind():
        LoggingContextFilter().filter(record)
        assert tenant_id_var.get() == "t-1"
    assert (record.tenant_id, record.correlation_id) == ("t-1", "c-1")
    assert tenant_id_var.get() is None
    assert correlation_id_var.get() is None
    assert TenantContext.empty().current_tenant_id() is None


def test_database_url_resolution():
    settings = Settings(DATABASE_URL="postgresql://u:p@db:5432/app", _env_file=None)
    assert settings.async_database_url == "postgresql+asyncpg://u:p@db:5432/app"

    sqlite = Settings(DATABASE_URL="sqlite+aiosqlite:///:memory:", _env_file=None)
    assert sqlite.async_database_url == "sqlite+aiosqlite:///:memory:"


def test_repository_settings_from_environment(monkeypatch):
    monkeypatch.setenv("REPOSITORY_MAX_LIMIT", "0")
    monkeypatch.setenv("REPOSITORY_STRICT_RELATIONS", "true")
    settings = RepositorySettings(_env_file=None)
    assert settings.MAX_LIMIT is None
    assert settings.STRICT_RELATIONS is True


async def test_transaction_commits_and_rolls_back(session):
    async with transaction(session):
        session.add(Tag(name="kept"))

    with pytest.raises(RuntimeError):
        async with transaction(session):
            session.add(Tag(name="dropped"))
            await session.flush()
            raise RuntimeError("boom")

    names = list((await session.scalars(select(Tag.name))).all())
    assert names == ["kept"]


async def test_transaction_participates_in_caller_transaction(session):
    async with session.begin():
        assert in_caller_transaction(session)
        async with transaction(session):
            session.add(Tag(name="inner"))
        assert session.in_transaction()
    assert not session.in_transaction()
