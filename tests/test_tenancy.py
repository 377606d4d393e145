import uuid

import pytest

from tenant_query.core.context import TenantContext
from tenant_query.core.errors import ConfigurationError, EntityNotFoundError, TenantContextMissingError
from tenant_query.query.filters import QueryOptions

from .models import Member, Note, TenantGroupRepository, TenantMemberRepository


@pytest.fixture
def repo_for(session, settings):
    def build(context, cls=TenantMemberRepository):
        return cls(session, context, settings=settings)

    return build


async def test_create_stamps_tenant(repo_for, tenant_a):
    member = await repo_for(tenant_a).create({"name": "ann"})
    assert member.tenant_id == tenant_a.tenant_id


async def test_create_overrides_supplied_tenant(repo_for, tenant_a):
    member = await repo_for(tenant_a).create({"name": "ann", "tenant_id": uuid.uuid4()})
    assert member.tenant_id == tenant_a.tenant_id


async def test_create_without_tenant_is_rejected(repo_for):
    repository = repo_for(TenantContext.empty())
    with pytest.raises(TenantContextMissingError) as exc:
        await repository.create({"name": "ann"})
    assert exc.value.operation == "create"
    with pytest.raises(TenantContextMissingError):
        await repository.create_many([{"name": "ann"}])


async def test_string_tenant_ids_are_coerced(repo_for):
    tenant = uuid.uuid4()
    member = await repo_for(TenantContext(tenant_id=str(tenant))).create({"name": "ann"})
    assert member.tenant_id == tenant


async def test_invalid_tenant_id_is_a_configuration_error(repo_for):
    with pytest.raises(ConfigurationError):
        await repo_for(TenantContext(tenant_id="not-a-uuid")).create({"name": "ann"})


async def test_reads_are_scoped_to_the_tenant(repo_for, tenant_a, tenant_b):
    own = repo_for(tenant_a)
    other = repo_for(tenant_b)
    member = await own.create({"name": "ann"})
    await other.create({"name": "bob"})

    assert [m.name for m in await own.query()] == ["ann"]
    assert await own.count() == 1
    with pytest.raises(EntityNotFoundError):
        await other.find_one_or_fail(member.id)
    assert (await own.find_one_or_fail(member.id)).name == "ann"

    rows, count = await other.paginated_query(QueryOptions(limit=10))
    assert count == 1
    assert [m.name for m in rows] == ["bob"]


async def test_reads_without_tenant_are_rejected(repo_for):
    with pytest.raises(TenantContextMissingError):
        await repo_for(TenantContext.empty()).query()


async def test_updates_are_scoped_to_the_tenant(repo_for, tenant_a, tenant_b):
    member = await repo_for(tenant_a).create({"name": "ann"})
    member_id = member.id

    with pytest.raises(EntityNotFoundError):
        await repo_for(tenant_b).update({"id": member_id, "name": "stolen"})

    assert (await repo_for(tenant_a).find_one_or_fail(member_id)).name == "ann"


async def test_update_keeps_tenant_column(repo_for, tenant_a):
    member = await repo_for(tenant_a).create({"name": "ann"})
    updated = await repo_for(tenant_a).update({"id": member.id, "name": "anna", "tenant_id": uuid.uuid4()})
    assert updated.tenant_id == tenant_a.tenant_id
    assert updated.name == "anna"


async def test_update_all_only_touches_own_rows(repo_for, tenant_a, tenant_b):
    await repo_for(tenant_a).create({"name": "ann", "age": 1})
    await repo_for(tenant_b).create({"name": "bob", "age": 1})

    updated = await repo_for(tenant_a).update_all({"age": 2}, where=[Member.age == 1])

    assert [m.name for m in updated] == ["ann"]
    assert (await repo_for(tenant_b).query())[0].age == 1


async def test_deletes_are_scoped_to_the_tenant(repo_for, tenant_a, tenant_b):
    member = await repo_for(tenant_a).create({"name": "ann"})

    with pytest.raises(EntityNotFoundError):
        await repo_for(tenant_b).delete(member.id)
    assert await repo_for(tenant_b).delete(member.id, strict=False) == 0
    assert await repo_for(tenant_a).delete(member.id) == 1


async def test_delete_without_tenant_is_rejected(repo_for, tenant_a):
    member = await repo_for(tenant_a).create({"name": "ann"})
    with pytest.raises(TenantContextMissingError):
        await repo_for(TenantContext.empty()).delete(member.id)


class OptionalFindMemberRepository(TenantMemberRepository):
    tenancy_for_find_is_optional = True


class SkipFindMemberRepository(TenantMemberRepository):
    skip_tenancy_for_find = True


async def test_optional_find_tenancy(repo_for, tenant_a, tenant_b):
    await repo_for(tenant_a).create({"name": "ann"})
    await repo_for(tenant_b).create({"name": "bob"})

    unscoped = repo_for(TenantContext.empty(), OptionalFindMemberRepository)
    scoped = repo_for(tenant_b, OptionalFindMemberRepository)

    assert [m.name for m in await unscoped.query()] == ["ann", "bob"]
    assert [m.name for m in await scoped.query()] == ["bob"]


async def test_skip_find_tenancy(repo_for, tenant_a, tenant_b):
    await repo_for(tenant_a).create({"name": "ann"})
    await repo_for(tenant_b).create({"name": "bob"})

    assert len(await repo_for(tenant_a, SkipFindMemberRepository).query()) == 2


async def test_tenant_scope_applies_to_included_relations_root(repo_for, tenant_a, tenant_b):
    group = await repo_for(tenant_a, TenantGroupRepository).create({"name": "core"})
    await repo_for(tenant_a).create({"name": "ann", "group_id": group.id})

    assert len(await repo_for(tenant_b, TenantGroupRepository).query(QueryOptions(include=["members"]))) == 0
    rows = await repo_for(tenant_a, TenantGroupRepository).query(QueryOptions(include=["members"]))
    assert [m.name for m in rows[0].members] == ["ann"]


async def test_find_or_create_is_tenant_scoped(repo_for, tenant_a, tenant_b):
    first, created = await repo_for(tenant_a).find_or_create({}, {"name": "ann"})
    same, created_again = await repo_for(tenant_a).find_or_create({}, {"name": "ann"})
    other, created_other = await repo_for(tenant_b).find_or_create({}, {"name": "ann"})

    assert (created, created_again, created_other) == (True, False, True)
    assert same.id == first.id
    assert other.id != first.id


async def test_with_context_rebinds(repo_for, tenant_a, tenant_b):
    repository = repo_for(tenant_a)
    rebound = repository.with_context(tenant_b)
    assert rebound.context is tenant_b
    assert type(rebound) is TenantMemberRepository


async def test_model_without_tenant_column_is_rejected(session, settings):
    with pytest.raises(ConfigurationError):
        TenantMemberRepository(session, TenantContext.empty(), Note, settings=settings)


class SkipSaveMemberRepository(TenantMemberRepository):
    skip_tenancy_for_save = True


class SkipUpdateMemberRepository(TenantMemberRepository):
    skip_tenancy_for_update = True


class SkipDestroyMemberRepository(TenantMemberRepository):
    skip_tenancy_for_destroy = True


class OptionalUpdateMemberRepository(TenantMemberRepository):
    tenancy_for_update_is_optional = True


class OptionalEverythingMemberRepository(TenantMemberRepository):
    tenancy_for_update_is_optional = True
    tenancy_for_find_is_optional = True


async def test_skip_save_tenancy_keeps_supplied_tenant(repo_for, tenant_a, tenant_b):
    unscoped = await repo_for(TenantContext.empty(), SkipSaveMemberRepository).create(
        {"name": "ann", "tenant_id": tenant_a.tenant_id}
    )
    assert unscoped.tenant_id == tenant_a.tenant_id

    scoped = await repo_for(tenant_b, SkipSaveMemberRepository).create(
        {"name": "bob", "tenant_id": tenant_a.tenant_id}
    )
    assert scoped.tenant_id == tenant_a.tenant_id


async def test_optional_update_tenancy_without_tenant(repo_for, tenant_a):
    member = await repo_for(tenant_a).create({"name": "ann"})
    member_id = member.id

    updated = await repo_for(TenantContext.empty(), OptionalUpdateMemberRepository).update(
        {"id": member_id, "name": "anna", "tenant_id": uuid.uuid4()}
    )

    assert updated.name == "anna"
    assert updated.tenant_id == tenant_a.tenant_id


async def test_optional_update_tenancy_still_scopes_a_present_tenant(repo_for, tenant_a, tenant_b):
    member = await repo_for(tenant_a).create({"name": "ann"})
    member_id = member.id

    with pytest.raises(EntityNotFoundError):
        await repo_for(tenant_b, OptionalUpdateMemberRepository).update({"id": member_id, "name": "stolen"})
    assert (await repo_for(tenant_a).find_one_or_fail(member_id)).name == "ann"


async def test_skip_update_tenancy_crosses_tenants(repo_for, tenant_a, tenant_b):
    member = await repo_for(tenant_a).create({"name": "ann"})

    updated = await repo_for(tenant_b, SkipUpdateMemberRepository).update({"id": member.id, "name": "anna"})

    assert updated.name == "anna"
    assert updated.tenant_id == tenant_a.tenant_id


async def test_skip_destroy_tenancy_crosses_tenants(repo_for, tenant_a, tenant_b):
    first = await repo_for(tenant_a).create({"name": "ann"})
    second = await repo_for(tenant_a).create({"name": "bob"})

    assert await repo_for(tenant_b, SkipDestroyMemberRepository).delete(first.id) == 1
    assert await repo_for(TenantContext.empty(), SkipDestroyMemberRepository).delete(second.id) == 1
    assert await repo_for(tenant_a).query() == []


async def test_create_and_delete_cannot_be_made_optional(repo_for, tenant_a):
    member = await repo_for(tenant_a).create({"name": "ann"})
    member_id = member.id
    repository = repo_for(TenantContext.empty(), OptionalEverythingMemberRepository)

    with pytest.raises(TenantContextMissingError):
        await repository.create({"name": "bob"})
    with pytest.raises(TenantContextMissingError):
        await repository.delete(member_id)


async def test_update_many_is_scoped_to_the_tenant(repo_for, tenant_a, tenant_b):
    member = await repo_for(tenant_a).create({"name": "ann"})
    member_id = member.id

    with pytest.raises(EntityNotFoundError):
        await repo_for(tenant_b).update_many([{"id": member_id, "name": "stolen"}])
    assert (await repo_for(tenant_a).find_one_or_fail(member_id)).name == "ann"


async def test_delete_many_is_scoped_to_the_tenant(repo_for, tenant_a, tenant_b):
    member = await repo_for(tenant_a).create({"name": "ann"})
    member_id = member.id

    with pytest.raises(EntityNotFoundError):
        await repo_for(tenant_b).delete_many([member_id])
    assert await repo_for(tenant_b).delete_many([member_id], strict=False) == 0
    assert (await repo_for(tenant_a).find_one_or_fail(member_id)).name == "ann"
