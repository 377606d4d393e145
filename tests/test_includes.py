import pytest

from tenant_query.core.errors import ConfigurationError
from tenant_query.query.includes import IncludeResolver, Relation, group_select, normalize_include

from .models import Group, Member, User


def test_group_select_groups_columns_by_relation_path():
    assert group_select(["id", "name", "group.name", "group.owner.email"]) == {
        "_": ["id", "name"],
        "group": ["name"],
        "group.owner": ["email"],
    }
    assert group_select(None) == {}


def test_group_select_rejects_three_levels():
    with pytest.raises(ConfigurationError):
        group_select(["group.owner.team.name"])


def test_normalize_include_map_form_carries_required_flags():
    paths, required = normalize_include({"group": {"required": True, "nested": ["owner"]}, "notes": False})
    assert paths == ["group", "group.owner", "notes"]
    assert required == {"group": True, "notes": False}


def test_resolver_builds_two_level_tree_with_aliases():
    resolver = IncludeResolver(Member, {"group": {"owner": None}})
    nodes = resolver.resolve(["group", "group.owner"], {"group": ["name"]})

    assert len(nodes) == 1
    group = nodes[0]
    assert group.target is Group
    assert group.uselist is False
    assert group.columns == ["name"]
    assert group.children[0].target is User
    assert group.children[0].path == "group.owner"
    assert group.children[0].eager is True


def test_nested_path_alone_adds_its_parent():
    nodes = IncludeResolver(Member, {"group": {"owner": None}}).resolve(["group.owner"])
    assert nodes[0].path == "group"
    assert nodes[0].children[0].path == "group.owner"


def test_relation_attribute_can_differ_from_declared_name():
    nodes = IncludeResolver(Group, {"people": Relation(attribute="members")}).resolve(["people"])
    assert nodes[0].target is Member
    assert nodes[0].uselist is True


def test_undeclared_relations_are_skipped_unless_strict():
    assert IncludeResolver(Member, {}).resolve(["group"]) == []
    with pytest.raises(ConfigurationError):
        IncludeResolver(Member, {}, strict=True).resolve(["group"])


def test_include_depth_is_limited_to_two_levels():
    resolver = IncludeResolver(Member, {"group": {"owner": {"teams": None}}})
    with pytest.raises(ConfigurationError):
        resolver.resolve(["group.owner.teams"])


def test_declared_relation_missing_on_model_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        IncludeResolver(Member, {"team": None}).resolve(["team"])


def test_resolved_relations_keep_requested_order():
    resolver = IncludeResolver(Group, {"members": None, "owner": None, "notes": None})
    assert [n.path for n in resolver.resolve(["owner", "notes", "members"])] == ["owner", "notes", "members"]
    assert [n.path for n in resolver.resolve({"notes": False, "owner": True})] == ["notes", "owner"]
