"""
Include/projection resolver.

Expands relation paths ("group", "group.owner") into a join tree bounded to two
levels, attaching per-relation column projections and inner/outer join
semantics. Relations must be declared on the repository; the declaration is
the only source used to resolve include paths.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple, Type, Union

from sqlalchemy import inspect
from sqlalchemy.orm import aliased
from sqlalchemy.orm.util import AliasedClass

from tenant_query.core.errors import ConfigurationError
from .filters import IncludeSetting, IncludeSpec

logger = logging.getLogger(__name__)

MAX_DEPTH = 2
ROOT = "_"


@dataclass(frozen=True)
class Relation:
    """
    Declaration of an includable relation.

    attribute: relationship attribute on the parent model (defaults to the key
    the relation is declared under).
    nested: relations of the target model that may be included one level deeper.
    """

    attribute: Optional[str] = None
    nested: Mapping[str, "RelationDeclaration"] = field(default_factory=dict)


RelationDeclaration = Union[Relation, Mapping[str, Any], None]
Relations = Mapping[str, RelationDeclaration]


def as_relation(declaration: RelationDeclaration) -> Relation:
    """Accept `Relation`, a bare nested mapping, or None (plain relation)."""
    if declaration is None:
        return Relation()
    if isinstance(declaration, Relation):
        return declaration
    return Relation(nested=dict(declaration))


@dataclass
class JoinNode:
    """One relation of the join tree, joined through its own alias."""

    path: str
    name: str
    parent: Any
    target: Type[Any]
    alias: AliasedClass
    uselist: bool
    required: bool = False
    columns: Optional[List[str]] = None
    eager: bool = True
    children: List["JoinNode"] = field(default_factory=list)

    @property
    def attribute(self):
        """Relationship attribute on the parent entity (root model or parent alias)."""
        return getattr(self.parent, self.name)


# PUBLIC_INTERFACE
def group_select(select: Optional[List[str]]) -> Dict[str, List[str]]:
    """
    Group selected column paths by relation path.

    "name" -> {"_": ["name"]}, "group.name" -> {"group": ["name"]},
    "group.owner.email" -> {"group.owner": ["email"]}. Deeper paths are rejected.
    """
    if not select:
        return {}
    groups: Dict[str, List[str]] = {ROOT: []}
    for item in select:
        parts = item.split(".")
        if len(parts) > MAX_DEPTH + 1:
            raise ConfigurationError(
                f"Column selection is limited to {MAX_DEPTH} nested levels: {item!r}"
            )
        prefix = ".".join(parts[:-1]) or ROOT
        groups.setdefault(prefix, []).append(parts[-1])
    return groups


# PUBLIC_INTERFACE
def normalize_include(include: Optional[IncludeSpec]) -> Tuple[List[str], Dict[str, bool]]:
    """
    Flatten an include spec into ordered relation paths and required flags.

    List form: ["group", "group.owner"]. Map form: {"group": true} (value is the
    required flag) or {"group": {"required": true, "nested": ["owner"]}}.
    """
    if not include:
        return [], {}
    if isinstance(include, (list, tuple)):
        return [str(p) for p in include], {}

    paths: List[str] = []
    required: Dict[str, bool] = {}
    for key, setting in include.items():
        paths.append(key)
        if isinstance(setting, Mapping):
            setting = IncludeSetting.model_validate(setting)
        if isinstance(setting, IncludeSetting):
            required[key] = setting.required
            nested_paths, nested_required = normalize_include(setting.nested)
            paths.extend(f"{key}.{p}" for p in nested_paths)
            required.update({f"{key}.{p}": flag for p, flag in nested_required.items()})
        else:
            required[key] = bool(setting)
    return paths, required


class IncludeResolver:
    """Resolve include specs against a model's relation declarations."""

    def __init__(self, model: Type[Any], relations: Relations, *, strict: bool = False) -> None:
        self.model = model
        self.relations = {name: as_relation(decl) for name, decl in (relations or {}).items()}
        self.strict = strict

    # PUBLIC_INTERFACE
    def resolve(
        self,
        include: Optional[IncludeSpec],
        projections: Optional[Mapping[str, List[str]]] = None,
        required: Optional[Mapping[str, bool]] = None,
    ) -> List[JoinNode]:
        """
        Build the join tree for include, preserving the order relation names
        appear in. Undeclared relations are skipped (or rejected when strict).
        """
        paths, flags = normalize_include(include)
        flags = {**flags, **(required or {})}
        nodes: List[JoinNode] = []
        for path in paths:
            self.ensure(nodes, path, projections or {}, flags, eager=True)
        return nodes

    def ensure(
        self,
        nodes: List[JoinNode],
        path: str,
        projections: Mapping[str, List[str]] | None = None,
        flags: Mapping[str, bool] | None = None,
        *,
        eager: bool = False,
    ) -> Optional[JoinNode]:
        """
        Return the node for path, adding it (and its parent) to nodes when absent.
        Returns None when the path names an undeclared relation.
        """
        parts = path.split(".")
        if len(parts) > MAX_DEPTH:
            raise ConfigurationError(
                f"Include path {path!r} is deeper than {MAX_DEPTH} levels"
            )
        projections = projections or {}
        flags = flags or {}

        relations = self.relations
        parent: Any = self.model
        siblings = nodes
        node: Optional[JoinNode] = None
        for depth, name in enumerate(parts):
            sub_path = ".".join(parts[: depth + 1])
            declaration = relations.get(name)
            if declaration is None:
                self._unknown(sub_path)
                return None

            node = next((n for n in siblings if n.path == sub_path), None)
            if node is None:
                node = self._build_node(parent, name, declaration, sub_path)
                node.eager = False
                siblings.append(node)
            # Only the addressed path (and its ancestors) become eager loads.
            if eager:
                node.eager = True
            if sub_path in projections:
                node.columns = list(projections[sub_path])
            if flags.get(sub_path):
                node.required = True

            relations = {k: as_relation(v) for k, v in declaration.nested.items()}
            parent = node.alias
            siblings = node.children
        return node

    def _build_node(self, parent: Any, name: str, declaration: Relation, path: str) -> JoinNode:
        attribute = declaration.attribute or name
        parent_mapper = inspect(parent).mapper
        prop = parent_mapper.relationships.get(attribute)
        if prop is None:
            raise ConfigurationError(
                f"Relation {path!r} is declared but {parent_mapper.class_.__name__} "
                f"has no relationship {attribute!r}"
            )
        target = prop.mapper.class_
        return JoinNode(
            path=path,
            name=attribute,
            parent=parent,
            target=target,
            alias=aliased(target, name=path.replace(".", "__")),
            uselist=prop.uselist,
        )

    def _unknown(self, path: str) -> None:
        if self.strict:
            raise ConfigurationError(f"Unknown relation {path!r} for {self.model.__name__}")
        logger.warning("Skipping undeclared relation %r for %s", path, self.model.__name__)


def walk(nodes: List[JoinNode]):
    """Yield nodes depth-first, parents before children."""
    for node in nodes:
        yield node
        yield from walk(node.children)
