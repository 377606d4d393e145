"""
Statement builder: turns FindOptions/QueryOptions/CountOptions into SELECT
statements over a mapped model, using the where compiler and include resolver.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type

from sqlalchemy import Select, distinct, func, inspect, select
from sqlalchemy.orm import contains_eager, load_only
from sqlalchemy.sql.elements import ColumnElement

from tenant_query.core.errors import ConfigurationError
from .filters import CountOptions, FilterMatrix, FindOptions, QueryOptions, SortDirection
from .includes import ROOT, IncludeResolver, JoinNode, group_select, walk
from .where import WhereCompiler

logger = logging.getLogger(__name__)

OrderSpec = Sequence[Tuple[str, str]]


def _soft_deletable(model: Any) -> bool:
    return "deleted_at" in inspect(model).mapper.column_attrs


@dataclass
class JoinPlan:
    """Join tree for one statement plus the helpers resolving dotted columns against it."""

    builder: "SelectBuilder"
    nodes: List[JoinNode] = field(default_factory=list)

    @property
    def has_joins(self) -> bool:
        return bool(self.nodes)

    @property
    def fans_out(self) -> bool:
        """True when a joined collection can repeat root rows."""
        return any(node.uselist for node in walk(self.nodes))

    def node_for(self, relation_path: str) -> Optional[JoinNode]:
        return self.builder.resolver.ensure(self.nodes, relation_path)

    # PUBLIC_INTERFACE
    def resolve_column(self, path: str) -> ColumnElement[Any]:
        """Resolve "name" against the root model and "rel.name" against the join alias."""
        if "." not in path:
            return self.builder.root_column(path)
        relation_path, column = path.rsplit(".", 1)
        node = self.node_for(relation_path)
        if node is None:
            raise ConfigurationError(
                f"Column {path!r} references an undeclared relation of {self.builder.model.__name__}"
            )
        return _entity_column(node.alias, node.target, column, path)


def _entity_column(entity: Any, model: Type[Any], column: str, path: str) -> ColumnElement[Any]:
    if column not in inspect(model).column_attrs:
        raise ConfigurationError(f"Unknown column {path!r}")
    return getattr(entity, column)


class SelectBuilder:
    """Build SELECT statements for one model and its relation declarations."""

    def __init__(
        self,
        model: Type[Any],
        resolver: IncludeResolver,
        default_order: OrderSpec = (),
    ) -> None:
        self.model = model
        self.resolver = resolver
        self.default_order = list(default_order)
        mapper = inspect(model)
        self.primary_key = getattr(model, mapper.get_property_by_column(mapper.primary_key[0]).key)

    def root_column(self, name: str) -> ColumnElement[Any]:
        return _entity_column(self.model, self.model, name, name)

    # PUBLIC_INTERFACE
    def plan(self, options: FindOptions | CountOptions | None) -> Tuple[JoinPlan, Dict[str, List[str]]]:
        """Resolve includes and projections of options into a join plan."""
        select_paths = getattr(options, "select", None) if options is not None else None
        projections = group_select(select_paths)
        include = options.include if options is not None else None
        nodes = self.resolver.resolve(include, {k: v for k, v in projections.items() if k != ROOT})
        return JoinPlan(self, nodes), projections

    # PUBLIC_INTERFACE
    def where(self, plan: JoinPlan, matrix: FilterMatrix | None) -> ColumnElement[bool]:
        return WhereCompiler(plan.resolve_column).compile(matrix)

    # PUBLIC_INTERFACE
    def order_by(self, plan: JoinPlan, sort: Optional[Dict[str, Any]]) -> List[Tuple[ColumnElement[Any], SortDirection]]:
        """
        Ordering expressions for sort, falling back to the default order.

        Dotted paths naming undeclared relations are ignored.
        """
        items: List[Tuple[str, Any]] = list(sort.items()) if sort else list(self.default_order)
        ordering: List[Tuple[ColumnElement[Any], SortDirection]] = []
        for path, direction in items:
            try:
                direction = SortDirection(str(getattr(direction, "value", direction)).upper())
            except ValueError:
                raise ConfigurationError(f"Invalid sort direction {direction!r} for {path!r}") from None
            if "." in path:
                relation_path, column = path.rsplit(".", 1)
                node = plan.node_for(relation_path)
                if node is None:
                    logger.warning("Ignoring sort on undeclared relation path %r", path)
                    continue
                expr = _entity_column(node.alias, node.target, column, path)
            else:
                expr = self.root_column(path)
            ordering.append((expr, direction))
        return ordering

    def visibility(self, plan: JoinPlan, include_deleted: bool) -> List[ColumnElement[bool]]:
        if include_deleted or not _soft_deletable(self.model):
            return []
        return [self.model.deleted_at.is_(None)]

    def apply_joins(self, stmt: Select, plan: JoinPlan, include_deleted: bool) -> Select:
        for node in walk(plan.nodes):
            target = node.attribute.of_type(node.alias)
            if not include_deleted and _soft_deletable(node.target):
                target = target.and_(node.alias.deleted_at.is_(None))
            stmt = stmt.join(target, isouter=not node.required)
        return stmt

    def loader_options(self, plan: JoinPlan, projections: Dict[str, List[str]]) -> List[Any]:
        options: List[Any] = []
        root_columns = projections.get(ROOT)
        if root_columns:
            options.append(load_only(*[self.root_column(c) for c in root_columns]))

        def visit(nodes: List[JoinNode], parent_loader: Any) -> None:
            for node in nodes:
                if not node.eager:
                    continue
                path_attr = node.attribute.of_type(node.alias)
                loader = parent_loader.contains_eager(path_attr) if parent_loader is not None else contains_eager(path_attr)
                if node.columns:
                    cols = [_entity_column(node.alias, node.target, c, f"{node.path}.{c}") for c in node.columns]
                    options.append(loader.load_only(*cols))
                else:
                    options.append(loader)
                visit(node.children, loader)

        visit(plan.nodes, None)
        return options

    # PUBLIC_INTERFACE
    def build_select(
        self,
        options: FindOptions | QueryOptions | None,
        criteria: Sequence[ColumnElement[bool]] = (),
        *,
        max_limit: Optional[int] = None,
    ) -> Tuple[Select, Optional[Select]]:
        """
        Build the row SELECT for options.

        Returns (statement, page_ids). page_ids is set when pagination has to be
        applied to distinct root rows first because a joined collection would
        otherwise repeat root rows; the caller resolves it and restricts the
        statement to the returned ids.
        """
        options = options or QueryOptions()
        plan, projections = self.plan(options)
        matrix = getattr(options, "where", None)
        predicate = self.where(plan, matrix)
        ordering = self.order_by(plan, options.sort)
        filters = [predicate, *criteria, *self.visibility(plan, options.include_deleted)]

        stmt = self.apply_joins(select(self.model), plan, options.include_deleted)
        stmt = stmt.where(*filters).options(*self.loader_options(plan, projections))
        stmt = stmt.order_by(*[e.asc() if d is SortDirection.ASC else e.desc() for e, d in ordering])

        limit, offset = _pagination(options, max_limit)
        if limit is None:
            return stmt, None
        if not plan.fans_out:
            return stmt.limit(limit).offset(offset), None

        ids = self.apply_joins(select(self.primary_key), plan, options.include_deleted)
        ids = ids.where(*filters).group_by(self.primary_key)
        ids = ids.order_by(
            *[func.min(e).asc() if d is SortDirection.ASC else func.max(e).desc() for e, d in ordering]
        )
        return stmt, ids.limit(limit).offset(offset)

    # PUBLIC_INTERFACE
    def build_count(
        self,
        options: FindOptions | QueryOptions | None,
        criteria: Sequence[ColumnElement[bool]] = (),
    ) -> Select:
        """Count root rows matching options, ignoring pagination; distinct when joined."""
        options = options or QueryOptions()
        plan, _ = self.plan(options)
        predicate = self.where(plan, getattr(options, "where", None))
        filters = [predicate, *criteria, *self.visibility(plan, options.include_deleted)]
        if plan.has_joins:
            stmt = select(func.count(distinct(self.primary_key))).select_from(self.model)
        else:
            stmt = select(func.count()).select_from(self.model)
        return self.apply_joins(stmt, plan, options.include_deleted).where(*filters)

    # PUBLIC_INTERFACE
    def build_aggregate(
        self, options: CountOptions, criteria: Sequence[ColumnElement[bool]] = ()
    ) -> Tuple[Select, List[ColumnElement[Any]]]:
        """
        COUNT(col) with optional DISTINCT and GROUP BY. Unqualified group columns
        are qualified with the root model; dotted ones resolve against joins.
        """
        plan, _ = self.plan(options)
        predicate = self.where(plan, options.where)
        target = plan.resolve_column(options.col) if options.col else self.primary_key
        counted = func.count(distinct(target)) if options.distinct else func.count(target)
        group_columns = [plan.resolve_column(c) for c in options.group_columns]

        stmt = select(*group_columns, counted.label("count")).select_from(self.model)
        stmt = self.apply_joins(stmt, plan, options.include_deleted)
        stmt = stmt.where(predicate, *criteria, *self.visibility(plan, options.include_deleted))
        if group_columns:
            stmt = stmt.group_by(*group_columns)
        return stmt, group_columns


def _pagination(options: Any, max_limit: Optional[int]) -> Tuple[Optional[int], int]:
    limit = getattr(options, "limit", None)
    if not limit:
        return None, 0
    if max_limit is not None:
        limit = min(limit, max_limit)
    page = getattr(options, "page", None)
    page = page if page and page > 0 else 1
    return limit, (page - 1) * limit
