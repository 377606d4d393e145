from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import (
    Any,
    Dict,
    Generic,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Type,
    TypeVar,
    Union,
)

from sqlalchemy import Executable, delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from tenant_query.core.errors import ConfigurationError, EntityNotFoundError
from tenant_query.core.settings import RepositorySettings, get_repository_settings
from tenant_query.db.base import utcnow
from tenant_query.db.mapping import (
    build_entity,
    coerce_value,
    entity_values,
    has_column,
    primary_key_name,
    resolve_identifier,
)
from tenant_query.db.session import transaction
from tenant_query.query.builder import OrderSpec, SelectBuilder
from tenant_query.query.filters import CountOptions, FilterMatrix, FindOptions, QueryOptions
from tenant_query.query.includes import IncludeResolver, Relations

logger = logging.getLogger(__name__)

T = TypeVar("T")

Criteria = Sequence[ColumnElement[bool]]
EntityInput = Union[T, Mapping[str, Any]]

# Columns an update never writes from the payload.
_IMMUTABLE_COLUMNS = ("created_at", "deleted_at")


@dataclass
class PaginatedResult(Generic[T]):
    """One page of rows plus the total number of matching root rows."""

    rows: List[T]
    count: int

    def __iter__(self):
        return iter((self.rows, self.count))


class BaseRepository(Generic[T]):
    """
    Generic CRUD/query repository for one mapped model.

    Subclasses set `model` and may declare `relations` (includable relations),
    `default_order` (used when a query has no sort) and `identifier_field`.
    Every mutation runs inside one transaction (see db.session.transaction) and
    goes through the before/after hooks below, which subclasses override to
    stamp or scope rows. Soft-deletable models (deleted_at column) are
    soft-deleted and hidden from reads unless include_deleted is set.
    """

    model: Type[T]
    relations: Relations = {}
    default_order: OrderSpec = ()
    identifier_field: str = "id"

    def __init__(
        self,
        session: AsyncSession,
        model: Optional[Type[T]] = None,
        *,
        settings: Optional[RepositorySettings] = None,
    ) -> None:
        self.session = session
        if model is not None:
            self.model = model
        if getattr(self, "model", None) is None:
            raise ConfigurationError(f"{type(self).__name__} has no model configured")
        self.settings = settings or get_repository_settings()
        self.resolver = IncludeResolver(
            self.model, self.relations, strict=self.settings.STRICT_RELATIONS
        )
        self.builder = SelectBuilder(self.model, self.resolver, self.default_order)
        self.primary_key = getattr(self.model, primary_key_name(self.model))
        self.soft_delete = has_column(self.model, "deleted_at")

    @property
    def entity_name(self) -> str:
        return self.model.__name__

    # Low-level helpers

    async def execute(self, statement: Executable, params: Optional[dict[str, Any]] = None):
        """Execute a SQLAlchemy statement."""
        if self.settings.LOG_QUERIES:
            logger.debug("Executing %s", statement)
        return await self.session.execute(statement, params or {})

    async def scalars(self, statement: Executable, params: Optional[dict[str, Any]] = None):
        """Execute and return scalars."""
        result = await self.execute(statement, params)
        return result.scalars()

    async def scalar_one_or_none(self, statement: Executable, params: Optional[dict[str, Any]] = None):
        """Execute and return a single scalar or None."""
        result = await self.execute(statement, params)
        return result.scalar_one_or_none()

    # Hooks. Async hooks may transform their input; *_model hooks are applied
    # to every row written, including the rows of bulk operations.

    async def before_create(self, entity: EntityInput) -> EntityInput:
        return entity

    def before_create_model(self, instance: T) -> T:
        return instance

    async def after_create_commit(self, instance: T) -> T:
        return instance

    async def before_find_or_create(self, entity: EntityInput, match: Mapping[str, Any]) -> EntityInput:
        return entity

    async def after_find_or_create_commit(self, result: Tuple[T, bool]) -> Tuple[T, bool]:
        return result

    async def before_create_many(self, entities: List[EntityInput]) -> List[EntityInput]:
        return entities

    async def after_create_many_commit(self, instances: List[T]) -> List[T]:
        return instances

    async def before_update(self, entity: EntityInput, where: Optional[Criteria]) -> EntityInput:
        return entity

    def before_update_model(self, values: Dict[str, Any], criteria: Criteria) -> Dict[str, Any]:
        return values

    async def after_update_commit(self, instance: T) -> T:
        return instance

    async def before_update_all(self, values: EntityInput, where: Optional[Criteria]) -> EntityInput:
        return values

    async def after_update_all_commit(self, instances: List[T]) -> List[T]:
        return instances

    async def before_update_many(self, entities: List[EntityInput], where: Optional[Criteria]) -> List[EntityInput]:
        return entities

    async def after_update_many_commit(self, instances: List[T]) -> List[T]:
        return instances

    async def before_delete(self, entity: Any, where: Optional[Criteria]) -> Any:
        return entity

    def before_delete_model(self, criteria: List[ColumnElement[bool]]) -> List[ColumnElement[bool]]:
        return criteria

    async def after_delete_commit(self, count: int) -> int:
        return count

    async def before_delete_many(self, entities: List[Any], where: Optional[Criteria]) -> List[Any]:
        return entities

    async def after_delete_many_commit(self, count: int) -> int:
        return count

    # Scopes: extra predicates ANDed into every statement of the kind.

    def fetch_scope(self) -> List[ColumnElement[bool]]:
        return []

    def update_scope(self) -> List[ColumnElement[bool]]:
        return []

    def delete_scope(self) -> List[ColumnElement[bool]]:
        return []

    # Create

    # PUBLIC_INTERFACE
    async def create(self, entity: EntityInput) -> T:
        """Insert one row and return the persisted instance."""
        entity = await self.before_create(entity)
        instance = self.before_create_model(build_entity(self.model, entity))
        async with transaction(self.session):
            self.session.add(instance)
            await self.session.flush()
        logger.info("Created %s %s", self.entity_name, resolve_identifier(instance, self.identifier_field))
        return await self.after_create_commit(instance)

    # PUBLIC_INTERFACE
    async def create_many(self, entities: Iterable[EntityInput]) -> List[T]:
        """Insert all entities in one transaction; any failure rolls back all of them."""
        entities = await self.before_create_many(list(entities))
        instances = [self.before_create_model(build_entity(self.model, e)) for e in entities]
        if instances:
            async with transaction(self.session):
                self.session.add_all(instances)
                await self.session.flush()
            logger.info("Created %d %s rows", len(instances), self.entity_name)
        return await self.after_create_many_commit(instances)

    # PUBLIC_INTERFACE
    async def find_or_create(
        self,
        entity: EntityInput,
        match: Mapping[str, Any],
        *,
        fast: Optional[bool] = None,
    ) -> Tuple[T, bool]:
        """
        Return (row, created) for the row matching every column of match,
        inserting entity (with match applied on top) when none exists.

        fast=True: find, insert when missing, find again if the insert lost a
        race on a unique constraint. fast=False: INSERT ... ON CONFLICT DO
        NOTHING on the match columns followed by a find; the match columns must
        carry a unique constraint.
        """
        if not match:
            raise ConfigurationError("find_or_create requires at least one match column")
        for column in match:
            if not has_column(self.model, column):
                raise ConfigurationError(f"Unknown match column {column!r} for {self.entity_name}")
        fast = self.settings.FIND_OR_CREATE_FAST if fast is None else fast

        entity = await self.before_find_or_create(entity, match)
        values = {**entity_values(self.model, entity), **match}
        instance = self.before_create_model(build_entity(self.model, values))
        criteria = [self._matches(k, v) for k, v in match.items()]
        criteria.extend(self.fetch_scope())

        if fast:
            result = await self._find_create_find(instance, criteria)
        else:
            result = await self._insert_ignore_find(instance, list(match), criteria)
        return await self.after_find_or_create_commit(result)

    async def _find_create_find(self, instance: T, criteria: Criteria) -> Tuple[T, bool]:
        async with transaction(self.session):
            existing = await self._first(None, criteria)
            if existing is not None:
                return existing, False
            try:
                async with self.session.begin_nested():
                    self.session.add(instance)
                    await self.session.flush()
            except IntegrityError:
                logger.info("Concurrent insert of %s detected; re-reading", self.entity_name)
                existing = await self._first(None, criteria)
                if existing is None:
                    raise
                return existing, False
        return instance, True

    async def _insert_ignore_find(
        self, instance: T, conflict_columns: List[str], criteria: Criteria
    ) -> Tuple[T, bool]:
        values = entity_values(self.model, instance)
        stmt = _insert_ignore(self.session, self.model, values, conflict_columns)
        async with transaction(self.session):
            result = await self.execute(stmt)
            found = await self._first(None, criteria)
        if found is None:
            raise EntityNotFoundError(self.entity_name, {k: str(v) for k, v in values.items()})
        return found, bool(result.rowcount)

    # Update

    # PUBLIC_INTERFACE
    async def update(
        self,
        entity: EntityInput,
        where: Optional[Criteria] = None,
        *,
        identifier_field: Optional[str] = None,
        refetch: Optional[bool] = None,
    ) -> T:
        """
        Update the row identified by entity's identifier (or matched by where)
        with the column values entity carries, and return the updated row.
        """
        entity = await self.before_update(entity, where)
        field = self.identifier_field if identifier_field is None else identifier_field
        if not field:
            raise ConfigurationError("Model identifier field cannot be empty")
        identifier = _identifier_of(entity, field)
        if identifier is None:
            raise EntityNotFoundError(self.entity_name, "Undefined identifier")
        criteria = list(where) if where else [self._matches(field, identifier)]

        async with transaction(self.session):
            rows = await self._update_rows(entity, criteria, refetch)
        if not rows:
            raise EntityNotFoundError(self.entity_name, identifier)
        logger.info("Updated %s %s", self.entity_name, identifier)
        return await self.after_update_commit(rows[0])

    # PUBLIC_INTERFACE
    async def update_many(
        self,
        entities: Iterable[EntityInput],
        where: Optional[Criteria] = None,
        *,
        refetch: Optional[bool] = None,
    ) -> List[T]:
        """
        Update each entity by its identifier inside one transaction; a missing
        identifier or a row that no longer matches rolls back the whole batch.
        where, when given, is ANDed to every row's identifier predicate.
        """
        entities = await self.before_update_many(list(entities), where)
        updated: List[T] = []
        async with transaction(self.session):
            for entity in entities:
                identifier = _identifier_of(entity, self.identifier_field)
                if identifier is None:
                    raise EntityNotFoundError(self.entity_name, "Undefined identifier")
                criteria = [self._matches(self.identifier_field, identifier), *(where or [])]
                rows = await self._update_rows(entity, criteria, refetch)
                if not rows:
                    raise EntityNotFoundError(self.entity_name, identifier)
                updated.extend(rows)
        logger.info("Updated %d %s rows", len(updated), self.entity_name)
        return await self.after_update_many_commit(updated)

    # PUBLIC_INTERFACE
    async def update_all(
        self,
        values: EntityInput,
        where: Optional[Criteria] = None,
        *,
        refetch: Optional[bool] = None,
    ) -> List[T]:
        """
        Apply values to every row matching where and return the updated rows.

        Rows are updated one by one by primary key so per-row hooks and scopes
        apply to each of them. An empty where updates every visible row.
        """
        values = await self.before_update_all(values, where)
        updated: List[T] = []
        async with transaction(self.session):
            stmt = select(self.primary_key).where(
                *(where or []), *self.update_scope(), *self._visible()
            )
            ids = list(await self.scalars(stmt))
            for identifier in ids:
                updated.extend(await self._update_rows(values, [self.primary_key == identifier], refetch))
        logger.info("Updated %d %s rows", len(updated), self.entity_name)
        return await self.after_update_all_commit(updated)

    async def _update_rows(self, entity: EntityInput, criteria: Criteria, refetch: Optional[bool]) -> List[T]:
        exclude = (primary_key_name(self.model), *_IMMUTABLE_COLUMNS)
        values = entity_values(self.model, entity, exclude=exclude)
        values = self.before_update_model(values, criteria)
        predicate = [*criteria, *self.update_scope(), *self._visible()]

        if not values:
            stmt = select(self.model).where(*predicate)
            return list((await self.scalars(stmt)).all())

        stmt = (
            update(self.model)
            .where(*predicate)
            .values(**values)
            .returning(self.model)
            .execution_options(synchronize_session=False, populate_existing=True)
        )
        rows = list((await self.scalars(stmt)).all())
        refetch = self.settings.REFETCH_AFTER_UPDATE if refetch is None else refetch
        if rows and refetch:
            ids = [getattr(row, self.primary_key.key) for row in rows]
            stmt = (
                select(self.model)
                .where(self.primary_key.in_(ids))
                .execution_options(populate_existing=True)
            )
            rows = list((await self.scalars(stmt)).all())
        return rows

    # Delete

    # PUBLIC_INTERFACE
    async def delete(
        self,
        entity: Any = None,
        where: Optional[Criteria] = None,
        *,
        strict: bool = True,
    ) -> int:
        """
        Delete the row identified by entity (an instance, mapping or bare id) or
        the rows matched by where, and return the affected row count.

        Without an identifier or criteria nothing is deleted. With strict, zero
        affected rows raises EntityNotFoundError.
        """
        entity = await self.before_delete(entity, where)
        identifier = resolve_identifier(entity, self.identifier_field)
        if not where and identifier is None:
            logger.warning("Delete of %s skipped: no identifier or criteria", self.entity_name)
            return await self.after_delete_commit(0)
        criteria = list(where) if where else [self._matches(self.identifier_field, identifier)]

        async with transaction(self.session):
            count = await self._delete_rows(criteria)
        if strict and not count:
            raise EntityNotFoundError(self.entity_name, identifier if not where else "criteria")
        logger.info("Deleted %d %s rows", count, self.entity_name)
        return await self.after_delete_commit(count)

    # PUBLIC_INTERFACE
    async def delete_many(
        self,
        entities: Iterable[Any],
        where: Optional[Criteria] = None,
        *,
        strict: bool = True,
    ) -> int:
        """
        Delete each entity by identifier in one transaction and return the total
        affected row count. Entities without an identifier are skipped.
        """
        entities = await self.before_delete_many(list(entities), where)
        total = 0
        async with transaction(self.session):
            for entity in entities:
                identifier = resolve_identifier(entity, self.identifier_field)
                if identifier is None:
                    continue
                criteria = [self._matches(self.identifier_field, identifier), *(where or [])]
                count = await self._delete_rows(criteria)
                if strict and not count:
                    raise EntityNotFoundError(self.entity_name, identifier)
                total += count
        logger.info("Deleted %d %s rows", total, self.entity_name)
        return await self.after_delete_many_commit(total)

    async def _delete_rows(self, criteria: Criteria) -> int:
        predicate = self.before_delete_model([*criteria, *self.delete_scope()])
        if self.soft_delete:
            stmt = (
                update(self.model)
                .where(*predicate, self.model.deleted_at.is_(None))
                .values(deleted_at=utcnow())
            )
        else:
            stmt = delete(self.model).where(*predicate)
        result = await self.execute(stmt.execution_options(synchronize_session=False))
        return result.rowcount or 0

    # Read

    # PUBLIC_INTERFACE
    async def find_one_or_fail(
        self,
        identifier: Any,
        options: Union[FindOptions, Mapping[str, Any], None] = None,
        *,
        strict: bool = True,
    ) -> Optional[T]:
        """Fetch one row by identifier; strict raises EntityNotFoundError when absent."""
        identifier = resolve_identifier(identifier, self.identifier_field)
        row = None
        if identifier is not None:
            criteria = [self._matches(self.identifier_field, identifier), *self.fetch_scope()]
            row = await self._first(_find_options(options), criteria)
        if row is None and strict:
            raise EntityNotFoundError(self.entity_name, identifier)
        return row

    # PUBLIC_INTERFACE
    async def find_by(
        self,
        where: Union[ColumnElement[bool], Criteria],
        options: Union[FindOptions, Mapping[str, Any], None] = None,
        *,
        strict: bool = True,
    ) -> Optional[T]:
        """Fetch the first row matching a native predicate (or list of predicates)."""
        criteria = [where] if isinstance(where, ColumnElement) else list(where)
        row = await self._first(_find_options(options), [*criteria, *self.fetch_scope()])
        if row is None and strict:
            raise EntityNotFoundError(self.entity_name, "criteria")
        return row

    # PUBLIC_INTERFACE
    async def find(
        self,
        options: Union[QueryOptions, Mapping[str, Any], None] = None,
        *,
        strict: bool = True,
    ) -> Optional[T]:
        """Fetch the first row matching a wire-level query."""
        options = _query_options(options)
        row = await self._first(options, self.fetch_scope())
        if row is None and strict:
            raise EntityNotFoundError(self.entity_name, options.to_query_params())
        return row

    # PUBLIC_INTERFACE
    async def query(self, options: Union[QueryOptions, Mapping[str, Any], None] = None) -> List[T]:
        """Return the rows matching options, honoring projection, includes, sort and pagination."""
        return await self._rows(_query_options(options), self.fetch_scope())

    # PUBLIC_INTERFACE
    async def paginated_query(
        self, options: Union[QueryOptions, Mapping[str, Any], None] = None
    ) -> PaginatedResult[T]:
        """Return one page of rows plus the count of all matching root rows."""
        options = _query_options(options)
        scope = self.fetch_scope()
        rows = await self._rows(options, scope)
        count = await self.scalar_one_or_none(self.builder.build_count(options, scope))
        return PaginatedResult(rows, int(count or 0))

    # PUBLIC_INTERFACE
    async def count(self, options: Union[CountOptions, Mapping[str, Any], None] = None) -> int:
        """
        Count matching rows. With a group, the count of the first group row is
        returned; use count_by_group for every group.
        """
        options = _count_options(options)
        stmt, group_columns = self.builder.build_aggregate(options, self.fetch_scope())
        result = await self.execute(stmt)
        row = result.first()
        if row is None:
            return 0
        return int(row[len(group_columns)])

    # PUBLIC_INTERFACE
    async def count_by_group(
        self, options: Union[CountOptions, Mapping[str, Any], None] = None
    ) -> List[Dict[str, Any]]:
        """Return one {<group column>: value, ..., "count": n} mapping per group."""
        options = _count_options(options)
        stmt, _ = self.builder.build_aggregate(options, self.fetch_scope())
        result = await self.execute(stmt)
        names = options.group_columns
        return [
            {**{name: row[i] for i, name in enumerate(names)}, "count": int(row[len(names)])}
            for row in result.all()
        ]

    # PUBLIC_INTERFACE
    def compile_where(self, matrix: FilterMatrix | List[List[Mapping[str, Any]]]) -> ColumnElement[bool]:
        """Compile a filter matrix on root columns into a native predicate."""
        options = QueryOptions(where=matrix)
        plan, _ = self.builder.plan(options)
        if plan.has_joins:
            raise ConfigurationError("Native predicates cannot reference relation columns")
        return self.builder.where(plan, options.where)

    def _matches(self, field: str, value: Any) -> ColumnElement[bool]:
        column = getattr(self.model, field)
        return column == coerce_value(column, value)

    def _visible(self) -> List[ColumnElement[bool]]:
        return [self.model.deleted_at.is_(None)] if self.soft_delete else []

    async def _first(self, options: Optional[FindOptions], criteria: Criteria) -> Optional[T]:
        options = _query_options(options).model_copy(update={"page": 1, "limit": 1})
        rows = await self._rows(options, criteria)
        return rows[0] if rows else None

    async def _rows(self, options: QueryOptions, criteria: Criteria) -> List[T]:
        stmt, page_ids = self.builder.build_select(
            options, criteria, max_limit=self.settings.MAX_LIMIT
        )
        if page_ids is not None:
            ids = list(await self.scalars(page_ids))
            if not ids:
                return []
            stmt = stmt.where(self.primary_key.in_(ids))
        stmt = stmt.execution_options(populate_existing=True)
        result = await self.execute(stmt)
        rows = list(result.unique().scalars().all())
        logger.debug("Fetched %d %s rows", len(rows), self.entity_name)
        return rows


def _identifier_of(entity: Any, field: str) -> Any:
    if isinstance(entity, Mapping):
        value = entity.get(field)
    else:
        value = getattr(entity, field, None)
    return None if value == "" else value


def _find_options(options: Union[FindOptions, Mapping[str, Any], None]) -> FindOptions:
    if options is None:
        return FindOptions()
    if isinstance(options, FindOptions):
        return options
    return FindOptions.model_validate(options)


def _query_options(options: Union[FindOptions, Mapping[str, Any], None]) -> QueryOptions:
    if options is None:
        return QueryOptions()
    if isinstance(options, QueryOptions):
        return options
    if isinstance(options, FindOptions):
        return QueryOptions(
            select=options.select,
            include=options.include,
            sort=options.sort,
            include_deleted=options.include_deleted,
        )
    return QueryOptions.model_validate(options)


def _count_options(options: Union[CountOptions, Mapping[str, Any], None]) -> CountOptions:
    if options is None:
        return CountOptions()
    if isinstance(options, CountOptions):
        return options
    return CountOptions.model_validate(options)


def _insert_ignore(session: AsyncSession, model: Type[Any], values: Dict[str, Any], conflict_columns: List[str]):
    """INSERT ... ON CONFLICT DO NOTHING for the dialects that support it."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as pg_insert

        return pg_insert(model).values(**values).on_conflict_do_nothing(index_elements=conflict_columns)
    if dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert as sqlite_insert

        return sqlite_insert(model).values(**values).on_conflict_do_nothing(index_elements=conflict_columns)
    raise ConfigurationError(
        f"find_or_create with fast=False is not supported on the {dialect!r} dialect"
    )
