from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, TypeVar

from tenant_query.core.errors import ConfigurationError
from tenant_query.db.mapping import entity_values, has_column, primary_key_name, resolve_identifier
from tenant_query.db.session import transaction
from .base import BaseRepository

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class ChildrenDiff:
    to_create: List[Any] = field(default_factory=list)
    to_update: List[Any] = field(default_factory=list)
    to_delete: List[Any] = field(default_factory=list)


# PUBLIC_INTERFACE
def diff_children(current: Iterable[Any], expected: Iterable[Any], identifier: str = "id") -> ChildrenDiff:
    """
    Compare the stored children of a parent with the desired ones, by id.

    to_delete: current children whose id is absent from expected.
    to_create: expected children without an id or with an id not in current.
    to_update: expected children whose id is in current.
    """
    current = list(current)
    expected = list(expected)
    current_ids = {str(resolve_identifier(c, identifier)) for c in current if resolve_identifier(c, identifier) is not None}
    expected_ids = {str(resolve_identifier(e, identifier)) for e in expected if resolve_identifier(e, identifier) is not None}

    diff = ChildrenDiff()
    for child in current:
        child_id = resolve_identifier(child, identifier)
        if child_id is not None and str(child_id) not in expected_ids:
            diff.to_delete.append(child)
    for child in expected:
        child_id = resolve_identifier(child, identifier)
        if child_id is None or str(child_id) not in current_ids:
            diff.to_create.append(child)
        else:
            diff.to_update.append(child)
    return diff


class DependentRelationRepository(BaseRepository[T]):
    """
    Repository over child rows owned by a parent through related_foreign_key.

    Children are created with the parent's id stamped and any supplied id
    dropped; sync_children reconciles stored children with a desired list.
    """

    related_foreign_key: str

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        column = getattr(self, "related_foreign_key", None)
        if not column or not has_column(self.model, column):
            raise ConfigurationError(
                f"{type(self).__name__}.related_foreign_key must name a column of {self.entity_name}"
            )

    def _child_values(self, parent_id: Any, child: Any) -> Dict[str, Any]:
        values = entity_values(self.model, child, exclude=[primary_key_name(self.model)])
        values[self.related_foreign_key] = parent_id
        return values

    # PUBLIC_INTERFACE
    async def create_children(self, parent_id: Any, children: Iterable[Any]) -> List[T]:
        rows = [self._child_values(parent_id, child) for child in children]
        if not rows:
            return []
        return await self.create_many(rows)

    # PUBLIC_INTERFACE
    async def update_children(self, children: Iterable[Any]) -> List[T]:
        children = list(children)
        if not children:
            return []
        return await self.update_many(children)

    # PUBLIC_INTERFACE
    async def delete_children(self, children: Iterable[Any]) -> int:
        children = list(children)
        if not children:
            return 0
        return await self.delete_many(children)

    # PUBLIC_INTERFACE
    async def sync_children(self, parent_id: Any, current: Iterable[Any], expected: Iterable[Mapping[str, Any] | Any]) -> List[T]:
        """
        Delete, create and update children so the parent ends up with expected.
        Returns the created rows followed by the updated ones. Runs in one
        transaction.
        """
        diff = diff_children(current, expected, self.identifier_field)
        logger.debug(
            "Syncing %s children of %s: %d create, %d update, %d delete",
            self.entity_name, parent_id, len(diff.to_create), len(diff.to_update), len(diff.to_delete),
        )
        async with transaction(self.session):
            await self.delete_children(diff.to_delete)
            created = await self.create_children(parent_id, diff.to_create)
            updated = await self.update_children(diff.to_update)
        return [*created, *updated]
