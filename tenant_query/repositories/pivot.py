from __future__ import annotations

import logging
from typing import Any, Iterable, List, TypeVar

from tenant_query.core.errors import ConfigurationError
from tenant_query.db.mapping import coerce_value, has_column, resolve_identifier
from tenant_query.db.session import transaction
from .base import BaseRepository

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PivotRepository(BaseRepository[T]):
    """
    Repository over a many-to-many link table.

    Rows link a target (target_foreign_key) to related entities
    (related_foreign_key). Related entities are given as instances, mappings or
    bare ids; their id is read from related_identifier.
    """

    target_foreign_key: str
    related_foreign_key: str
    related_identifier: str = "id"

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        for name in ("target_foreign_key", "related_foreign_key"):
            column = getattr(self, name, None)
            if not column or not has_column(self.model, column):
                raise ConfigurationError(f"{type(self).__name__}.{name} must name a column of {self.entity_name}")

    def _related_id(self, item: Any) -> Any:
        return resolve_identifier(item, self.related_identifier)

    # PUBLIC_INTERFACE
    async def attach(self, target_id: Any, related: Iterable[Any]) -> List[T]:
        """Create one link row per related entity."""
        rows = [
            {self.target_foreign_key: target_id, self.related_foreign_key: self._related_id(item)}
            for item in related
            if self._related_id(item) is not None
        ]
        if not rows:
            return []
        return await self.create_many(rows)

    # PUBLIC_INTERFACE
    async def detach(self, target_id: Any, related: Iterable[Any]) -> int:
        """Delete the link rows between target and each related entity."""
        target_column = getattr(self.model, self.target_foreign_key)
        related_column = getattr(self.model, self.related_foreign_key)
        total = 0
        async with transaction(self.session):
            for item in related:
                related_id = self._related_id(item)
                if related_id is None:
                    continue
                total += await self.delete(
                    where=[
                        target_column == coerce_value(target_column, target_id),
                        related_column == coerce_value(related_column, related_id),
                    ],
                    strict=False,
                )
        return total

    # PUBLIC_INTERFACE
    async def sync(self, target_id: Any, current: Iterable[Any], expected: Iterable[Any]) -> List[T]:
        """
        Make the links of target equal expected, given the currently linked
        entities. Links missing from expected are detached before new ones are
        attached, in one transaction. Items without an id are ignored.
        """
        current = [c for c in current if self._related_id(c) is not None]
        expected = [e for e in expected if self._related_id(e) is not None]
        current_ids = {str(self._related_id(c)) for c in current}
        expected_ids = {str(self._related_id(e)) for e in expected}

        to_detach = [c for c in current if str(self._related_id(c)) not in expected_ids]
        to_attach = [e for e in expected if str(self._related_id(e)) not in current_ids]
        logger.debug(
            "Syncing %s for %s: %d to attach, %d to detach",
            self.entity_name, target_id, len(to_attach), len(to_detach),
        )
        async with transaction(self.session):
            await self.detach(target_id, to_detach)
            return await self.attach(target_id, to_attach)
