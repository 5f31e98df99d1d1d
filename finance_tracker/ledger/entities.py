"""
Entity Resolver

Maps the free-text `currency` and `withWho` labels typed on items to
canonical per-user records (currencies, persons), creating them on first
reference.

DESIGN DECISION: Every write path that accepts such a label goes through
`resolve()`. It runs inside the caller's atomic unit, so a failed item
write also rolls back the entity it created.
"""

from datetime import datetime
from typing import Callable, Optional

import structlog

from finance_tracker.models.items import (
    ENTITY_MODELS,
    DebtItem,
    EntityKind,
    NamedEntity,
    utc_now,
)
from finance_tracker.services.storage import DuplicateError, LedgerStorageInterface


logger = structlog.get_logger(__name__)


class EntityResolver:
    """Resolve-or-create for currency and person labels."""

    def __init__(
        self,
        storage: LedgerStorageInterface,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._storage = storage
        self._clock = clock

    async def resolve(
        self,
        user_id: str,
        name: Optional[str],
        kind: EntityKind,
    ) -> Optional[NamedEntity]:
        """
        Return the entity registered under `name`, inserting it if needed.

        Blank names resolve to None. The (user_id, name) unique index backs
        the lookup; losing an insert race re-reads the winner.
        """
        name = (name or "").strip()
        if not name:
            return None

        async with self._storage.transaction():
            existing = await self._storage.find_entity(kind, user_id, name)
            if existing is not None:
                return existing

            now = self._clock()
            entity = ENTITY_MODELS[kind](
                name=name,
                user_id=user_id,
                create_date=now,
                edit_date=now,
            )
            try:
                await self._storage.insert_entity(kind, entity)
            except DuplicateError:
                winner = await self._storage.find_entity(kind, user_id, name)
                if winner is None:
                    raise
                return winner

            logger.debug(
                "entity_created",
                kind=kind.value,
                entity_id=entity.id,
                user_id=user_id,
            )
            return entity

    async def list_entities(self, user_id: str, kind: EntityKind) -> list[NamedEntity]:
        return await self._storage.list_entities(kind, user_id)

    async def backfill_links(self, user_id: str) -> dict[str, int]:
        """
        Create entities for every currency/person label already on the
        user's items and fill in missing `currency_id` / `person_id` links.

        Runs as one atomic unit. Existing links are left untouched.

        Returns:
            Counts: items_scanned, items_updated, currencies_created,
            persons_created
        """
        counts = {
            "items_scanned": 0,
            "items_updated": 0,
            "currencies_created": 0,
            "persons_created": 0,
        }

        async with self._storage.transaction():
            before = {
                kind: len(await self._storage.list_entities(kind, user_id))
                for kind in EntityKind
            }

            for item in await self._storage.list_items(user_id):
                counts["items_scanned"] += 1
                changes = {}

                label = getattr(item, "currency", None)
                if label and not getattr(item, "currency_id", None):
                    entity = await self.resolve(user_id, label, EntityKind.CURRENCY)
                    if entity is not None:
                        changes["currency_id"] = entity.id

                if isinstance(item, DebtItem) and not item.person_id:
                    entity = await self.resolve(user_id, item.with_who, EntityKind.PERSON)
                    if entity is not None:
                        changes["person_id"] = entity.id

                if changes:
                    # Link-only migration: edit_date stays as the user left it
                    await self._storage.replace_item(item.model_copy(update=changes))
                    counts["items_updated"] += 1

            counts["currencies_created"] = (
                len(await self._storage.list_entities(EntityKind.CURRENCY, user_id))
                - before[EntityKind.CURRENCY]
            )
            counts["persons_created"] = (
                len(await self._storage.list_entities(EntityKind.PERSON, user_id))
                - before[EntityKind.PERSON]
            )

        logger.info("entity_links_backfilled", user_id=user_id, **counts)
        return counts
