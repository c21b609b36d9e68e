"""Cached entity registry.

The registry is an in-memory view over one EntityStore. The cache is
derived, never authoritative: every structural mutation validates
locally, commits to the store, then mirrors the change into the cache.
A crash between the last two steps is recovered by the next load().

Readers never wait. The map is published copy-on-write: writers build
a new dict under the write lock and swap the reference, readers take
whatever reference is current. Storage calls happen with no lock held.
"""

import dataclasses
import threading
from typing import Dict, List, Optional

import structlog

from ..db.models import Key
from ..db.store import EntityStore
from ..exceptions import BackstageError, LoadError
from .entity import Entity, EntityKind

logger = structlog.get_logger("backstage.registry")


class Registry:
    """Concurrent cache of one entity kind in front of its backing store.

    Construct with Registry.load(). All mutating methods are coroutines
    because they touch storage; lookups are plain methods and never do.

    Args:
        store: Backing store for this kind.
        kind: Capability set (compiler, table, display noun).
        entries: Initial cache contents.
    """

    def __init__(
        self,
        store: EntityStore,
        kind: EntityKind,
        entries: Optional[Dict[Key, Entity]] = None,
    ):
        self.store = store
        self.kind = kind
        self._entries: Dict[Key, Entity] = dict(entries or {})
        self._write_lock = threading.Lock()

    @classmethod
    async def load(cls, store: EntityStore, kind: EntityKind) -> "Registry":
        """Warm-start a registry from every persisted row.

        Raises:
            LoadError: Storage is unreachable or any row fails to compile.
        """
        try:
            rows = await store.list()
        except BackstageError as e:
            raise LoadError(
                f"Cannot list {kind.table}: {e.message}", kind=kind.name
            ) from e

        entries: Dict[Key, Entity] = {}
        for row in rows:
            try:
                template = kind.compile(row.text)
            except BackstageError as e:
                raise LoadError(
                    f"Failed to compile {kind.what} `{row.name}` from db: {e.message}",
                    kind=kind.name,
                    channel=row.channel,
                    name=row.name,
                ) from e
            entity = Entity.from_row(row, template)
            entries[entity.key] = entity

        logger.info("registry_loaded", kind=kind.name, entities=len(entries))
        return cls(store, kind, entries)

    # Lookups
    def get(self, channel: str, name: str) -> Optional[Entity]:
        """Look up an enabled entity, case-insensitively."""
        entity = self._entries.get(Key.new(channel, name))
        if entity is None or entity.disabled:
            return None
        return entity

    def get_any(self, channel: str, name: str) -> Optional[Entity]:
        """Look up an entity whether or not it is disabled."""
        return self._entries.get(Key.new(channel, name))

    def list(self, channel: str) -> List[Entity]:
        """Snapshot of the enabled entities in a channel, in no particular order."""
        return [
            entity for key, entity in self._entries.items()
            if key.channel == channel and not entity.disabled
        ]

    def entities(self) -> List[Entity]:
        """Snapshot of every cached entity, disabled included."""
        return list(self._entries.values())

    # Mutations
    async def edit(self, channel: str, name: str, source: str) -> None:
        """Create or update an entity's template.

        The template is compiled before anything is written, so a bad
        template never reaches storage or the cache. Editing a disabled
        entity updates its text but keeps it hidden.

        An entity already in the cache only has its template swapped.
        Its counter cell, group and disabled flag stay as the other
        mirrors left them, so an increment or disable that lands while
        the edit is in flight is not overwritten by the row read here.

        Raises:
            CompileError: The template source is malformed.
            StorageError: The store rejected the write.
        """
        template = self.kind.compile(source)
        key = Key.new(channel, name)

        row = await self.store.edit(key, template.source)

        with self._write_lock:
            entries = dict(self._entries)
            current = entries.get(key)
            if current is not None:
                entries[key] = dataclasses.replace(current, template=template)
            elif row is not None:
                entries[key] = Entity.from_row(row, template)
            self._entries = entries

        logger.info(
            "entity_edited",
            kind=self.kind.name,
            channel=channel,
            name=key.name,
            suppressed=row is None,
        )

    async def increment(self, entity: Entity) -> bool:
        """Record one use of an entity.

        The in-memory count moves only after the store confirms the
        write. Returns False when the row vanished in the meantime.
        """
        if not await self.store.increment(entity.key):
            logger.warning(
                "increment_missed",
                kind=self.kind.name,
                channel=entity.key.channel,
                name=entity.key.name,
            )
            return False

        with self._write_lock:
            entity._count.value += 1
        return True

    async def rename(self, channel: str, name: str, new_name: str) -> bool:
        """Rename an entity, keeping its count, group and disabled flag.

        Raises:
            RenameConflict: new_name is already taken in the channel.
        """
        key = Key.new(channel, name)
        new_key = Key.new(channel, new_name)

        if not await self.store.rename(key, new_key.name):
            return False

        with self._write_lock:
            entries = dict(self._entries)
            entity = entries.pop(key, None)
            if entity is not None:
                entries[new_key] = dataclasses.replace(entity, key=new_key)
            self._entries = entries

        logger.info(
            "entity_renamed",
            kind=self.kind.name,
            channel=channel,
            name=key.name,
            new_name=new_key.name,
        )
        return True

    async def delete(self, channel: str, name: str) -> bool:
        key = Key.new(channel, name)

        if not await self.store.delete(key):
            return False

        with self._write_lock:
            entries = dict(self._entries)
            entries.pop(key, None)
            self._entries = entries

        logger.info("entity_deleted", kind=self.kind.name, channel=channel, name=key.name)
        return True

    async def enable(self, channel: str, name: str) -> bool:
        """Make a disabled entity visible again.

        If the cache does not hold the entity (a disabled row written
        behind the registry's back), the row is re-read from the store
        and compiled.
        """
        key = Key.new(channel, name)

        if not await self.store.enable(key):
            return False

        if key not in self._entries:
            row = await self.store.get(key)
            if row is None:
                return True
            fresh = Entity.from_row(row, self.kind.compile(row.text))
        else:
            fresh = None

        with self._write_lock:
            entries = dict(self._entries)
            current = entries.get(key)
            if current is not None:
                entries[key] = dataclasses.replace(current, disabled=False)
            elif fresh is not None:
                entries[key] = dataclasses.replace(fresh, disabled=False)
            self._entries = entries

        logger.info("entity_enabled", kind=self.kind.name, channel=channel, name=key.name)
        return True

    async def disable(self, channel: str, name: str) -> bool:
        """Hide an entity from invocation without deleting it."""
        key = Key.new(channel, name)

        if not await self.store.disable(key):
            return False

        self._mirror(key, disabled=True)
        logger.info("entity_disabled", kind=self.kind.name, channel=channel, name=key.name)
        return True

    async def set_group(self, channel: str, name: str, group: str) -> bool:
        key = Key.new(channel, name)

        if not await self.store.set_group(key, group):
            return False

        self._mirror(key, group=group)
        logger.info(
            "entity_grouped",
            kind=self.kind.name,
            channel=channel,
            name=key.name,
            group=group,
        )
        return True

    async def clear_group(self, channel: str, name: str) -> bool:
        key = Key.new(channel, name)

        if not await self.store.set_group(key, None):
            return False

        self._mirror(key, group=None)
        logger.info("entity_ungrouped", kind=self.kind.name, channel=channel, name=key.name)
        return True

    def _mirror(self, key: Key, **changes) -> None:
        """Apply field changes to a cached entity, if the cache holds it."""
        with self._write_lock:
            current = self._entries.get(key)
            if current is None:
                return
            entries = dict(self._entries)
            entries[key] = dataclasses.replace(current, **changes)
            self._entries = entries
