"""Backing store for one entity kind.

Each operation is a single round trip against one table. Boolean
results report whether exactly one row was affected; callers treat
False as "not found", never as an error.
"""

import asyncio
import sqlite3
from typing import List, Optional

import structlog

from ..exceptions import RenameConflict
from .database import ENTITY_TABLES, Database
from .models import EntityRow, Key

logger = structlog.get_logger("backstage.db")

_COLUMNS = 'channel, name, count, text, "group", disabled'


def _row_to_entity(row: sqlite3.Row) -> EntityRow:
    return EntityRow(
        channel=row["channel"],
        name=row["name"],
        count=row["count"],
        text=row["text"],
        group=row["group"],
        disabled=bool(row["disabled"]),
    )


class EntityStore:
    """Narrow interface over a single entity table.

    Args:
        database: Shared, initialized Database.
        table: One of ENTITY_TABLES.
    """

    def __init__(self, database: Database, table: str):
        if table not in ENTITY_TABLES:
            raise ValueError(f"Unknown entity table: {table}")
        self._db = database
        self.table = table

    # Queries
    async def list(self) -> List[EntityRow]:
        """Full scan of the table."""
        return await asyncio.to_thread(self._list_sync)

    def _list_sync(self) -> List[EntityRow]:
        with self._db.transaction("list", self.table) as cursor:
            cursor.execute(f"SELECT {_COLUMNS} FROM {self.table}")
            return [_row_to_entity(row) for row in cursor.fetchall()]

    async def get(self, key: Key) -> Optional[EntityRow]:
        """Fetch a single row, disabled or not."""
        return await asyncio.to_thread(self._get_sync, key)

    def _get_sync(self, key: Key) -> Optional[EntityRow]:
        with self._db.transaction("get", self.table) as cursor:
            cursor.execute(
                f"SELECT {_COLUMNS} FROM {self.table} WHERE channel = ? AND name = ?",
                (key.channel, key.name),
            )
            row = cursor.fetchone()
            return _row_to_entity(row) if row else None

    # Mutations
    async def edit(self, key: Key, text: str) -> Optional[EntityRow]:
        """Insert or update the text of a row.

        Returns:
            The row's current state, or None when the row exists but is
            disabled. Editing never re-enables a row.
        """
        return await asyncio.to_thread(self._edit_sync, key, text)

    def _edit_sync(self, key: Key, text: str) -> Optional[EntityRow]:
        with self._db.transaction("edit", self.table) as cursor:
            cursor.execute(
                f"SELECT {_COLUMNS} FROM {self.table} WHERE channel = ? AND name = ?",
                (key.channel, key.name),
            )
            existing = cursor.fetchone()

            if existing is None:
                row = EntityRow(channel=key.channel, name=key.name, text=text)
                cursor.execute(
                    f"INSERT INTO {self.table} ({_COLUMNS}) VALUES (?, ?, 0, ?, NULL, 0)",
                    (key.channel, key.name, text),
                )
                return row

            cursor.execute(
                f"UPDATE {self.table} SET text = ? WHERE channel = ? AND name = ?",
                (text, key.channel, key.name),
            )
            row = _row_to_entity(existing).model_copy(update={"text": text})
            if row.disabled:
                return None
            return row

    async def increment(self, key: Key) -> bool:
        """Add one to the row's usage counter."""
        return await asyncio.to_thread(self._increment_sync, key)

    def _increment_sync(self, key: Key) -> bool:
        with self._db.transaction("increment", self.table) as cursor:
            cursor.execute(
                f"UPDATE {self.table} SET count = count + 1 WHERE channel = ? AND name = ?",
                (key.channel, key.name),
            )
            return cursor.rowcount == 1

    async def rename(self, key: Key, new_name: str) -> bool:
        """Rename a row within its channel.

        Raises:
            RenameConflict: A row named new_name already exists.
        """
        return await asyncio.to_thread(self._rename_sync, key, new_name.lower())

    def _rename_sync(self, key: Key, new_name: str) -> bool:
        with self._db.transaction("rename", self.table) as cursor:
            try:
                cursor.execute(
                    f"UPDATE {self.table} SET name = ? WHERE channel = ? AND name = ?",
                    (new_name, key.channel, key.name),
                )
            except sqlite3.IntegrityError as e:
                raise RenameConflict(
                    f"`{new_name}` already exists",
                    channel=key.channel,
                    name=new_name,
                ) from e
            return cursor.rowcount == 1

    async def delete(self, key: Key) -> bool:
        return await asyncio.to_thread(self._delete_sync, key)

    def _delete_sync(self, key: Key) -> bool:
        with self._db.transaction("delete", self.table) as cursor:
            cursor.execute(
                f"DELETE FROM {self.table} WHERE channel = ? AND name = ?",
                (key.channel, key.name),
            )
            return cursor.rowcount == 1

    async def enable(self, key: Key) -> bool:
        return await asyncio.to_thread(self._set_disabled_sync, key, False)

    async def disable(self, key: Key) -> bool:
        return await asyncio.to_thread(self._set_disabled_sync, key, True)

    def _set_disabled_sync(self, key: Key, disabled: bool) -> bool:
        operation = "disable" if disabled else "enable"
        with self._db.transaction(operation, self.table) as cursor:
            cursor.execute(
                f"UPDATE {self.table} SET disabled = ? WHERE channel = ? AND name = ?",
                (disabled, key.channel, key.name),
            )
            return cursor.rowcount == 1

    async def set_group(self, key: Key, group: Optional[str]) -> bool:
        """Assign the row to a group, or clear it with None."""
        return await asyncio.to_thread(self._set_group_sync, key, group)

    def _set_group_sync(self, key: Key, group: Optional[str]) -> bool:
        with self._db.transaction("set_group", self.table) as cursor:
            cursor.execute(
                f'UPDATE {self.table} SET "group" = ? WHERE channel = ? AND name = ?',
                (group, key.channel, key.name),
            )
            return cursor.rowcount == 1
