"""Relational backing store for registry entities."""

from .database import ENTITY_TABLES, Database
from .models import EntityRow, Key
from .store import EntityStore

__all__ = [
    "Database",
    "ENTITY_TABLES",
    "EntityRow",
    "EntityStore",
    "Key",
]
