"""Cached entity registry.

Provides the Registry (in-memory cache over a backing store), the
Entity record it owns, and the EntityKind capability sets for
commands, counters and bad words.
"""

from .entity import BAD_WORDS, COMMANDS, COUNTERS, Entity, EntityKind, UsageCounter
from .registry import Registry

__all__ = [
    "Registry",
    "Entity",
    "EntityKind",
    "UsageCounter",
    "COMMANDS",
    "COUNTERS",
    "BAD_WORDS",
]
