"""Entities held by a registry, and the kinds that parameterize it."""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from ..db.models import EntityRow, Key
from ..template import Template


@dataclass(frozen=True)
class EntityKind:
    """Capability set shared by every entity of one kind.

    Attributes:
        name: Kind name, also the chat command word (e.g. "command").
        table: Entity table holding this kind's rows.
        what: Noun used in chat responses.
        compile: Template compiler for this kind's text.
    """

    name: str
    table: str
    what: str
    compile: Callable[[str], Template] = Template.compile


COMMANDS = EntityKind(name="command", table="commands", what="command")
COUNTERS = EntityKind(name="counter", table="counters", what="counter")
BAD_WORDS = EntityKind(name="badword", table="bad_words", what="bad word")


class UsageCounter:
    """Mutable usage count shared by every version of one entity.

    Only the owning Registry mutates it, and only under its lock.
    """

    __slots__ = ("value",)

    def __init__(self, value: int = 0):
        self.value = value

    def __repr__(self) -> str:
        return f"UsageCounter({self.value})"


@dataclass
class Entity:
    """A named, per-channel record with a compiled template.

    Structural changes produce a new Entity; the usage counter cell is
    carried over so increments in flight still land on the live value.
    """

    key: Key
    template: Template
    group: Optional[str] = None
    disabled: bool = False
    _count: UsageCounter = field(default_factory=UsageCounter, repr=False, compare=False)

    @classmethod
    def from_row(cls, row: EntityRow, template: Template) -> "Entity":
        return cls(
            key=row.key,
            template=template,
            group=row.group,
            disabled=row.disabled,
            _count=UsageCounter(row.count),
        )

    @property
    def count(self) -> int:
        return self._count.value

    @property
    def name(self) -> str:
        return self.key.name

    def has_var(self, var: str) -> bool:
        """Whether the template reads the given context variable."""
        return var in self.template.referenced_variables()

    def render(self, context: Dict[str, Any]) -> str:
        """Render the template. Raises RenderError."""
        return self.template.render(context)

    def __str__(self) -> str:
        return (
            f'template = "{self.template.source}", '
            f'group = {self.group or "*none*"}, '
            f"disabled = {str(self.disabled).lower()}"
        )
