"""Row and key models for entity storage."""

from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel, Field


@dataclass(frozen=True)
class Key:
    """Identity of an entity: a channel plus a lower-cased name."""

    channel: str
    name: str

    @classmethod
    def new(cls, channel: str, name: str) -> "Key":
        return cls(channel=channel, name=name.lower())

    def __str__(self) -> str:
        return f"{self.channel}/{self.name}"


class EntityRow(BaseModel):
    """A persisted entity row, as stored in one entity table."""

    channel: str
    name: str = Field(..., description="Always lower-cased")
    count: int = Field(default=0, ge=0)
    text: str
    group: Optional[str] = None
    disabled: bool = False

    @property
    def key(self) -> Key:
        return Key.new(self.channel, self.name)
