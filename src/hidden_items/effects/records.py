from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Type, TypeVar

from esper import World

C = TypeVar("C")


class CarrierState(str, Enum):
    SPAWNING = "spawning"
    ACTIVE = "active"
    EXPIRED = "expired"
    OWNER_LOST = "owner_lost"
    DUPLICATE = "duplicate"
    ORPHANED = "orphaned"
    REMOVED = "removed"


@dataclass(slots=True)
class EntityRef:
    """Non-owning handle to a host entity that may vanish between ticks.

    ``resolve`` must be used on every access; it returns ``None`` once the
    entity is gone or no longer carries the expected component.
    """

    entity: int

    def resolve(self, world: World, component_type: Type[C]) -> C | None:
        if not world.entity_exists(self.entity):
            return None
        try:
            return world.component_for_entity(self.entity, component_type)
        except KeyError:
            return None


def normalize_duration(duration: int | None) -> int | None:
    if duration is None or duration < 1:
        return None
    return int(duration)


@dataclass(slots=True)
class EffectInstance:
    """One stack of a hidden item effect, backed by at most one carrier."""

    item_id: int
    group: str
    owner_key: str
    added_tick: int
    duration: int | None = None
    room_scoped: bool = False
    floor_scoped: bool = False
    carrier_key: str | None = None
    failures: int = 0
    initialized: bool = False
    suspect: bool = False
    carrier: EntityRef | None = None
    owner: EntityRef | None = None

    def expired(self, frame: int) -> bool:
        return self.duration is not None and self.added_tick + self.duration < frame

    def to_payload(self) -> dict[str, Any]:
        return {
            "item": self.item_id,
            "group": self.group,
            "duration": self.duration,
            "room": self.room_scoped,
            "floor": self.floor_scoped,
            "added": self.added_tick,
            "owner": self.owner_key,
        }

    @classmethod
    def from_payload(cls, carrier_key: str, payload: dict[str, Any]) -> "EffectInstance":
        return cls(
            item_id=int(payload["item"]),
            group=str(payload["group"]),
            owner_key=str(payload["owner"]),
            added_tick=int(payload.get("added", 0)),
            duration=normalize_duration(payload.get("duration")),
            room_scoped=bool(payload.get("room", False)),
            floor_scoped=bool(payload.get("floor", False)),
            carrier_key=str(carrier_key),
        )
