from dataclasses import dataclass
from enum import IntEnum


class CollisionClass(IntEnum):
    NONE = 0
    ALL = 1


@dataclass(slots=True)
class Body:
    """Visual and physical state of an entity. The host may reset it at any time."""

    position: tuple[float, float] = (0.0, 0.0)
    velocity: tuple[float, float] = (0.0, 0.0)
    visible: bool = True
    entity_collision: CollisionClass = CollisionClass.ALL
    grid_collision: CollisionClass = CollisionClass.ALL
