from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class EntityData:
    """Per-entity scratch table shared by every mod. Never persisted by the host."""

    values: dict[str, Any] = field(default_factory=dict)
