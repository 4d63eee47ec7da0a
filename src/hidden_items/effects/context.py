from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Protocol, Tuple

from esper import World

from hidden_items.constants import MAX_RESPAWN_ATTEMPTS
from hidden_items.effects.index import EffectIndex, GroupIndex
from hidden_items.effects.records import EntityRef
from hidden_items.events.bus import PRIORITY_NORMAL, EventBus


class Host(Protocol):
    """What the engine needs from the game it runs inside."""

    world: World
    event_bus: EventBus
    frame_count: int

    def add_item_wisp(self, owner_entity: int, item_id: int) -> int: ...

    def remove_entity(self, entity: int) -> None: ...

    def kill_entity(self, entity: int) -> None: ...

    def remove_from_orbit(self, entity: int) -> None: ...

    def remove_costume(self, owner_entity: int, costume: str) -> None: ...

    def owners(self) -> list[int]: ...

    def familiars(self) -> list[int]: ...


@dataclass
class EngineContext:
    """State owned by one engine instance. Nothing here is module-global."""

    game: Host
    name: str
    tag: str
    log: logging.Logger
    max_respawn_attempts: int = MAX_RESPAWN_ATTEMPTS
    effects: EffectIndex = field(default_factory=EffectIndex)
    groups: GroupIndex = field(default_factory=GroupIndex)
    # Carrier keys whose carriers must be killed the next time they update.
    pending_removal: set[str] = field(default_factory=set)
    removed_this_tick: set[str] = field(default_factory=set)
    owner_refs: dict[str, EntityRef] = field(default_factory=dict)
    severing_open: bool = False
    _subscriptions: List[Tuple[str, Callable]] = field(default_factory=list)

    @property
    def world(self) -> World:
        return self.game.world

    @property
    def event_bus(self) -> EventBus:
        return self.game.event_bus

    @property
    def frame(self) -> int:
        return self.game.frame_count

    def subscribe(self, name: str, fn, priority: int = PRIORITY_NORMAL) -> None:
        self.event_bus.subscribe(name, fn, priority)
        self._subscriptions.append((name, fn))

    def close(self) -> None:
        for name, fn in self._subscriptions:
            self.event_bus.unsubscribe(name, fn)
        self._subscriptions.clear()

    def clear_state(self) -> None:
        self.effects.clear()
        self.groups.clear()
        self.pending_removal.clear()
        self.removed_this_tick.clear()
        self.owner_refs.clear()
        self.severing_open = False
