from blinker import Signal
from typing import Any, Callable, Dict, List, Tuple

PRIORITY_EARLY = 0
PRIORITY_NORMAL = 1
PRIORITY_LATE = 2
_PRIORITIES = (PRIORITY_EARLY, PRIORITY_NORMAL, PRIORITY_LATE)


class EventBus:
    """Event bus leveraging blinker Signal objects.

    Handlers run band by band (early, normal, late) and, inside a band, in
    the order they subscribed. Each subscription owns its own Signal so the
    dispatch order never depends on blinker's internal receiver storage.
    """

    def __init__(self):
        self._signals: Dict[str, List[Tuple[int, Callable, Signal]]] = {}

    def subscribe(self, name: str, fn, priority: int = PRIORITY_NORMAL):
        if priority not in _PRIORITIES:
            raise ValueError(f"Unknown priority {priority!r} for event '{name}'")
        sig = Signal(name)
        # Use weak=False to retain strong reference to bound methods so systems not kept in a variable still receive events.
        sig.connect(fn, weak=False)
        entries = self._signals.setdefault(name, [])
        entries.append((priority, fn, sig))
        # list.sort is stable, so registration order is kept within a band.
        entries.sort(key=lambda entry: entry[0])

    def unsubscribe(self, name: str, fn) -> None:
        entries = self._signals.get(name)
        if not entries:
            return
        remaining = [entry for entry in entries if entry[1] != fn]
        if remaining:
            self._signals[name] = remaining
        else:
            self._signals.pop(name, None)

    def emit(self, name: str, **payload) -> List[Any]:
        """Send ``payload`` to every handler and return their return values."""
        results: List[Any] = []
        for _priority, _fn, sig in list(self._signals.get(name, ())):
            for _receiver, value in sig.send(self, **payload):
                results.append(value)
        return results


# ============================================================================
# HOST LIFECYCLE
# ============================================================================
EVENT_TICK_UPDATE = "tick_update"                  # payload: frame=int
EVENT_SESSION_STARTED = "session_started"          # payload: continuing=bool
EVENT_ROOM_CHANGED = "room_changed"                # payload: frame=int
EVENT_LEVEL_CHANGED = "level_changed"              # payload: frame=int


# ============================================================================
# ENTITIES
# ============================================================================
EVENT_ENTITY_APPEAR = "entity_appear"                  # payload: entity=int
EVENT_ENTITY_UPDATE = "entity_update"                  # payload: entity=int
EVENT_ENTITY_PRE_COLLISION = "entity_pre_collision"    # payload: entity=int, other=int; return True to skip
EVENT_ENTITY_DAMAGE = "entity_damage"                  # payload: entity=int, amount=int, source_entity=int|None; return False to cancel
EVENT_ENTITY_KILLED = "entity_killed"                  # payload: entity=int
EVENT_PROJECTILE_SPAWN = "projectile_spawn"            # payload: entity=int, spawner_entity=int|None


# ============================================================================
# OWNERS & INTERACTIONS
# ============================================================================
EVENT_OWNER_APPEARED = "owner_appeared"            # payload: entity=int
EVENT_OWNER_UPDATED = "owner_updated"              # payload: entity=int
EVENT_INTERACTION_BEGIN = "interaction_begin"      # payload: item_id=int, owner_entity=int
EVENT_INTERACTION_END = "interaction_end"          # payload: item_id=int, owner_entity=int


# ============================================================================
# HIDDEN ITEMS
# ============================================================================
EVENT_HIDDEN_ITEM_ADDED = "hidden_item_added"        # payload: carrier_key=str, owner_entity=int, item_id=int, group=str
EVENT_HIDDEN_ITEM_REMOVED = "hidden_item_removed"    # payload: carrier_key=str, item_id=int, group=str, reason=str
