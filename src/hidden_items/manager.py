from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import Dict, List

from hidden_items.constants import DEFAULT_GROUP, DEFAULT_MANAGER_NAME, MAX_RESPAWN_ATTEMPTS
from hidden_items.effects.context import EngineContext, Host
from hidden_items.effects.keys import InvalidOwner, owner_key
from hidden_items.effects.persistence import (
    PersistableState,
    instances_from_snapshot,
    load_snapshot,
    save_snapshot,
    snapshot,
)
from hidden_items.effects.records import CarrierState, EffectInstance, normalize_duration
from hidden_items.events.bus import EVENT_HIDDEN_ITEM_ADDED
from hidden_items.systems.carrier_lifecycle_system import CarrierLifecycleSystem
from hidden_items.systems.event_guard_system import EventGuardSystem
from hidden_items.systems.reconciliation_system import ReconciliationSystem
from hidden_items.systems.scope_expiry_system import ScopeExpirySystem


def resolve_group(group: str | None) -> str:
    if group is None:
        return DEFAULT_GROUP
    return str(group)


class HiddenItemManager:
    """Grants passive item effects through hidden, engine-managed item wisps.

    Each granted stack is one carrier entity the host already knows how to
    interpret. The manager keeps carriers invisible and inert, re-attaches
    them after a continue, respawns them a bounded number of times if
    something destroys them, and revokes them silently on removal.

    Several managers may share one game; each only ever touches the
    carriers it spawned, plus carriers nobody claims any more.

    Typical use::

        manager = HiddenItemManager(game, name="MyMod")
        manager.add(player, item_id=5, count=2)
        manager.check_stack(player, item_id=7, target=3, group="perks")
    """

    def __init__(
        self,
        game: Host,
        *,
        name: str = DEFAULT_MANAGER_NAME,
        max_respawn_attempts: int = MAX_RESPAWN_ATTEMPTS,
    ):
        self.context = EngineContext(
            game=game,
            name=name,
            tag=f"{name}:{uuid.uuid4().hex}",
            log=logging.getLogger(f"hidden_items.{name}"),
            max_respawn_attempts=max_respawn_attempts,
        )
        self.lifecycle = CarrierLifecycleSystem(self.context)
        self.reconciliation = ReconciliationSystem(self.context, self.lifecycle)
        self.scope_expiry = ScopeExpirySystem(self.context, self.lifecycle)
        self.guards = EventGuardSystem(self.context, self.lifecycle)

    @property
    def tag(self) -> str:
        return self.context.tag

    def _owner_key(self, owner: int) -> str | None:
        try:
            return owner_key(self.context.world, owner)
        except InvalidOwner as exc:
            self.context.log.error("Ignoring hidden item request: %s", exc)
            return None

    # Adding --------------------------------------------------------------

    def _add(
        self,
        owner: int,
        item_id: int,
        duration: int | None,
        count: int,
        group: str | None,
        room_scoped: bool,
        floor_scoped: bool,
    ) -> List[str]:
        group = resolve_group(group)
        key = self._owner_key(owner)
        if key is None or count < 1:
            return []
        suspect = item_id is None or item_id < 1
        if suspect:
            self.context.log.error("Attempted to add invalid item id `%s` to group: %s", item_id, group)
        added: List[str] = []
        for _ in range(count):
            instance = EffectInstance(
                item_id=item_id,
                group=group,
                owner_key=key,
                added_tick=self.context.frame,
                duration=normalize_duration(duration),
                room_scoped=room_scoped,
                floor_scoped=floor_scoped,
                suspect=suspect,
            )
            if self.lifecycle.spawn(owner, instance) is None:
                continue
            added.append(instance.carrier_key)
            self.context.event_bus.emit(
                EVENT_HIDDEN_ITEM_ADDED,
                carrier_key=instance.carrier_key,
                owner_entity=owner,
                item_id=item_id,
                group=group,
            )
        return added

    def add(self, owner: int, item_id: int, duration: int | None = -1, count: int = 1, group: str | None = None) -> List[str]:
        """Add hidden item(s) that persist through room and floor transitions."""
        return self._add(owner, item_id, duration, count, group, room_scoped=False, floor_scoped=False)

    def add_for_room(self, owner: int, item_id: int, duration: int | None = -1, count: int = 1, group: str | None = None) -> List[str]:
        """Add hidden item(s) that expire on the next room change."""
        return self._add(owner, item_id, duration, count, group, room_scoped=True, floor_scoped=True)

    def add_for_floor(self, owner: int, item_id: int, duration: int | None = -1, count: int = 1, group: str | None = None) -> List[str]:
        """Add hidden item(s) that expire on the next floor change."""
        return self._add(owner, item_id, duration, count, group, room_scoped=False, floor_scoped=True)

    def check_stack(self, owner: int, item_id: int, target: int, group: str | None = None) -> None:
        """Add or remove copies so exactly ``target`` stacks exist in the group.

        Removal goes oldest first, one instance at a time.
        """
        target = max(0, int(target))
        current = self.count_stack(owner, item_id, group)
        if current > target:
            for _ in range(current - target):
                self.remove(owner, item_id, group)
        elif current < target:
            self.add(owner, item_id, -1, target - current, group)

    # Removing ------------------------------------------------------------

    def remove(self, owner: int, item_id: int, group: str | None = None) -> None:
        """Remove the oldest stack of ``item_id``; ties go to the first one added."""
        instances = self.instances(owner, item_id, group)
        if instances:
            self.lifecycle.retire(instances[0].carrier_key, CarrierState.REMOVED.value)

    def remove_stack(self, owner: int, item_id: int, group: str | None = None) -> None:
        for instance in self.instances(owner, item_id, group):
            self.lifecycle.retire(instance.carrier_key, CarrierState.REMOVED.value)

    def remove_all(self, owner: int, group: str | None = None) -> None:
        for item_id in self.get_stacks(owner, group):
            self.remove_stack(owner, item_id, group)

    # Queries -------------------------------------------------------------

    def instances(self, owner: int, item_id: int, group: str | None = None) -> List[EffectInstance]:
        """Live instances for the triple, oldest first."""
        key = self._owner_key(owner)
        if key is None:
            return []
        found = []
        for carrier_key in self.context.groups.keys_for(key, resolve_group(group), item_id):
            instance = self.context.effects.get(carrier_key)
            if instance is not None:
                found.append(instance)
        # sorted() is stable: equal ticks keep group index order.
        return sorted(found, key=lambda instance: instance.added_tick)

    def has(self, owner: int, item_id: int, group: str | None = None) -> bool:
        return self.count_stack(owner, item_id, group) > 0

    def count_stack(self, owner: int, item_id: int, group: str | None = None) -> int:
        key = self._owner_key(owner)
        if key is None:
            return 0
        return self.context.groups.count(key, resolve_group(group), item_id)

    def get_stacks(self, owner: int, group: str | None = None) -> Dict[int, int]:
        """Point-in-time mapping of item id to stack count for the group."""
        key = self._owner_key(owner)
        if key is None:
            return {}
        return self.context.groups.stacks(key, resolve_group(group))

    # Persistence ---------------------------------------------------------

    def snapshot(self) -> PersistableState:
        return snapshot(self.context.effects)

    def restore(self, state: PersistableState | None) -> None:
        """Install a snapshot and re-attach to surviving carriers.

        ``None`` resets to an empty engine. Instances whose carrier is not
        found are left for the next reconciliation pass to respawn.
        """
        self.context.clear_state()
        for instance in instances_from_snapshot(state):
            instance.initialized = False
            self.context.effects.insert(instance.carrier_key, instance)
        self.lifecycle.check_all(adopt_stale=True)
        for _key, instance in self.context.effects.items():
            instance.initialized = True
        self.context.groups.rebuild(instance for _key, instance in self.context.effects.items())

    def save(self, path: Path | str) -> None:
        save_snapshot(path, self.snapshot())

    def load(self, path: Path | str) -> None:
        self.restore(load_snapshot(path))

    def close(self) -> None:
        """Detach from the host's callbacks. Carriers left behind become orphans."""
        self.context.close()
