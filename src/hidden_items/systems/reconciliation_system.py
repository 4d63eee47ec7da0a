from __future__ import annotations

from typing import List, Tuple

from hidden_items.effects.context import EngineContext
from hidden_items.effects.records import CarrierState, EffectInstance
from hidden_items.events.bus import EVENT_TICK_UPDATE
from hidden_items.systems.carrier_lifecycle_system import CarrierLifecycleSystem


class ReconciliationSystem:
    """Per-tick sweep that respawns carriers which vanished without being revoked.

    Respawning is bounded: after ``max_respawn_attempts`` failures the instance
    is dropped so a fight with whatever keeps destroying carriers ends.
    """

    def __init__(self, context: EngineContext, lifecycle: CarrierLifecycleSystem):
        self.context = context
        self.lifecycle = lifecycle
        context.subscribe(EVENT_TICK_UPDATE, self.on_tick_update)

    def on_tick_update(self, sender, **kwargs):
        self.resolve_removed()
        self.reconcile()

    def resolve_removed(self) -> None:
        # A flip can update two copies of one carrier in the same tick, so queue
        # entries are only dropped once the tick is over.
        self.context.pending_removal -= self.context.removed_this_tick
        self.context.removed_this_tick.clear()

    def reconcile(self) -> None:
        log = self.context.log
        to_respawn: List[Tuple[str, EffectInstance, int]] = []
        for key, instance in self.context.effects.items():
            if not instance.initialized:
                continue
            if self.lifecycle.resolve_carrier(instance) is not None:
                continue
            owner = self.lifecycle.resolve_owner(instance)
            if owner is None:
                # resolve_owner already swept every live owner for the key.
                self.context.owner_refs.pop(instance.owner_key, None)
                log.error(
                    "Could not find the owner of a lost carrier. Giving up on item #%s from group: %s",
                    instance.item_id,
                    instance.group,
                )
                self.lifecycle.retire(key, CarrierState.OWNER_LOST.value)
                continue
            if self.lifecycle.owner_inactive(owner):
                continue
            if instance.failures >= self.context.max_respawn_attempts:
                log.error(
                    "Something is constantly removing the carriers or preventing them from spawning! "
                    "Giving up on item #%s from group: %s",
                    instance.item_id,
                    instance.group,
                )
                self.lifecycle.retire(key, "carrier_lost")
                continue
            if instance.failures == 0:
                log.warning(
                    "Carrier disappeared unexpectedly! Respawning carrier for item #%s from group: %s",
                    instance.item_id,
                    instance.group,
                )
            instance.failures += 1
            to_respawn.append((key, instance, owner))
        for key, instance, owner in to_respawn:
            self.lifecycle.respawn(key, instance, owner)
