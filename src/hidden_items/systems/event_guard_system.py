from __future__ import annotations

from hidden_items.components.familiar import Familiar
from hidden_items.constants import DATA_SEVERED_OWNER, GLOBAL_RESET_ITEM_ID, OWNERSHIP_SEVERING_ITEM_ID
from hidden_items.effects.context import EngineContext
from hidden_items.effects.records import CarrierState
from hidden_items.events.bus import (
    EVENT_ENTITY_DAMAGE,
    EVENT_ENTITY_PRE_COLLISION,
    EVENT_HIDDEN_ITEM_REMOVED,
    EVENT_INTERACTION_BEGIN,
    EVENT_INTERACTION_END,
    EVENT_PROJECTILE_SPAWN,
    EVENT_TICK_UPDATE,
    PRIORITY_EARLY,
)
from hidden_items.systems.carrier_lifecycle_system import CarrierLifecycleSystem


class EventGuardSystem:
    """Keeps carriers intact through host interactions that would otherwise touch them.

    - Ownership severing: carriers are unlinked from their owner for the
      duration of the interaction and relinked afterwards. The host sends no
      signal when the interaction is aborted, so an open interaction is
      force-completed at the start of the next tick.
    - Global reset: every instance is dropped and its carrier released.
    - Carriers never fire projectiles, take or deal damage, or collide.
    """

    def __init__(self, context: EngineContext, lifecycle: CarrierLifecycleSystem):
        self.context = context
        self.lifecycle = lifecycle
        self.world = context.world
        context.subscribe(EVENT_INTERACTION_BEGIN, self.on_interaction_begin)
        context.subscribe(EVENT_INTERACTION_END, self.on_interaction_end)
        context.subscribe(EVENT_TICK_UPDATE, self.on_tick_update, PRIORITY_EARLY)
        context.subscribe(EVENT_PROJECTILE_SPAWN, self.on_projectile_spawn)
        context.subscribe(EVENT_ENTITY_DAMAGE, self.on_entity_damage)
        context.subscribe(EVENT_ENTITY_PRE_COLLISION, self.on_entity_pre_collision)

    # Ownership severing --------------------------------------------------

    def begin_severing(self) -> None:
        for _key, instance in self.context.effects.items():
            entity = self.lifecycle.resolve_carrier(instance)
            if entity is None:
                continue
            familiar = self.world.component_for_entity(entity, Familiar)
            # Unlinking a familiar that is still in orbit crashes the host.
            self.context.game.remove_from_orbit(entity)
            if familiar.owner_entity is not None:
                self.lifecycle.data_for(entity)[DATA_SEVERED_OWNER] = familiar.owner_entity
            familiar.owner_entity = None
        self.context.severing_open = True

    def end_severing(self) -> None:
        for key, instance in self.context.effects.items():
            entity = self.lifecycle.resolve_carrier(instance)
            owner = None
            if entity is not None:
                cached = self.lifecycle.data_for(entity).pop(DATA_SEVERED_OWNER, None)
                if self.lifecycle.owner_matches(cached, instance.owner_key):
                    owner = cached
            if owner is None:
                owner = self.lifecycle.resolve_owner(instance)
            if owner is None:
                self.context.log.error(
                    "Lost track of the owner during ownership severing. Giving up on item #%s from group: %s",
                    instance.item_id,
                    instance.group,
                )
                self.lifecycle.retire(key, CarrierState.OWNER_LOST.value)
            elif entity is not None:
                self.world.component_for_entity(entity, Familiar).owner_entity = owner
        self.context.severing_open = False

    # Global reset --------------------------------------------------------

    def global_reset(self) -> None:
        live = []
        for key, instance in self.context.effects.items():
            entity = self.lifecycle.resolve_carrier(instance)
            if entity is not None:
                live.append(entity)
            self.context.event_bus.emit(
                EVENT_HIDDEN_ITEM_REMOVED,
                carrier_key=key,
                item_id=instance.item_id,
                group=instance.group,
                reason="reset",
            )
        self.context.effects.clear()
        self.context.groups.clear()
        self.context.pending_removal.clear()
        self.context.removed_this_tick.clear()
        self.context.log.debug("Global reset released %d carrier(s)", len(live))
        # Run the released carriers through the normal path now rather than
        # leaving them to linger until their next update.
        for entity in live:
            self.lifecycle.on_entity_update(self, entity=entity)
            self.lifecycle.on_entity_update_late(self, entity=entity)

    # Event handlers -----------------------------------------------------

    def on_interaction_begin(self, sender, **kwargs):
        item_id = kwargs.get("item_id")
        if item_id == OWNERSHIP_SEVERING_ITEM_ID:
            self.begin_severing()
        elif item_id == GLOBAL_RESET_ITEM_ID:
            self.global_reset()

    def on_interaction_end(self, sender, **kwargs):
        if kwargs.get("item_id") == OWNERSHIP_SEVERING_ITEM_ID:
            self.end_severing()

    def on_tick_update(self, sender, **kwargs):
        if self.context.severing_open:
            self.context.log.warning("Ownership severing never completed, restoring carrier owners")
            self.end_severing()

    def on_projectile_spawn(self, sender, **kwargs):
        if self.lifecycle.is_managed(kwargs.get("spawner_entity")):
            self.context.game.remove_entity(kwargs.get("entity"))

    def on_entity_damage(self, sender, **kwargs):
        if self.lifecycle.is_managed(kwargs.get("entity")) or self.lifecycle.is_managed(kwargs.get("source_entity")):
            return False
        return None

    def on_entity_pre_collision(self, sender, **kwargs):
        if self.lifecycle.is_managed(kwargs.get("entity")) or self.lifecycle.is_managed(kwargs.get("other")):
            return True
        return None
