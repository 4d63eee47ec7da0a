from __future__ import annotations

from typing import Any, Dict

from hidden_items.components.body import Body, CollisionClass
from hidden_items.components.entity_data import EntityData
from hidden_items.components.entity_flags import EntityFlag, EntityFlags
from hidden_items.components.familiar import Familiar, FamiliarVariant
from hidden_items.components.owner import FLIPPING_PLAYER_TYPES, Owner
from hidden_items.constants import (
    CARRIER_PARK_POSITION,
    COSTUME_ITEM_ID,
    COSTUME_NAME,
    DATA_CLAIMED_TICK,
    DATA_LAST_OWNER_UPDATE,
    DATA_MANAGED,
    DATA_TAG,
    OWNER_INACTIVE_TICKS,
    ZERO_VECTOR,
)
from hidden_items.effects.context import EngineContext
from hidden_items.effects.keys import InvalidOwner, carrier_key, owner_key
from hidden_items.effects.records import CarrierState, EffectInstance, EntityRef
from hidden_items.events.bus import (
    EVENT_ENTITY_APPEAR,
    EVENT_ENTITY_UPDATE,
    EVENT_HIDDEN_ITEM_REMOVED,
    EVENT_OWNER_APPEARED,
    EVENT_OWNER_UPDATED,
    EVENT_SESSION_STARTED,
    PRIORITY_LATE,
)


class CarrierLifecycleSystem:
    """Spawns, hides, tags, validates and destroys item carriers.

    A carrier is an item wisp the host already knows how to turn into a
    passive effect. Every tick each carrier owned by this engine is pushed
    back into its hidden state and stamped as claimed; the late pass culls
    carriers that some engine once marked but nobody claimed this tick.
    """

    def __init__(self, context: EngineContext):
        self.context = context
        self.world = context.world
        self.game = context.game
        context.subscribe(EVENT_ENTITY_APPEAR, self.on_entity_appear)
        context.subscribe(EVENT_ENTITY_UPDATE, self.on_entity_update)
        context.subscribe(EVENT_ENTITY_UPDATE, self.on_entity_update_late, PRIORITY_LATE)
        context.subscribe(EVENT_OWNER_APPEARED, self.on_owner_appeared)
        context.subscribe(EVENT_OWNER_UPDATED, self.on_owner_updated)
        context.subscribe(EVENT_SESSION_STARTED, self.on_session_started)

    # Entity access -------------------------------------------------------

    def carrier_component(self, entity: int | None) -> Familiar | None:
        if entity is None or not self.world.entity_exists(entity):
            return None
        try:
            familiar = self.world.component_for_entity(entity, Familiar)
        except KeyError:
            return None
        if familiar.variant != FamiliarVariant.ITEM_WISP:
            return None
        return familiar

    def data_for(self, entity: int) -> Dict[str, Any]:
        try:
            return self.world.component_for_entity(entity, EntityData).values
        except KeyError:
            data = EntityData()
            self.world.add_component(entity, data)
            return data.values

    def is_managed(self, entity: int | None) -> bool:
        """True for carriers marked by any engine instance, not only this one."""
        if self.carrier_component(entity) is None:
            return False
        return bool(self.data_for(entity).get(DATA_MANAGED))

    def resolve_carrier(self, instance: EffectInstance) -> int | None:
        ref = instance.carrier
        if ref is None or instance.carrier_key is None:
            return None
        familiar = self.carrier_component(ref.entity)
        if familiar is None or str(familiar.init_seed) != instance.carrier_key:
            return None
        if self.data_for(ref.entity).get(DATA_TAG) != self.context.tag:
            return None
        return ref.entity

    def owner_matches(self, entity: int | None, key: str) -> bool:
        if entity is None or not self.world.entity_exists(entity):
            return False
        try:
            return owner_key(self.world, entity) == key
        except InvalidOwner:
            return False

    def resolve_owner(self, instance: EffectInstance) -> int | None:
        """Find the owner of ``instance``, re-resolving through its key if the handle went stale."""
        key = instance.owner_key
        candidates = []
        if instance.owner is not None:
            candidates.append(instance.owner.entity)
        carrier = self.resolve_carrier(instance)
        if carrier is not None:
            candidates.append(self.world.component_for_entity(carrier, Familiar).owner_entity)
        cached = self.context.owner_refs.get(key)
        if cached is not None:
            candidates.append(cached.entity)
        for entity in candidates:
            if self.owner_matches(entity, key):
                instance.owner = EntityRef(entity)
                return entity
        for entity in self.game.owners():
            if self.owner_matches(entity, key):
                instance.owner = EntityRef(entity)
                self.context.owner_refs[key] = EntityRef(entity)
                return entity
        return None

    def owner_inactive(self, owner_entity: int) -> bool:
        last_update = self.data_for(owner_entity).get(DATA_LAST_OWNER_UPDATE)
        return last_update is None or self.context.frame - last_update > OWNER_INACTIVE_TICKS

    def is_hidden_flip(self, owner_entity: int | None) -> bool:
        """The inactive half of a flipping character.

        Its carriers keep respawning even after a successful removal, so they
        are only killed once that half becomes active again.
        """
        if owner_entity is None or not self.world.entity_exists(owner_entity):
            return False
        try:
            owner = self.world.component_for_entity(owner_entity, Owner)
        except KeyError:
            return False
        return owner.player_type in FLIPPING_PLAYER_TYPES and self.owner_inactive(owner_entity)

    # Hiding and tagging --------------------------------------------------

    def hide(self, entity: int) -> None:
        try:
            body = self.world.component_for_entity(entity, Body)
        except KeyError:
            body = Body()
            self.world.add_component(entity, body)
        body.entity_collision = CollisionClass.NONE
        body.grid_collision = CollisionClass.NONE
        body.visible = False
        body.position = CARRIER_PARK_POSITION
        body.velocity = ZERO_VECTOR

    def hide_and_tag(self, entity: int) -> None:
        try:
            flags = self.world.component_for_entity(entity, EntityFlags)
        except KeyError:
            flags = EntityFlags()
            self.world.add_component(entity, flags)
        flags.flags = (flags.flags | EntityFlag.NO_QUERY | EntityFlag.NO_REWARD) & ~EntityFlag.APPEAR
        self.hide(entity)
        self.game.remove_from_orbit(entity)
        data = self.data_for(entity)
        data[DATA_MANAGED] = True
        data[DATA_TAG] = self.context.tag
        data[DATA_CLAIMED_TICK] = self.context.frame

    def initialize(self, entity: int, instance: EffectInstance) -> None:
        """Make ``entity`` the carrier of ``instance`` and index it."""
        self.hide_and_tag(entity)
        key = carrier_key(self.world, entity)
        familiar = self.world.component_for_entity(entity, Familiar)
        if familiar.owner_entity is not None:
            try:
                new_owner_key = owner_key(self.world, familiar.owner_entity)
            except InvalidOwner:
                new_owner_key = None
            if new_owner_key is not None:
                if new_owner_key != instance.owner_key:
                    self.context.groups.purge_key(key)
                    instance.owner_key = new_owner_key
                instance.owner = EntityRef(familiar.owner_entity)
                self.context.owner_refs[new_owner_key] = EntityRef(familiar.owner_entity)
        instance.carrier = EntityRef(entity)
        instance.initialized = True
        self.context.effects.insert(key, instance)
        self.context.groups.add(instance)

    def spawn(self, owner_entity: int, instance: EffectInstance) -> int | None:
        """Spawn and index a carrier, retrying while its seed collides with a tracked key."""
        for _ in range(self.context.max_respawn_attempts):
            entity = self.game.add_item_wisp(owner_entity, instance.item_id)
            # A colliding seed is culled as a duplicate by the appear handler.
            if not self.world.entity_exists(entity):
                continue
            key = carrier_key(self.world, entity)
            existing = self.context.effects.get(key)
            if existing is not None and existing is not instance:
                # An instance still waiting for its carrier adopts the wisp on appear.
                if self.resolve_carrier(existing) != entity:
                    self.kill(entity, undo_costume=False)
                continue
            self.initialize(entity, instance)
            return entity
        self.context.log.error(
            "Could not spawn a carrier with a free seed. Giving up on item #%s from group: %s",
            instance.item_id,
            instance.group,
        )
        return None

    def respawn(self, old_key: str, instance: EffectInstance, owner_entity: int) -> int | None:
        """Replace a lost carrier; the instance keeps its data under a new key."""
        self.context.effects.pop(old_key)
        self.context.groups.discard(instance, old_key)
        self.queue_removal(old_key)
        instance.carrier = None
        entity = self.spawn(owner_entity, instance)
        if entity is None:
            self.context.event_bus.emit(
                EVENT_HIDDEN_ITEM_REMOVED,
                carrier_key=old_key,
                item_id=instance.item_id,
                group=instance.group,
                reason="carrier_lost",
            )
        return entity

    def find_carrier(self, key: str) -> int | None:
        """A live item wisp with ``key`` that is untagged or tagged by this engine."""
        for entity in self.game.familiars():
            if carrier_key(self.world, entity) != key:
                continue
            if self.data_for(entity).get(DATA_TAG) in (None, self.context.tag):
                return entity
        return None

    def queue_removal(self, key: str) -> None:
        # Only carriers that still exist will update again and leave the queue.
        if self.find_carrier(key) is not None:
            self.context.pending_removal.add(key)

    # Destruction ---------------------------------------------------------

    def kill(self, entity: int, *, undo_costume: bool = True) -> None:
        """Revoke a carrier's effect without any visible or audible death."""
        familiar = self.carrier_component(entity)
        if familiar is None:
            return
        if undo_costume and familiar.subtype == COSTUME_ITEM_ID and familiar.owner_entity is not None:
            self.game.remove_costume(familiar.owner_entity, COSTUME_NAME)
        self.game.remove_from_orbit(entity)
        self.hide(entity)
        # Kill after remove revokes the effect while skipping the death animation.
        self.game.remove_entity(entity)
        self.game.kill_entity(entity)

    def retire(self, key: str, reason: str) -> EffectInstance | None:
        """Delete the instance behind ``key`` from both indices and revoke its carrier."""
        instance = self.context.effects.pop(key)
        if instance is None:
            return None
        self.context.groups.discard(instance, key)
        entity = self.resolve_carrier(instance)
        owner = self.resolve_owner(instance)
        if entity is None or self.is_hidden_flip(owner):
            self.queue_removal(key)
        else:
            self.kill(entity)
        instance.carrier = None
        instance.initialized = False
        self.context.event_bus.emit(
            EVENT_HIDDEN_ITEM_REMOVED,
            carrier_key=key,
            item_id=instance.item_id,
            group=instance.group,
            reason=reason,
        )
        return instance

    # Re-attachment -------------------------------------------------------

    def check_carrier(self, entity: int, *, adopt_stale: bool = False) -> None:
        """Adopt an untagged carrier an instance is waiting for, or cull it as a duplicate.

        With ``adopt_stale`` a carrier tagged by another engine instance is adopted
        too, as long as nobody claimed it this tick.
        """
        familiar = self.carrier_component(entity)
        if familiar is None:
            return
        data = self.data_for(entity)
        tag = data.get(DATA_TAG)
        if tag is not None and tag != self.context.tag:
            if not adopt_stale or data.get(DATA_CLAIMED_TICK) == self.context.frame:
                return
        key = carrier_key(self.world, entity)
        instance = self.context.effects.get(key)
        if instance is None:
            return
        current = self.resolve_carrier(instance)
        if current == entity:
            return
        self.hide(entity)
        if current is not None:
            # Flipping characters can bring back a second copy of a familiar with the same seed.
            self.context.log.debug("Culling duplicate carrier %s (%s)", key, CarrierState.DUPLICATE.value)
            self.kill(entity, undo_costume=False)
            return
        if familiar.owner_entity is None or not self.world.entity_exists(familiar.owner_entity):
            self.context.log.error(
                "Re-initialization of carrier %s failed, it has no owner. Giving up on item #%s from group: %s",
                key,
                instance.item_id,
                instance.group,
            )
            self.retire(key, CarrierState.OWNER_LOST.value)
            return
        self.initialize(entity, instance)

    def check_all(self, *, adopt_stale: bool = False) -> None:
        for entity in self.game.familiars():
            self.check_carrier(entity, adopt_stale=adopt_stale)

    # Event handlers -----------------------------------------------------

    def on_entity_appear(self, sender, **kwargs):
        self.check_carrier(kwargs.get("entity"))

    def on_entity_update(self, sender, **kwargs):
        entity = kwargs.get("entity")
        familiar = self.carrier_component(entity)
        if familiar is None:
            return
        data = self.data_for(entity)
        tag = data.get(DATA_TAG)
        if tag is not None and tag != self.context.tag:
            return
        key = carrier_key(self.world, entity)
        if key in self.context.pending_removal:
            self.hide(entity)
            if self.is_hidden_flip(familiar.owner_entity):
                data[DATA_CLAIMED_TICK] = self.context.frame
                return
            self.kill(entity)
            self.context.removed_this_tick.add(key)
            return
        instance = self.context.effects.get(key)
        if instance is None:
            if tag is not None:
                # Ours, but nothing claims it any more. Release it for the late pass.
                self.context.groups.purge_key(key)
                data.pop(DATA_TAG, None)
                data.pop(DATA_CLAIMED_TICK, None)
            return
        if self.resolve_carrier(instance) != entity:
            self.check_carrier(entity)
            if self.resolve_carrier(instance) != entity:
                return
        self.hide_and_tag(entity)
        if instance.expired(self.context.frame):
            self.retire(key, CarrierState.EXPIRED.value)
            return
        owner = familiar.owner_entity
        if owner is not None and not self.owner_matches(owner, instance.owner_key):
            self.retire(key, CarrierState.OWNER_LOST.value)

    def on_entity_update_late(self, sender, **kwargs):
        entity = kwargs.get("entity")
        if self.carrier_component(entity) is None:
            return
        data = self.data_for(entity)
        if not data.get(DATA_MANAGED):
            return
        if data.get(DATA_CLAIMED_TICK) == self.context.frame:
            return
        key = carrier_key(self.world, entity)
        instance = self.context.effects.get(key)
        if instance is not None and self.resolve_carrier(instance) is None:
            # Left behind by a closed engine instance whose records were restored here.
            self.check_carrier(entity, adopt_stale=True)
            if self.resolve_carrier(instance) == entity:
                return
        # Marked by some engine instance but claimed by none this tick.
        self.context.log.debug("Culling orphaned carrier %s", key)
        self.kill(entity)
        self.context.pending_removal.discard(key)

    def on_owner_appeared(self, sender, **kwargs):
        entity = kwargs.get("entity")
        try:
            key = owner_key(self.world, entity)
        except InvalidOwner:
            return
        self.context.owner_refs[key] = EntityRef(entity)

    def on_owner_updated(self, sender, **kwargs):
        entity = kwargs.get("entity")
        if entity is None or not self.world.entity_exists(entity):
            return
        self.data_for(entity)[DATA_LAST_OWNER_UPDATE] = self.context.frame

    def on_session_started(self, sender, **kwargs):
        if kwargs.get("continuing"):
            self.check_all()
        else:
            self.context.clear_state()
