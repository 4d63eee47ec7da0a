from __future__ import annotations

import dataclasses
import random

from esper import World

from hidden_items.components.body import Body
from hidden_items.components.entity_data import EntityData
from hidden_items.components.entity_flags import EntityFlag, EntityFlags
from hidden_items.components.familiar import Familiar, FamiliarVariant
from hidden_items.components.owner import Owner, PlayerType
from hidden_items.components.projectile import Projectile
from hidden_items.constants import COSTUME_ITEM_ID, COSTUME_NAME, OWNERSHIP_SEVERING_ITEM_ID
from hidden_items.events.bus import (
    EVENT_ENTITY_APPEAR,
    EVENT_ENTITY_DAMAGE,
    EVENT_ENTITY_KILLED,
    EVENT_ENTITY_PRE_COLLISION,
    EVENT_ENTITY_UPDATE,
    EVENT_INTERACTION_BEGIN,
    EVENT_INTERACTION_END,
    EVENT_LEVEL_CHANGED,
    EVENT_OWNER_APPEARED,
    EVENT_OWNER_UPDATED,
    EVENT_PROJECTILE_SPAWN,
    EVENT_ROOM_CHANGED,
    EVENT_SESSION_STARTED,
    EVENT_TICK_UPDATE,
    EventBus,
)


class Game:
    """Host simulation: owns the entity world, the frame counter and callback dispatch.

    Everything here stands in for the game engine the hidden item manager
    runs inside. It creates entities, moves time forward and fires the
    lifecycle hooks; it knows nothing about hidden items.
    """

    def __init__(self, event_bus: EventBus | None = None, *, rng: random.Random | None = None):
        self.world = World()
        self.event_bus = event_bus or EventBus()
        self.random = rng or random.Random()
        self.frame_count = 0

    def _next_seed(self) -> int:
        return self.random.randrange(1, 2**32)

    # Entity creation -----------------------------------------------------

    def spawn_owner(
        self,
        player_type: PlayerType = PlayerType.REGULAR,
        *,
        collectible_seeds: tuple[int, int] | None = None,
        active: bool = True,
    ) -> int:
        seeds = collectible_seeds or (self._next_seed(), self._next_seed())
        entity = self.world.create_entity(
            Owner(
                player_type=player_type,
                init_seed=self._next_seed(),
                collectible_seeds=seeds,
                active=active,
            ),
            Body(),
            EntityData(),
        )
        self.event_bus.emit(EVENT_OWNER_APPEARED, entity=entity)
        return entity

    def add_item_wisp(self, owner_entity: int, item_id: int, *, init_seed: int | None = None) -> int:
        """Spawn an item wisp granting ``item_id`` to ``owner_entity``."""
        entity = self.world.create_entity(
            Familiar(
                variant=FamiliarVariant.ITEM_WISP,
                subtype=item_id,
                init_seed=init_seed if init_seed is not None else self._next_seed(),
                owner_entity=owner_entity,
            ),
            Body(),
            EntityFlags(EntityFlag.APPEAR),
            EntityData(),
        )
        if item_id == COSTUME_ITEM_ID:
            try:
                self.world.component_for_entity(owner_entity, Owner).costumes.add(COSTUME_NAME)
            except KeyError:
                pass
        self.event_bus.emit(EVENT_ENTITY_APPEAR, entity=entity)
        return entity

    def spawn_projectile(self, spawner_entity: int | None) -> int | None:
        """Fire a projectile. Returns ``None`` if a handler removed it on spawn."""
        entity = self.world.create_entity(Projectile(spawner_entity=spawner_entity), Body())
        self.event_bus.emit(EVENT_PROJECTILE_SPAWN, entity=entity, spawner_entity=spawner_entity)
        if not self.world.entity_exists(entity):
            return None
        return entity

    # Entity manipulation --------------------------------------------------

    def remove_costume(self, owner_entity: int, costume: str) -> None:
        try:
            owner = self.world.component_for_entity(owner_entity, Owner)
        except KeyError:
            return
        owner.costumes.discard(costume)

    def remove_from_orbit(self, entity: int) -> None:
        try:
            self.world.component_for_entity(entity, Familiar).in_orbit = False
        except KeyError:
            pass

    def remove_entity(self, entity: int) -> None:
        """Remove without death animation or sound."""
        if self.world.entity_exists(entity):
            self.world.delete_entity(entity, immediate=True)

    def kill_entity(self, entity: int) -> None:
        """Kill with the usual death animation, if the entity still exists."""
        if not self.world.entity_exists(entity):
            return
        self.event_bus.emit(EVENT_ENTITY_KILLED, entity=entity)
        self.world.delete_entity(entity, immediate=True)

    def damage(self, entity: int, amount: int, source_entity: int | None = None) -> bool:
        results = self.event_bus.emit(
            EVENT_ENTITY_DAMAGE,
            entity=entity,
            amount=amount,
            source_entity=source_entity,
        )
        return not any(result is False for result in results)

    def collide(self, entity: int, other: int) -> bool:
        results = self.event_bus.emit(EVENT_ENTITY_PRE_COLLISION, entity=entity, other=other)
        return not any(result is True for result in results)

    # Queries ---------------------------------------------------------------

    def owners(self) -> list[int]:
        return [entity for entity, _ in self.world.get_component(Owner)]

    def familiars(self, variant: FamiliarVariant | None = FamiliarVariant.ITEM_WISP) -> list[int]:
        return [
            entity
            for entity, familiar in self.world.get_component(Familiar)
            if variant is None or familiar.variant == variant
        ]

    # Time ------------------------------------------------------------------

    def step(self) -> None:
        """Advance the simulation by one tick."""
        self.frame_count += 1
        for entity, owner in list(self.world.get_component(Owner)):
            if owner.active:
                self.event_bus.emit(EVENT_OWNER_UPDATED, entity=entity)
        for entity in self.familiars(variant=None):
            if self.world.entity_exists(entity):
                self.event_bus.emit(EVENT_ENTITY_UPDATE, entity=entity)
        self.event_bus.emit(EVENT_TICK_UPDATE, frame=self.frame_count)

    def change_room(self) -> None:
        self.step()
        self.event_bus.emit(EVENT_ROOM_CHANGED, frame=self.frame_count)

    def change_level(self) -> None:
        self.step()
        self.event_bus.emit(EVENT_LEVEL_CHANGED, frame=self.frame_count)
        self.event_bus.emit(EVENT_ROOM_CHANGED, frame=self.frame_count)

    def use_item(self, owner_entity: int, item_id: int, *, interrupted: bool = False) -> None:
        """Use an active item. ``interrupted`` drops the closing callback."""
        self.event_bus.emit(EVENT_INTERACTION_BEGIN, item_id=item_id, owner_entity=owner_entity)
        if item_id == OWNERSHIP_SEVERING_ITEM_ID:
            for entity, familiar in list(self.world.get_component(Familiar)):
                if familiar.variant == FamiliarVariant.ITEM_WISP and familiar.owner_entity == owner_entity:
                    self.remove_entity(entity)
        if interrupted:
            return
        self.event_bus.emit(EVENT_INTERACTION_END, item_id=item_id, owner_entity=owner_entity)

    def start_session(self, continuing: bool) -> None:
        self.event_bus.emit(EVENT_SESSION_STARTED, continuing=continuing)

    def reload(self) -> None:
        """Quit and continue: entities come back with new ids, same seeds, fresh state."""
        owners = list(self.world.get_component(Owner))
        familiars = list(self.world.get_component(Familiar))
        remapped: dict[int, int] = {}
        for entity, owner in owners:
            copy = dataclasses.replace(owner, costumes=set(owner.costumes))
            self.world.delete_entity(entity, immediate=True)
            remapped[entity] = self.world.create_entity(copy, Body(), EntityData())
        for entity, familiar in familiars:
            copy = dataclasses.replace(familiar, owner_entity=remapped.get(familiar.owner_entity), in_orbit=True)
            self.world.delete_entity(entity, immediate=True)
            remapped[entity] = self.world.create_entity(
                copy,
                Body(),
                EntityFlags(EntityFlag.APPEAR),
                EntityData(),
            )
        for entity, _ in owners:
            self.event_bus.emit(EVENT_OWNER_APPEARED, entity=remapped[entity])
        for entity, _ in familiars:
            self.event_bus.emit(EVENT_ENTITY_APPEAR, entity=remapped[entity])
        self.start_session(continuing=True)


def create_game(event_bus: EventBus | None = None, *, rng: random.Random | None = None) -> Game:
    return Game(event_bus, rng=rng)
