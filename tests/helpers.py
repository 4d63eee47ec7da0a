from __future__ import annotations

import random

from hidden_items.components.body import Body
from hidden_items.components.entity_data import EntityData
from hidden_items.components.familiar import Familiar
from hidden_items.manager import HiddenItemManager
from hidden_items.world import Game


def make_engine(*, seed: int = 1234, name: str = "TestMod", **kwargs) -> tuple[Game, HiddenItemManager, int]:
    """Build a game with one manager and one regular owner."""

    game = Game(rng=random.Random(seed))
    manager = HiddenItemManager(game, name=name, **kwargs)
    owner = game.spawn_owner()
    return game, manager, owner


def destroy_carriers(game: Game) -> None:
    """Simulate something outside the manager deleting every item wisp."""

    for entity in game.familiars():
        game.remove_entity(entity)


def single_carrier(game: Game) -> int:
    carriers = game.familiars()
    assert len(carriers) == 1
    return carriers[0]


def familiar_of(game: Game, entity: int) -> Familiar:
    return game.world.component_for_entity(entity, Familiar)


def body_of(game: Game, entity: int) -> Body:
    return game.world.component_for_entity(entity, Body)


def data_of(game: Game, entity: int) -> dict:
    return game.world.component_for_entity(entity, EntityData).values
