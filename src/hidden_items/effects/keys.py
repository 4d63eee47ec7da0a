from __future__ import annotations

from esper import World

from hidden_items.components.familiar import Familiar
from hidden_items.components.owner import Owner, PlayerType


class InvalidOwner(ValueError):
    """Raised when an entity cannot receive hidden items."""


def owner_key(world: World, entity: int | None) -> str:
    """Stable identity of an owner across continues and flips.

    The host's ``init_seed`` is unreliable for exactly the characters that flip,
    so the key comes from the first collectible seed. The alternate form of a
    flipping character shares that seed with its twin and uses the second one.
    """
    if entity is None:
        raise InvalidOwner("No owner entity given")
    try:
        owner = world.component_for_entity(entity, Owner)
    except KeyError as exc:
        raise InvalidOwner(f"Entity {entity} is not an owner") from exc
    if owner.player_type == PlayerType.FLIPPING_ALT:
        return str(owner.collectible_seeds[1])
    return str(owner.collectible_seeds[0])


def carrier_key(world: World, entity: int) -> str:
    # Strings keep the keys usable as JSON object keys.
    return str(world.component_for_entity(entity, Familiar).init_seed)
