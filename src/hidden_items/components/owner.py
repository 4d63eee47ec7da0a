from dataclasses import dataclass, field
from enum import IntEnum


class PlayerType(IntEnum):
    REGULAR = 0
    # Tainted Lazarus style characters: two owner entities that swap places.
    FLIPPING = 1
    FLIPPING_ALT = 2


FLIPPING_PLAYER_TYPES = frozenset({PlayerType.FLIPPING, PlayerType.FLIPPING_ALT})


@dataclass(slots=True)
class Owner:
    """A player-like actor that can receive hidden item effects.

    ``init_seed`` is the host's primary identity and is not stable across a
    continue or a flip. ``collectible_seeds`` survive both.
    """

    player_type: PlayerType = PlayerType.REGULAR
    init_seed: int = 0
    collectible_seeds: tuple[int, int] = (0, 0)
    active: bool = True
    costumes: set[str] = field(default_factory=set)
