from dataclasses import dataclass
from enum import IntEnum


class FamiliarVariant(IntEnum):
    ORBITAL = 0
    ITEM_WISP = 1


@dataclass(slots=True)
class Familiar:
    """A minion entity following an owner.

    Item wisps grant the passive effect of the collectible in ``subtype`` to
    ``owner_entity`` for as long as they exist.
    """

    variant: FamiliarVariant
    subtype: int
    init_seed: int
    owner_entity: int | None = None
    in_orbit: bool = True
