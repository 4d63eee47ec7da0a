from dataclasses import dataclass
from enum import IntFlag


class EntityFlag(IntFlag):
    NONE = 0
    NO_QUERY = 1
    NO_REWARD = 2
    APPEAR = 4


@dataclass(slots=True)
class EntityFlags:
    flags: EntityFlag = EntityFlag.NONE
