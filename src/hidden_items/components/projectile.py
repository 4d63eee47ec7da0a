from dataclasses import dataclass


@dataclass(slots=True)
class Projectile:
    spawner_entity: int | None = None
