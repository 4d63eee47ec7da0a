from hidden_items.effects.context import EngineContext
from hidden_items.effects.records import CarrierState
from hidden_items.events.bus import EVENT_LEVEL_CHANGED, EVENT_ROOM_CHANGED
from hidden_items.systems.carrier_lifecycle_system import CarrierLifecycleSystem


class ScopeExpirySystem:
    """Drops room- and floor-scoped instances when the owner moves on.

    Instances added during the transition tick itself survive it.
    """

    def __init__(self, context: EngineContext, lifecycle: CarrierLifecycleSystem):
        self.context = context
        self.lifecycle = lifecycle
        context.subscribe(EVENT_ROOM_CHANGED, self.on_room_changed)
        context.subscribe(EVENT_LEVEL_CHANGED, self.on_level_changed)

    def on_room_changed(self, sender, **kwargs):
        frame = self.context.frame
        for key, instance in self.context.effects.items():
            if instance.room_scoped and instance.added_tick < frame:
                self.lifecycle.retire(key, CarrierState.EXPIRED.value)
            else:
                instance.failures = 0

    def on_level_changed(self, sender, **kwargs):
        frame = self.context.frame
        for key, instance in self.context.effects.items():
            if instance.floor_scoped and instance.added_tick < frame:
                self.lifecycle.retire(key, CarrierState.EXPIRED.value)
