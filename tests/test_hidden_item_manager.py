import logging

from esper import World

from hidden_items.constants import DEFAULT_GROUP
from hidden_items.events.bus import EVENT_HIDDEN_ITEM_ADDED, EVENT_HIDDEN_ITEM_REMOVED, EVENT_ROOM_CHANGED


def _assert_consistent(manager):
    assert manager.context.groups.consistent_with(manager.context.effects)


def test_add_and_remove_adjust_count(engine):
    game, manager, owner = engine

    manager.add(owner, 5, count=2)
    assert manager.count_stack(owner, 5) == 2
    manager.add(owner, 5)
    assert manager.count_stack(owner, 5) == 3
    manager.remove(owner, 5)
    assert manager.count_stack(owner, 5) == 2
    assert len(game.familiars()) == 2
    _assert_consistent(manager)


def test_remove_without_stacks_is_noop(engine):
    _game, manager, owner = engine

    manager.remove(owner, 5)
    manager.remove_stack(owner, 5)
    manager.remove_all(owner)

    assert manager.count_stack(owner, 5) == 0
    assert manager.get_stacks(owner) == {}


def test_room_scoped_stack_expires_on_room_change(engine):
    game, manager, owner = engine

    manager.add(owner, 5, duration=-1, count=2)
    assert manager.count_stack(owner, 5) == 2
    manager.add_for_room(owner, 5, count=1)
    assert manager.count_stack(owner, 5) == 3

    game.change_room()

    assert manager.count_stack(owner, 5) == 2
    assert len(game.familiars()) == 2
    _assert_consistent(manager)


def test_floor_scoped_stack_survives_rooms_but_not_floors(engine):
    game, manager, owner = engine
    manager.add_for_floor(owner, 6)
    manager.add_for_room(owner, 8)

    game.change_room()
    assert manager.count_stack(owner, 6) == 1
    assert manager.count_stack(owner, 8) == 0

    manager.add_for_room(owner, 8)
    game.change_level()
    assert manager.get_stacks(owner) == {}
    assert game.familiars() == []


def test_stack_added_during_transition_tick_survives_it(engine):
    game, manager, owner = engine
    game.step()

    manager.add_for_room(owner, 5)
    game.event_bus.emit(EVENT_ROOM_CHANGED, frame=game.frame_count)

    assert manager.count_stack(owner, 5) == 1


def test_check_stack_grows_then_shrinks(engine):
    game, manager, owner = engine

    manager.check_stack(owner, 7, 3)
    assert manager.count_stack(owner, 7) == 3
    assert all(instance.duration is None for instance in manager.instances(owner, 7))

    game.step()
    manager.check_stack(owner, 7, 1)
    assert manager.count_stack(owner, 7) == 1

    manager.check_stack(owner, 7, 1)
    assert manager.count_stack(owner, 7) == 1
    manager.check_stack(owner, 7, 0)
    assert not manager.has(owner, 7)
    _assert_consistent(manager)


def test_check_stack_removes_oldest_first(engine):
    game, manager, owner = engine
    manager.add(owner, 7)
    game.step()
    manager.add(owner, 7)
    game.step()
    manager.add(owner, 7)

    manager.check_stack(owner, 7, 1)

    assert [instance.added_tick for instance in manager.instances(owner, 7)] == [2]


def test_remove_breaks_ties_by_insertion_order(engine):
    _game, manager, owner = engine
    keys = manager.add(owner, 7, count=3)

    manager.remove(owner, 7)

    assert [instance.carrier_key for instance in manager.instances(owner, 7)] == keys[1:]


def test_remove_stack_and_remove_all_stay_in_group(engine):
    _game, manager, owner = engine
    manager.add(owner, 5, count=2)
    manager.add(owner, 6)
    manager.add(owner, 5, group="other")

    manager.remove_stack(owner, 5)
    assert manager.count_stack(owner, 5) == 0
    assert manager.count_stack(owner, 6) == 1

    manager.remove_all(owner)
    assert manager.get_stacks(owner) == {}
    assert manager.get_stacks(owner, group="other") == {5: 1}
    _assert_consistent(manager)


def test_groups_are_isolated(engine):
    _game, manager, owner = engine

    manager.add(owner, 9, group="A")

    assert not manager.has(owner, 9, group="B")
    assert not manager.has(owner, 9)
    assert manager.has(owner, 9, group="A")
    assert manager.instances(owner, 9, group="A")[0].group == "A"
    assert manager.add(owner, 9)
    assert manager.instances(owner, 9)[0].group == DEFAULT_GROUP


def test_get_stacks_is_a_point_in_time_copy(engine):
    _game, manager, owner = engine
    manager.add(owner, 5)
    stacks = manager.get_stacks(owner)

    manager.add(owner, 5)
    manager.add(owner, 6)

    assert stacks == {5: 1}
    assert manager.get_stacks(owner) == {5: 2, 6: 1}


def test_timed_stack_expires_after_duration(engine):
    game, manager, owner = engine
    manager.add(owner, 5, duration=3)

    for _ in range(3):
        game.step()
    assert manager.count_stack(owner, 5) == 1

    game.step()
    assert manager.count_stack(owner, 5) == 0
    assert game.familiars() == []


def test_invalid_item_is_logged_but_still_created(engine, caplog):
    _game, manager, owner = engine

    with caplog.at_level(logging.ERROR):
        manager.add(owner, 0)

    assert manager.count_stack(owner, 0) == 1
    assert manager.instances(owner, 0)[0].suspect
    assert "invalid item id" in caplog.text


def test_invalid_owner_degrades_to_noop(engine, caplog):
    game, manager, _owner = engine
    not_an_owner = game.world.create_entity()

    with caplog.at_level(logging.ERROR):
        assert manager.add(not_an_owner, 5) == []

    assert manager.count_stack(not_an_owner, 5) == 0
    assert not manager.has(not_an_owner, 5)
    assert manager.get_stacks(not_an_owner) == {}
    assert "is not an owner" in caplog.text
    assert game.familiars() == []


def test_added_and_removed_events(engine):
    game, manager, owner = engine
    added, removed = [], []
    game.event_bus.subscribe(EVENT_HIDDEN_ITEM_ADDED, lambda sender, **kw: added.append(kw))
    game.event_bus.subscribe(EVENT_HIDDEN_ITEM_REMOVED, lambda sender, **kw: removed.append(kw))

    [key] = manager.add(owner, 5, group="A")
    manager.remove(owner, 5, group="A")

    assert added == [{"carrier_key": key, "owner_entity": owner, "item_id": 5, "group": "A"}]
    assert removed == [{"carrier_key": key, "item_id": 5, "group": "A", "reason": "removed"}]


def test_manager_holds_no_module_state():
    from tests.helpers import make_engine

    game_a, manager_a, owner_a = make_engine(seed=1)
    game_b, manager_b, owner_b = make_engine(seed=2)
    manager_a.add(owner_a, 5)

    assert manager_b.get_stacks(owner_b) == {}
    assert isinstance(game_a.world, World) and game_a.world is not game_b.world
