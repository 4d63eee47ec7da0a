import json
import logging

from hidden_items.constants import DATA_TAG
from hidden_items.effects.keys import carrier_key
from hidden_items.manager import HiddenItemManager
from tests.helpers import body_of, data_of, destroy_carriers


def _seeds(game):
    return sorted(carrier_key(game.world, entity) for entity in game.familiars())


def test_snapshot_layout(engine):
    _game, manager, owner = engine
    [timed] = manager.add(owner, 5, duration=30)
    [room] = manager.add_for_room(owner, 6, group="A")

    state = manager.snapshot()

    assert state[timed] == {
        "item": 5,
        "group": manager.instances(owner, 5)[0].group,
        "duration": 30,
        "room": False,
        "floor": False,
        "added": 0,
        "owner": manager.instances(owner, 5)[0].owner_key,
    }
    assert state[room]["room"] is True
    assert state[room]["floor"] is True
    assert state[room]["duration"] is None
    assert json.loads(json.dumps(state)) == state


def test_restore_of_snapshot_keeps_stacks_and_carriers(engine):
    game, manager, owner = engine
    manager.add(owner, 5, count=2)
    manager.add_for_floor(owner, 6, duration=50)
    manager.add(owner, 7, group="A")
    game.step()
    stacks = (manager.get_stacks(owner), manager.get_stacks(owner, group="A"))
    carriers = set(game.familiars())

    manager.restore(manager.snapshot())

    assert (manager.get_stacks(owner), manager.get_stacks(owner, group="A")) == stacks
    [floor_item] = manager.instances(owner, 6)
    assert (floor_item.duration, floor_item.floor_scoped, floor_item.room_scoped) == (50, True, False)

    game.step()

    assert set(game.familiars()) == carriers
    assert (manager.get_stacks(owner), manager.get_stacks(owner, group="A")) == stacks
    assert manager.context.groups.consistent_with(manager.context.effects)


def test_continue_reattaches_carriers_in_a_fresh_engine(engine):
    game, manager, owner = engine
    manager.add(owner, 5, count=2)
    manager.add_for_room(owner, 6)
    game.step()
    state = manager.snapshot()
    seeds = _seeds(game)
    manager.close()

    game.reload()
    fresh = HiddenItemManager(game, name="TestMod")
    fresh.restore(state)

    [reloaded_owner] = game.owners()
    assert fresh.get_stacks(reloaded_owner) == {5: 2, 6: 1}
    for entity in game.familiars():
        assert body_of(game, entity).visible is False
        assert data_of(game, entity)[DATA_TAG] == fresh.tag

    game.step()

    assert _seeds(game) == seeds
    assert fresh.get_stacks(reloaded_owner) == {5: 2, 6: 1}


def test_same_engine_survives_continue(engine):
    game, manager, owner = engine
    manager.add(owner, 5, count=2)
    game.step()
    seeds = _seeds(game)

    game.reload()
    game.step()

    [reloaded_owner] = game.owners()
    assert _seeds(game) == seeds
    assert manager.count_stack(reloaded_owner, 5) == 2


def test_restore_respawns_missing_carriers(engine):
    game, manager, owner = engine
    manager.add(owner, 5)
    state = manager.snapshot()
    manager.close()
    destroy_carriers(game)

    fresh = HiddenItemManager(game, name="TestMod")
    fresh.restore(state)
    assert fresh.count_stack(owner, 5) == 1
    assert game.familiars() == []

    game.step()

    assert len(game.familiars()) == 1
    assert fresh.count_stack(owner, 5) == 1


def test_restore_none_resets_and_releases_carriers(engine):
    game, manager, owner = engine
    manager.add(owner, 5)

    manager.restore(None)
    assert manager.count_stack(owner, 5) == 0

    game.step()
    assert game.familiars() == []


def test_save_and_load_file(engine, tmp_path):
    _game, manager, owner = engine
    manager.add(owner, 5, count=2)
    path = tmp_path / "saves" / "hidden_items.json"

    manager.save(path)
    assert len(json.loads(path.read_text(encoding="utf-8"))) == 2

    manager.load(path)
    assert manager.count_stack(owner, 5) == 2


def test_missing_save_file_is_a_fresh_start(engine, tmp_path):
    _game, manager, owner = engine
    manager.add(owner, 5)

    manager.load(tmp_path / "missing.json")

    assert manager.count_stack(owner, 5) == 0


def test_corrupt_save_file_is_logged_and_ignored(engine, tmp_path, caplog):
    _game, manager, owner = engine
    path = tmp_path / "hidden_items.json"
    path.write_text("{not json", encoding="utf-8")

    with caplog.at_level(logging.ERROR):
        manager.load(path)

    assert manager.get_stacks(owner) == {}
    assert "corrupt" in caplog.text


def test_unreadable_entries_are_skipped(engine, caplog):
    _game, manager, owner = engine

    with caplog.at_level(logging.ERROR):
        manager.restore({"123": {"group": "g"}})

    assert len(manager.context.effects) == 0
    assert "unreadable" in caplog.text


def test_new_session_resets_engine(engine):
    game, manager, owner = engine
    manager.add(owner, 5)

    game.start_session(continuing=False)

    assert manager.count_stack(owner, 5) == 0


def test_restore_adopts_carriers_left_by_a_closed_engine(engine, caplog):
    game, manager, owner = engine
    manager.add(owner, 5, count=2)
    game.step()
    state = manager.snapshot()
    carriers = set(game.familiars())
    manager.close()

    fresh = HiddenItemManager(game, name="TestMod")
    fresh.restore(state)
    with caplog.at_level(logging.WARNING):
        game.step()
        game.step()

    assert set(game.familiars()) == carriers
    assert set(fresh.snapshot()) == set(state)
    assert [instance.failures for instance in fresh.instances(owner, 5)] == [0, 0]
    for entity in carriers:
        assert data_of(game, entity)[DATA_TAG] == fresh.tag
    assert "disappeared unexpectedly" not in caplog.text


def test_restore_takes_over_unclaimed_carriers_at_once(engine):
    game, manager, owner = engine
    manager.add(owner, 5)
    game.step()
    state = manager.snapshot()
    manager.close()
    game.step()

    fresh = HiddenItemManager(game, name="TestMod")
    fresh.restore(state)

    [carrier] = game.familiars()
    assert data_of(game, carrier)[DATA_TAG] == fresh.tag
    assert fresh.instances(owner, 5)[0].carrier.entity == carrier
