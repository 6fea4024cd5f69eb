from __future__ import annotations

import pytest

from state.models import (
    CURRENT_VERSION,
    OLDEST_VERSION,
    GameState,
    Stats,
    StateDecodeError,
    Tile,
    TileType,
    deserialize,
    encode_state,
    serialize,
    tile_id,
)


def test_serialize_uses_wire_keys_and_adds_saved_at():
    tree = serialize(GameState.example())

    assert set(tree) == {"version", "player", "tiles", "upgrades", "progress", "stats", "savedAt"}
    assert tree["player"] == {"gold": 500, "reputation": 150, "day": 5, "level": 3}
    assert tree["tiles"][0] == {
        "id": "tile_2_5",
        "type": "tavern",
        "level": 2,
        "x": 2,
        "y": 5,
        "hp": 200,
        "maxHp": 200,
    }
    assert tree["progress"]["currentWave"] == 12
    assert tree["stats"]["enemiesDefeated"] == 150
    assert tree["upgrades"]["goldProduction"] == 3


def test_serialize_is_a_detached_copy():
    state = GameState.example()
    tree = serialize(state)
    tree["player"]["gold"] = 1
    tree["tiles"].clear()

    assert state.player.gold == 500
    assert len(state.tiles) == 5


def test_deserialize_roundtrip():
    state = GameState.example()
    assert deserialize(serialize(state)) == state


def test_deserialize_fills_missing_sub_records_with_defaults():
    state = deserialize({"version": CURRENT_VERSION, "player": {"gold": 42}})

    assert state.player.gold == 42
    assert state.player.day == 1
    assert state.tiles == []
    assert state.stats == Stats()
    assert state.upgrades.turret_damage == 1
    assert state.progress.current_wave == 1


def test_deserialize_defaults_missing_version_to_oldest():
    assert deserialize({}).version == OLDEST_VERSION
    assert deserialize({"stats": None}).stats == Stats()


def test_deserialize_rederives_tile_id_from_coordinates():
    tree = {"tiles": [{"id": "tile_9_9", "x": 1, "y": 2, "type": "turret", "level": 1}]}
    state = deserialize(tree)

    assert state.tiles[0].id == "tile_1_2"
    assert state.tile_at(1, 2) is state.tiles[0]


@pytest.mark.parametrize("stored_id", [5, None, ["tile", 0, 0]])
def test_deserialize_replaces_non_string_tile_id(stored_id):
    state = deserialize({"tiles": [{"id": stored_id, "x": 0, "y": 0}]})

    assert state.tiles[0].id == "tile_0_0"


@pytest.mark.parametrize(
    "tree",
    [
        {"tiles": {"tile_0_0": {}}},
        {"tiles": [{"x": 0, "y": 0, "type": "castle"}]},
        {"tiles": [{"x": 0, "y": 0, "hp": 150, "maxHp": 100}]},
        {"tiles": [{"x": -1, "y": 0}]},
        {"tiles": [{"x": 0, "y": 0, "level": -2}]},
        {"player": {"gold": "lots"}},
    ],
)
def test_deserialize_rejects_invalid_trees(tree):
    with pytest.raises(StateDecodeError):
        deserialize(tree)


def test_deserialize_rejects_non_mapping():
    with pytest.raises(StateDecodeError):
        deserialize(["not", "a", "state"])  # type: ignore[arg-type]


def test_deserialize_ignores_unknown_fields():
    state = deserialize({"version": CURRENT_VERSION, "futureField": {"a": 1}, "player": {"gold": 7, "title": "Sir"}})
    assert state.player.gold == 7


def test_initialize_empty_grid():
    state = GameState()
    state.initialize_empty_grid()

    assert len(state.tiles) == 60
    assert state.tiles[0].id == "tile_0_0"
    assert state.tiles[6].id == "tile_0_1"
    assert all(t.type is TileType.EMPTY and t.level == 0 for t in state.tiles)


def test_tile_coordinates_are_immutable():
    tile = Tile(x=1, y=1)
    with pytest.raises(ValueError):
        tile.x = 2  # type: ignore[misc]
    assert tile.id == tile_id(1, 1)


def test_encode_state_is_canonical_json():
    text = encode_state(GameState.example())
    # sorted keys, compact separators
    assert text.startswith('{"player":{"day":5,"gold":500,')
    assert ", " not in text and ": " not in text
    assert '"maxHp":200' in text
