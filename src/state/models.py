from __future__ import annotations

import json
import logging
import time
from datetime import datetime, UTC
from enum import Enum
from typing import Any, Dict, List, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel


logger = logging.getLogger(__name__)

CURRENT_VERSION = "1.0.0"
OLDEST_VERSION = "0.0.0"

GRID_COLS = 6
GRID_ROWS = 10


class StateDecodeError(ValueError):
    """Raised when a plain tree cannot be turned into a GameState."""


def _now_ms() -> int:
    return int(time.time() * 1000)


def tile_id(x: int, y: int) -> str:
    return f"tile_{x}_{y}"


class _Record(BaseModel):
    # Wire format uses camelCase keys (maxHp, currentWave, ...)
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
    )


class TileType(str, Enum):
    EMPTY = "empty"
    TAVERN = "tavern"
    TURRET = "turret"
    BARRICADE = "barricade"
    GOLD_MINE = "gold_mine"
    WORKSHOP = "workshop"


class Player(_Record):
    gold: int = 100
    reputation: int = 0
    day: int = 1
    level: int = 1


class Tile(_Record):
    """
    One grid cell. `id` is derived from the coordinates and never stored
    independently; a mismatching id on input is replaced.
    """

    id: str = Field(default="", frozen=True)
    x: int = Field(..., ge=0, frozen=True)
    y: int = Field(..., ge=0, frozen=True)
    type: TileType = TileType.EMPTY
    level: int = Field(default=0, ge=0, description="Building level (0 = no building)")
    hp: int = Field(default=100, ge=0)
    max_hp: int = Field(default=100, ge=0)

    @field_validator("id", mode="before")
    @classmethod
    def stored_id_as_text(cls, v: Any) -> str:
        # Any stored id is only compared and then replaced below
        if v is None:
            return ""
        return v if isinstance(v, str) else str(v)

    @model_validator(mode="after")
    def derive_id_and_check_hp(self) -> "Tile":
        expected = tile_id(self.x, self.y)
        if self.id != expected:
            if self.id:
                logger.warning("Tile id %r does not match coordinates; using %r", self.id, expected)
            # bypass validate_assignment to avoid re-entering this validator
            object.__setattr__(self, "id", expected)
        if self.hp > self.max_hp:
            raise ValueError(f"hp ({self.hp}) exceeds maxHp ({self.max_hp})")
        return self


class Upgrades(_Record):
    turret_damage: int = 1
    turret_range: int = 1
    turret_speed: int = 1
    barricade_hp: int = 1
    gold_production: int = 1
    workshop_speed: int = 1


class Progress(_Record):
    current_wave: int = 1
    max_wave_cleared: int = 0
    total_play_time: int = Field(default=0, description="Seconds")
    last_save_time: int = Field(default_factory=_now_ms, description="Epoch milliseconds")


class Stats(_Record):
    enemies_defeated: int = 0
    gold_earned: int = 0
    gold_spent: int = 0
    buildings_built: int = 0
    buildings_destroyed: int = 0
    waves_survived: int = 0


class GameState(_Record):
    """
    Complete persisted game state.

    Every sub-record carries defaults so a state can always be built from
    partial input. The serialized form adds a `savedAt` timestamp that is not
    part of the model itself.
    """

    version: str = CURRENT_VERSION
    player: Player = Field(default_factory=Player)
    tiles: List[Tile] = Field(default_factory=list)
    upgrades: Upgrades = Field(default_factory=Upgrades)
    progress: Progress = Field(default_factory=Progress)
    stats: Stats = Field(default_factory=Stats)

    def initialize_empty_grid(self, cols: int = GRID_COLS, rows: int = GRID_ROWS) -> None:
        self.tiles = [Tile(x=x, y=y) for y in range(rows) for x in range(cols)]

    def tile_at(self, x: int, y: int) -> Tile | None:
        key = tile_id(x, y)
        for t in self.tiles:
            if t.id == key:
                return t
        return None

    @classmethod
    def example(cls) -> "GameState":
        """Sample state with a handful of buildings, used by tests and the CLI."""
        return cls(
            player=Player(gold=500, reputation=150, day=5, level=3),
            tiles=[
                Tile(x=2, y=5, type=TileType.TAVERN, level=2, hp=200, max_hp=200),
                Tile(x=1, y=5, type=TileType.TURRET, level=1),
                Tile(x=3, y=5, type=TileType.TURRET, level=1),
                Tile(x=2, y=4, type=TileType.BARRICADE, level=1, hp=150, max_hp=150),
                Tile(x=0, y=6, type=TileType.GOLD_MINE, level=2, hp=80, max_hp=80),
            ],
            upgrades=Upgrades(
                turret_damage=3,
                turret_range=2,
                turret_speed=2,
                barricade_hp=2,
                gold_production=3,
                workshop_speed=1,
            ),
            progress=Progress(current_wave=12, max_wave_cleared=15, total_play_time=3600),
            stats=Stats(
                enemies_defeated=150,
                gold_earned=5000,
                gold_spent=4500,
                buildings_built=25,
                buildings_destroyed=3,
                waves_survived=15,
            ),
        )


def serialize(state: GameState) -> Dict[str, Any]:
    """Plain, behaviour-free copy of `state` plus a `savedAt` timestamp."""
    tree = state.model_dump(mode="json", by_alias=True)
    tree["savedAt"] = datetime.now(UTC).isoformat(timespec="milliseconds")
    return tree


def deserialize(tree: Mapping[str, Any]) -> GameState:
    """Rebuild a GameState from a plain tree.

    Missing version defaults to the oldest known version and missing
    sub-records to their defaults. Anything structurally invalid raises
    `StateDecodeError`; no partially populated state is ever returned.
    """
    if not isinstance(tree, Mapping):
        raise StateDecodeError(f"State tree must be a mapping, got {type(tree).__name__}")

    data = {k: v for k, v in tree.items() if k != "savedAt"}
    data["version"] = data.get("version") or OLDEST_VERSION
    # None is treated as "missing" for whole sub-records
    for name in ("player", "tiles", "upgrades", "progress", "stats"):
        if name in data and data[name] is None:
            data.pop(name)

    try:
        return GameState.model_validate(data)
    except ValidationError as ex:
        raise StateDecodeError(f"Invalid state tree: {ex.error_count()} error(s)") from ex


def encode_state(state: GameState) -> str:
    # Deterministic JSON: stable key order, no extra whitespace
    return encode_tree(serialize(state))


def encode_tree(tree: Mapping[str, Any]) -> str:
    return json.dumps(tree, separators=(",", ":"), sort_keys=True, ensure_ascii=False)
