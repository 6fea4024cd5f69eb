"""
Game state models and their chunked, versioned persistence.

`models` defines the schema and its plain-tree form, `migrations` walks old
trees forward, and `save_manager` splits, writes, reassembles and clears the
encoded state on a size-limited key-value backend.
"""

from .models import GameState, Tile, TileType, deserialize, serialize
from .save_manager import LoadResult, LoadStatus, SaveConfig, SaveManager

__all__ = [
    "GameState",
    "Tile",
    "TileType",
    "serialize",
    "deserialize",
    "SaveManager",
    "SaveConfig",
    "LoadResult",
    "LoadStatus",
]
