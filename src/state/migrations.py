from __future__ import annotations

import copy
import logging
from typing import Any, Callable, Dict, Mapping, Tuple

from .models import OLDEST_VERSION


logger = logging.getLogger(__name__)

Tree = Dict[str, Any]
Step = Callable[[Tree], Tree]


class MigrationError(ValueError):
    """Raised when a saved tree carries a version no migration path knows."""


def _from_0_0_0(tree: Tree) -> Tree:
    # 1.0.0 introduced cumulative statistics
    if not isinstance(tree.get("stats"), dict):
        tree["stats"] = {
            "enemiesDefeated": 0,
            "goldEarned": 0,
            "goldSpent": 0,
            "buildingsBuilt": 0,
            "buildingsDestroyed": 0,
            "wavesSurvived": 0,
        }
    return tree


# version -> (next version, step). Steps only add missing fields; anything
# they do not recognise is passed through untouched.
MIGRATIONS: Dict[str, Tuple[str, Step]] = {
    "0.0.0": ("1.0.0", _from_0_0_0),
}


def migrate(
    tree: Mapping[str, Any],
    current_version: str,
    *,
    steps: Mapping[str, Tuple[str, Step]] = MIGRATIONS,
) -> Tree:
    """
    Walk `tree` forward through `steps` until it reaches `current_version`.

    The input is not modified. A missing version is read as the oldest known
    version. A version that is neither current nor a known step raises
    `MigrationError`; the result is always stamped with `current_version`.
    """
    if not isinstance(tree, Mapping):
        raise MigrationError(f"Cannot migrate a {type(tree).__name__}")

    data: Tree = copy.deepcopy(dict(tree))
    version = data.get("version")
    if version is not None and not isinstance(version, str):
        raise MigrationError(f"Version must be a string, got {type(version).__name__}")
    version = version or OLDEST_VERSION
    start = version
    seen = set()

    while version != current_version:
        if version not in steps or version in seen:
            raise MigrationError(
                f"No migration path from version {version!r} to {current_version!r}"
            )
        seen.add(version)
        next_version, step = steps[version]
        logger.info("Migrating save data %s -> %s", version, next_version)
        data = step(data)
        version = next_version

    if start != current_version:
        logger.info("Migrated save data from %s to %s", start, current_version)
    data["version"] = current_version
    return data
