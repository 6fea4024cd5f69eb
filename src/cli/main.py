from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from common.log import setup_logging
from state.migrations import MigrationError, migrate
from state.models import GameState, StateDecodeError, deserialize, serialize
from state.save_manager import SaveConfig, SaveManager
from storage.base import BackendError, KeyValueBackend
from storage.factory import BACKENDS, backend_from_env


logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="tavern-save",
        description="Inspect and manage a chunked game save on the configured backend.",
    )
    p.add_argument("--backend", choices=BACKENDS, help="Override TAVERN_STORAGE_BACKEND")
    p.add_argument("--log-level", default="WARNING")
    p.add_argument("--log-format", choices=("text", "json"), default="text")

    sub = p.add_subparsers(dest="command", required=True)
    sub.add_parser("inspect", help="Show load status and stray keys")
    exp = sub.add_parser("export", help="Write the saved state as JSON")
    exp.add_argument("path", nargs="?", help="Output file (stdout when omitted)")
    imp = sub.add_parser("import", help="Validate a JSON state file and save it")
    imp.add_argument("path")
    sub.add_parser("clear", help="Delete the save")
    sub.add_parser("seed-example", help="Save the built-in example state")
    return p


def _emit(result: Dict[str, Any]) -> None:
    print(json.dumps(result, indent=2, sort_keys=True))


async def _inspect(manager: SaveManager) -> Dict[str, Any]:
    result = await manager.load_detailed()
    out: Dict[str, Any] = {"ok": result.ok, "status": result.status.value}
    if result.detail:
        out["detail"] = result.detail
    if result.state is not None:
        out["version"] = result.state.version
        out["tiles"] = len(result.state.tiles)
        out["gold"] = result.state.player.gold
        out["currentWave"] = result.state.progress.current_wave
    try:
        out["orphanedKeys"] = await manager.orphaned_keys()
    except BackendError as ex:
        out["orphanedKeys"] = None
        out["listError"] = str(ex)
    return out


async def _export(manager: SaveManager, path: Optional[str]) -> int:
    result = await manager.load_detailed()
    if result.state is None:
        _emit({"ok": False, "status": result.status.value, "detail": result.detail})
        return 1
    text = json.dumps(serialize(result.state), indent=2, sort_keys=True, ensure_ascii=False)
    if path:
        Path(path).write_text(text + "\n", encoding="utf-8")
    else:
        print(text)
    return 0


async def _import(manager: SaveManager, path: str) -> int:
    try:
        tree = json.loads(Path(path).read_text(encoding="utf-8"))
        state = deserialize(migrate(tree, manager.config.current_version))
    except MigrationError as ex:
        _emit({"ok": False, "status": "unsupported_version", "detail": str(ex)})
        return 1
    except StateDecodeError as ex:
        _emit({"ok": False, "status": "invalid_state", "detail": str(ex)})
        return 1
    except (OSError, ValueError) as ex:
        _emit({"ok": False, "status": "unreadable", "detail": str(ex)})
        return 1
    ok = await manager.save(state)
    _emit({"ok": ok, "tiles": len(state.tiles)})
    return 0 if ok else 1


async def run(args: argparse.Namespace, backend: KeyValueBackend, config: SaveConfig) -> int:
    manager = SaveManager(backend, config)
    try:
        if args.command == "inspect":
            out = await _inspect(manager)
            _emit(out)
            return 0 if out["ok"] or out["status"] == "no_save" else 1
        if args.command == "export":
            return await _export(manager, args.path)
        if args.command == "import":
            return await _import(manager, args.path)
        if args.command == "clear":
            ok = await manager.clear()
            _emit({"ok": ok})
            return 0 if ok else 1
        if args.command == "seed-example":
            ok = await manager.save(GameState.example())
            _emit({"ok": ok})
            return 0 if ok else 1
    finally:
        await backend.aclose()
    raise AssertionError(f"unhandled command {args.command!r}")


def main(argv: Optional[List[str]] = None, *, backend: Optional[KeyValueBackend] = None) -> int:
    args = _build_parser().parse_args(argv)
    setup_logging(args.log_level, args.log_format)
    try:
        config = SaveConfig.from_env()
        store = backend or backend_from_env(args.backend)
    except (RuntimeError, ValueError) as ex:
        logger.error("%s", ex)
        _emit({"ok": False, "status": "config_error", "detail": str(ex)})
        return 1
    return asyncio.run(run(args, store, config))


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
