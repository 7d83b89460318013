"""File helpers shared by the task, agent and sprint stores.

Documents are small JSON files rewritten wholesale, so writes go through a
temp file and ``os.replace``; readers report unusable files instead of
guessing at their content.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import IO, Any, Optional

import yaml
from loguru import logger

from .constants import WINDOWS_LOCK_BYTES
from .errors import IOFailureError
from .utils import _now_iso


def _lock_handle(handle: IO[str], nbytes: int) -> None:
    try:
        import fcntl
    except ImportError:
        if os.name != "nt":
            return
        import msvcrt
        handle.seek(0)
        handle.truncate(nbytes)
        handle.flush()
        msvcrt.locking(handle.fileno(), msvcrt.LK_LOCK, nbytes)
        return
    fcntl.flock(handle, fcntl.LOCK_EX)


def _unlock_handle(handle: IO[str], nbytes: int) -> None:
    try:
        import fcntl
    except ImportError:
        if os.name != "nt":
            return
        import msvcrt
        handle.seek(0)
        msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, nbytes)
        return
    fcntl.flock(handle, fcntl.LOCK_UN)


class FileLock:
    """Exclusive advisory lock on a sidecar ``*.lock`` file.

    Blocks until the lock is free.  Used by :class:`TaskStore` to serialise
    read-modify-write cycles between processes.
    """

    def __init__(self, lock_path: Path):
        self.lock_path = Path(lock_path)
        self.lock_bytes = WINDOWS_LOCK_BYTES
        self._handle: Optional[IO[str]] = None

    @property
    def held(self) -> bool:
        return self._handle is not None

    def __enter__(self) -> "FileLock":
        try:
            self.lock_path.parent.mkdir(parents=True, exist_ok=True)
            handle = open(self.lock_path, "w")
        except OSError as exc:
            raise IOFailureError(f"Cannot open lock file {self.lock_path}: {exc}") from exc
        try:
            _lock_handle(handle, self.lock_bytes)
        except OSError as exc:
            handle.close()
            raise IOFailureError(f"Cannot lock {self.lock_path}: {exc}") from exc
        self._handle = handle
        logger.trace("Acquired {}", self.lock_path)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            _unlock_handle(handle, self.lock_bytes)
        finally:
            handle.close()
        logger.trace("Released {}", self.lock_path)


def _atomic_write_json(path: Path, data: dict[str, Any]) -> None:
    """Write *data* as pretty-printed UTF-8 JSON (write-tmp-then-rename)."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2, ensure_ascii=False)
            handle.write("\n")
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    except OSError as exc:
        raise IOFailureError(f"Cannot write {path}: {exc}") from exc


def _parse(path: Path) -> Any:
    with open(path, "r", encoding="utf-8") as handle:
        if path.suffix in {".yaml", ".yml"}:
            return yaml.safe_load(handle)
        return json.load(handle)


def _load_data_with_error(
    path: Path,
    default: dict[str, Any],
) -> tuple[dict[str, Any], str | None]:
    """Read a JSON or YAML mapping, returning ``(data, error_message)``.

    A missing or empty file yields *default* with no error.  Parse and IO
    failures are reported, not raised, so callers decide whether a broken
    file is fatal (the task store) or ignorable (the config file).
    """
    if not path.exists():
        return default, None
    try:
        data = _parse(path)
    except (OSError, json.JSONDecodeError, yaml.YAMLError) as exc:
        return default, f"{path.name}: {exc.__class__.__name__}: {exc}"
    if data is None:
        return default, None
    if not isinstance(data, dict):
        return default, f"{path.name}: expected object, got {type(data).__name__}"
    return data, None


def _load_document(path: Path, default: dict[str, Any]) -> dict[str, Any]:
    """Load a JSON document, raising :class:`IOFailureError` if it is unusable.

    A missing file is not an error: *default* is returned.
    """
    data, err = _load_data_with_error(path, default)
    if err:
        raise IOFailureError(f"Cannot read {err}", details={"path": str(path)})
    return data


def _append_jsonl(path: Path, entry: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = dict(entry)
    payload.setdefault("timestamp", _now_iso())
    line = json.dumps(payload, ensure_ascii=False) + "\n"
    with open(path, "a", encoding="utf-8") as handle:
        handle.write(line)
        handle.flush()
        os.fsync(handle.fileno())


def _read_jsonl(path: Path, limit: Optional[int] = None) -> list[dict[str, Any]]:
    if not path.exists():
        return []
    lines = path.read_text(encoding="utf-8").splitlines()
    if limit is not None:
        lines = lines[-limit:] if limit > 0 else []
    entries: list[dict[str, Any]] = []
    for line in lines:
        if not line.strip():
            continue
        try:
            payload = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(payload, dict):
            entries.append(payload)
    return entries
