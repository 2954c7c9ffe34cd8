from __future__ import annotations

"""Helpers for reading and writing the durable JSON files.

The queue, registry and ledgers are plain UTF-8 JSON so they stay easy to
inspect and diff.  Callers are expected to hold the file lock from
:mod:`lock_utils`; these helpers only make each single write all-or-nothing.
"""

import json
import os
import tempfile
from pathlib import Path

from errors import StoreFormatError
from log_utils import get_logger

log = get_logger().bind(module=__name__)


def load_json(path: Path, default=None):
    """Return parsed JSON from ``path`` or ``default`` when missing.

    Invalid JSON raises :class:`StoreFormatError`; the file is left untouched.
    """
    if not path.exists():
        log.debug("load_json missing", path=str(path))
        return default
    text = path.read_text(encoding="utf-8")
    if not text.strip():
        return default
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        log.error("Failed to parse JSON", file=str(path), error=str(exc))
        raise StoreFormatError(f"{path}: {exc}") from exc


def load_json_list(path: Path) -> list:
    """Return the JSON array stored at ``path`` or an empty list."""
    data = load_json(path, default=[])
    if not isinstance(data, list):
        log.error("Expected JSON array", file=str(path), got=type(data).__name__)
        raise StoreFormatError(f"{path}: expected a JSON array")
    return data


def write_json(path: Path, data) -> None:
    """Serialise ``data`` to ``path`` replacing the file atomically.

    The payload is rendered before anything touches the disk and is written
    to a sibling temporary file first, so a failure never leaves a partial
    file behind.
    """
    text = json.dumps(data, ensure_ascii=False, indent=2)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(text + "\n")
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise
    log.debug("Wrote JSON", path=str(path))


def write_bytes(path: Path, data: bytes) -> None:
    """Store ``data`` at ``path`` via a temporary file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".part")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise
