"""Atomic text and JSON writes for checkpoint and state files."""

from __future__ import annotations

import json
import os
import tempfile
import time
from contextlib import suppress
from pathlib import Path
from typing import Any

_REPLACE_MAX_RETRIES = 8
_REPLACE_RETRY_SECONDS = 0.01


def _replace_with_retry(src: Path, dst: Path) -> None:
    """Move *src* over *dst*, retrying while another process holds *dst* open."""
    last_error: OSError | None = None
    for attempt in range(_REPLACE_MAX_RETRIES):
        try:
            src.replace(dst)
            return
        except PermissionError as exc:
            last_error = exc
        if attempt < _REPLACE_MAX_RETRIES - 1:
            time.sleep(_REPLACE_RETRY_SECONDS * (attempt + 1))
    if last_error is not None:
        raise last_error


def atomic_write_text(path: Path, content: str, *, encoding: str = "utf-8") -> None:
    """Write *content* to *path* so readers never observe a partial file.

    Parent directories are created.  Rewriting the same path replaces the
    previous content.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f"{path.name}.", suffix=".tmp", dir=str(path.parent))
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding=encoding, newline="") as handle:
            handle.write(content)
        _replace_with_retry(tmp_path, path)
    finally:
        with suppress(OSError):
            tmp_path.unlink(missing_ok=True)


def write_json(path: Path, data: Any) -> None:
    """Serialize *data* as indented JSON and write it atomically."""
    atomic_write_text(path, json.dumps(data, indent=2, ensure_ascii=False) + "\n")
