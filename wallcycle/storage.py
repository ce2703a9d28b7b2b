"""JSON file helpers shared by the persisted stores."""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any, List

from .logging import get_logger

IMAGE_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".webp", ".bmp", ".gif"})


def _ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def expand_path(value: Any) -> Path:
    return Path(str(value)).expanduser()


def read_json(path: Path, default: Any) -> Any:
    """Return the decoded JSON at ``path`` or ``default`` when missing or corrupt."""

    if not path.exists():
        return default
    try:
        with path.open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
    except (OSError, ValueError) as exc:
        get_logger(__name__).warning("storage.read_failed", path=str(path), error=str(exc))
        return default
    return default if payload is None else payload


def write_json(path: Path, data: Any) -> None:
    """Write ``data`` atomically: temp file in the same directory, then ``os.replace``."""

    _ensure_parent(path)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


def is_image(path: Path) -> bool:
    return path.suffix.lower() in IMAGE_EXTENSIONS


def list_images(root: Path) -> List[Path]:
    """Recursively collect image files under ``root``; unreadable directories are skipped."""

    if not root.exists():
        return []
    if root.is_file():
        return [root] if is_image(root) else []

    found: List[Path] = []
    for dirpath, _dirnames, filenames in os.walk(root, onerror=lambda _err: None):
        for filename in filenames:
            candidate = Path(dirpath) / filename
            if is_image(candidate):
                found.append(candidate)
    found.sort()
    return found


def remove_empty_dirs(root: Path, *, keep_root: bool = True) -> int:
    """Delete empty directories below ``root`` bottom-up. Returns the number removed."""

    if not root.is_dir():
        return 0
    removed = 0
    for dirpath, _dirnames, _filenames in os.walk(root, topdown=False):
        current = Path(dirpath)
        if keep_root and current == root:
            continue
        try:
            current.rmdir()
            removed += 1
        except OSError:
            continue
    return removed
