# chatlog/storage/files.py
"""
Atomic JSON file primitives. Every other storage component reads and writes through these.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, TypeVar
from uuid import uuid4

from chatlog.core.canon import canonical_json

logger = logging.getLogger(__name__)

T = TypeVar("T")


def ensure_dir(path: str | Path) -> Path:
    """Create a directory (and parents). Safe to call repeatedly."""
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def read_json(path: str | Path, fallback: T) -> T:
    """
    Return the parsed content of `path`, or `fallback` if the file is missing, unreadable,
    not valid JSON, or not of the same JSON type as `fallback`. Never raises.
    """
    path = Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return fallback
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Unreadable %s, using fallback: %s", path, e)
        return fallback

    try:
        value = json.loads(raw)
    except (ValueError, RecursionError) as e:
        logger.warning("Corrupt JSON in %s, using fallback: %s", path, e)
        return fallback

    if fallback is not None and not isinstance(value, type(fallback)):
        logger.warning("Unexpected %s in %s, using fallback", type(value).__name__, path)
        return fallback
    return value


def write_json_atomic(path: str | Path, value: Any) -> None:
    """
    Persist `value` to `path` by writing a temporary sibling and renaming it over the
    destination. Readers see either the old or the new content, never a partial file.
    I/O errors propagate to the caller.
    """
    path = Path(path)
    tmp = path.with_name(f"{path.name}.{uuid4().hex}.tmp")
    try:
        with open(tmp, "wb") as f:
            f.write(canonical_json(value))
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
