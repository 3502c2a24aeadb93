"""Durable JSON storage helpers.

Every state file is written to a temporary sibling and renamed over the
target, so a crash mid-write leaves the previous version intact. Reads fail
closed: a file that exists but cannot be decoded raises instead of being
treated as empty.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Optional, Union

from .errors import CorruptStateError

logger = logging.getLogger(__name__)


def write_json_atomic(path: Union[str, Path], data: Any) -> Path:
    """Write ``data`` as pretty-printed JSON to ``path`` atomically."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, sort_keys=True, default=str)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise

    logger.debug(f"Wrote {path}")
    return path


def read_json(path: Union[str, Path]) -> Optional[Any]:
    """Read JSON from ``path``.

    Returns:
        The decoded document, or None when the file does not exist.

    Raises:
        CorruptStateError: the file exists but is not valid JSON.
    """
    path = Path(path)
    if not path.exists():
        return None

    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise CorruptStateError(path, str(e)) from e
