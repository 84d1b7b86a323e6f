from __future__ import annotations

import contextlib
import json
import os
import tempfile
from typing import Any, List


def write_json_atomic(path: str, payload: Any) -> None:
    """Replace ``path`` with ``payload`` as JSON. Readers see the old file or the new one, never a partial write."""
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    handle = tempfile.NamedTemporaryFile(
        "w", encoding="utf-8", dir=directory, prefix=".secmon-", suffix=".json", delete=False
    )
    try:
        with handle:
            json.dump(payload, handle, indent=2, default=str)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(handle.name, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(handle.name)
        raise


def read_json_list(path: str, max_items: int = 0) -> List[Any]:
    """Load the JSON array at ``path``; a missing, unreadable or non-list file reads as empty."""
    try:
        with open(path, "r", encoding="utf-8") as handle:
            loaded = json.load(handle)
    except (OSError, ValueError):
        return []
    if not isinstance(loaded, list):
        return []
    return loaded[-max_items:] if max_items > 0 else loaded
