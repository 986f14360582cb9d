"""
Per-user key/value documents kept on the local disk.

Holds the rule cache entries and the rule order records. Each key maps to
one JSON file under ``<base_dir>/<user_id>/``; writes are atomic so a
crash mid-write never leaves a half-written cache entry behind.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any

from ..core.errors import safe_json_dump_atomic, safe_json_load

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class LocalSettingsStore:
    def __init__(self, base_dir: str | Path, user_id: str = "local-user") -> None:
        self.base_dir = Path(base_dir).expanduser()
        self.user_id = user_id
        self.logger = logging.getLogger("storage.local")

    @property
    def user_dir(self) -> Path:
        return self.base_dir / _UNSAFE_CHARS.sub("_", self.user_id)

    def path_for(self, key: str) -> Path:
        return self.user_dir / f"{_UNSAFE_CHARS.sub('_', key)}.json"

    def read(self, key: str, default: Any = None) -> Any:
        return safe_json_load(self.path_for(key), default, logger=self.logger, context={"key": key})

    def write(self, key: str, value: Any) -> bool:
        return safe_json_dump_atomic(self.path_for(key), value, logger=self.logger, context={"key": key})

    def delete(self, key: str) -> None:
        path = self.path_for(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            self.logger.warning("Failed to remove local setting %s: %s", path, exc)


def scoped_key(prefix: str, project_id: str, work_item_type: str) -> str:
    """Key for a per-scope document, ``<prefix>_<projectId>_<workItemType>``."""
    return f"{prefix}_{project_id}_{work_item_type}"


__all__ = ["LocalSettingsStore", "scoped_key"]
