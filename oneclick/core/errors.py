"""
Error types and shared error-handling helpers for the rule engine.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, TypeVar

T = TypeVar("T")


class OneClickError(Exception):
    """Base class for rule engine errors."""


class StorageError(OneClickError):
    """Raised when remote or local rule storage cannot be read or written."""


class CacheFetchError(OneClickError):
    """Raised when the rule definitions for a scope cannot be loaded."""

    def __init__(self, work_item_type: str, project_id: str, reason: str) -> None:
        self.work_item_type = work_item_type
        self.project_id = project_id
        self.reason = reason
        super().__init__(f"Failed to load rules for {work_item_type!r} in project {project_id!r}: {reason}")


class ActionExecutionError(OneClickError):
    """Raised by an action whose side effect could not be performed."""

    def __init__(self, action_name: str, message: str) -> None:
        self.action_name = action_name
        self.message = message
        super().__init__(f"{action_name}: {message}")


class RuleValidationError(OneClickError):
    """Raised when a rule that is not valid is submitted for save."""


class TriggerEvaluationError(OneClickError):
    """Raised when a trigger cannot evaluate its payload; callers treat it as not firing."""


class MacroResolutionError(OneClickError):
    """Raised inside macro resolution; never escapes the resolver."""


@dataclass(frozen=True)
class ActionError:
    """First action failure captured while running a rule."""

    action_name: str
    message: str

    @classmethod
    def from_exception(cls, action_name: str, exc: BaseException) -> "ActionError":
        if isinstance(exc, ActionExecutionError):
            return cls(action_name=exc.action_name or action_name, message=exc.message)
        return cls(action_name=action_name, message=str(exc) or exc.__class__.__name__)


def _format_extra(extra: dict | None) -> str:
    if not extra:
        return ""
    parts: list[str] = []
    for key, value in extra.items():
        if value is None:
            continue
        parts.append(f"{key}={value}")
    return f" {' '.join(parts)}" if parts else ""


def log_exception(logger: logging.Logger, msg: str, *, extra: dict | None = None, exc: BaseException | None = None) -> None:
    """
    Log an exception with context. Uses logger.exception for stack traces.
    """
    suffix = _format_extra(extra)
    if exc is not None:
        logger.error(f"{msg}{suffix}: {exc}", exc_info=exc)
        return
    logger.exception(f"{msg}{suffix}")


def safe_json_load(path: str | Path, default: T, *, logger: logging.Logger | None = None, context: dict | None = None) -> T:
    """
    Best-effort JSON load with logging. Returns default when the file is missing or unreadable.
    """
    target = Path(path)
    if not target.exists():
        return default
    try:
        with target.open("r", encoding="utf-8") as f:
            return json.load(f)
    except Exception as exc:
        if logger:
            log_exception(logger, "JSON load failed", extra={"path": str(target), **(context or {})}, exc=exc)
        return default


def safe_json_dump_atomic(
    path: str | Path,
    data: Any,
    *,
    logger: logging.Logger | None = None,
    context: dict | None = None,
    indent: int = 2,
) -> bool:
    """
    Atomically write JSON to disk. Returns True on success, False otherwise.
    """
    target = Path(path)
    tmp_path: Optional[Path] = None
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=target.name, suffix=".tmp", dir=str(target.parent))
        tmp_path = Path(tmp_name)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=indent, default=str)
            f.flush()
            os.fsync(f.fileno())
        os.replace(str(tmp_path), str(target))
        return True
    except Exception as exc:
        if logger:
            log_exception(
                logger,
                "JSON atomic write failed",
                extra={"path": str(target), **(context or {})},
                exc=exc,
            )
        return False
    finally:
        if tmp_path and tmp_path.exists():
            try:
                tmp_path.unlink(missing_ok=True)
            except OSError as exc:
                logging.getLogger("errors").warning("Failed to cleanup temp JSON file %s: %s", tmp_path, exc)


__all__ = [
    "OneClickError",
    "StorageError",
    "CacheFetchError",
    "ActionExecutionError",
    "RuleValidationError",
    "TriggerEvaluationError",
    "MacroResolutionError",
    "ActionError",
    "log_exception",
    "safe_json_load",
    "safe_json_dump_atomic",
]
