"""
Logging configuration utilities.

The engine logs through named loggers (``rules.cache``, ``rules.host``,
``macros`` and so on); this helper only wires the root logger with a
consistent format for the CLI and embedding applications.
"""

import logging
from typing import Optional, Union


def resolve_level(level: Union[int, str]) -> int:
    """Map a level name such as ``"debug"`` to its numeric value."""
    if isinstance(level, int):
        return level
    return getattr(logging, str(level).strip().upper(), logging.INFO)


def setup_logging(level: Union[int, str] = logging.INFO, log_file: Optional[str] = None) -> None:
    """Configure root logger with a basic formatter.

    Parameters
    ----------
    level: int | str
        Logging level (e.g. ``logging.INFO`` or ``"DEBUG"``).
    log_file: Optional[str]
        Optional file path to log to. If provided, logs are also written to
        the specified file.
    """
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=resolve_level(level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
        force=True,
    )
