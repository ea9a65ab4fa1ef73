"""Logging setup for the hmdl package.

All loggers live under the ``hmdl`` hierarchy and share a single stderr
handler, so the host application's root logger is never touched. Each record
is annotated with the session and user of the active MCP request context.
"""

from __future__ import annotations

import logging
import os
import sys

ROOT_LOGGER_NAME = "hmdl"

_FORMAT = "%(asctime)s - %(name)s%(identity)s - %(levelname)s - %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class MCPContextFilter(logging.Filter):
    """Add the ambient session/user identity to log records as ``identity``."""

    def filter(self, record: logging.LogRecord) -> bool:
        # Imported lazily: hmdl.context logs through this module.
        from .context import get_mcp_context

        ctx = get_mcp_context()
        parts = []
        if ctx is not None and ctx.session_id:
            parts.append(f"session:{ctx.session_id[:8]}")
        if ctx is not None and ctx.user_id:
            parts.append(f"user:{ctx.user_id}")
        record.identity = f" [{' '.join(parts)}]" if parts else ""
        return True


def _level_from_env() -> int:
    level_name = os.getenv("HEIMDALL_LOG_LEVEL", "WARNING").upper()
    level = logging.getLevelName(level_name)
    return level if isinstance(level, int) else logging.WARNING


def _configure_root() -> logging.Logger:
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if not any(getattr(h, "_hmdl_handler", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(_FORMAT, datefmt=_DATE_FORMAT))
        handler.addFilter(MCPContextFilter())
        handler._hmdl_handler = True  # type: ignore[attr-defined]
        root.addHandler(handler)
        root.setLevel(_level_from_env())
        root.propagate = False
    return root


def get_logger(name: str) -> logging.Logger:
    """Return a logger below the ``hmdl`` hierarchy."""
    _configure_root()
    if name == ROOT_LOGGER_NAME or name.startswith(f"{ROOT_LOGGER_NAME}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def set_debug(enabled: bool) -> None:
    """Switch the ``hmdl`` loggers between DEBUG and the environment level."""
    root = _configure_root()
    root.setLevel(logging.DEBUG if enabled else _level_from_env())
