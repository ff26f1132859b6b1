"""
Shared constants, mutable state, and utility functions for tool handlers.

The CLI sets SANDBOX_ROOT at startup; when it is unset the process working
directory is the root. No module in tool_handlers/ imports the orchestrator.
"""

import os
from typing import Any, Dict, Optional, Tuple

from llmcoders.types import ToolResult


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MAX_FILE_SIZE = 1024 * 1024  # 1MB
MAX_SEARCH_RESULTS = 1000

# ---------------------------------------------------------------------------
# Mutable state (set at startup)
# ---------------------------------------------------------------------------

# Working-directory root every file tool is confined to
SANDBOX_ROOT: Optional[str] = None


# ---------------------------------------------------------------------------
# Utility functions
# ---------------------------------------------------------------------------

def get_root() -> str:
    """Canonical working root. Re-read on every call so a root change applies at once."""
    return os.path.realpath(SANDBOX_ROOT or os.getcwd())


def normalize_args(args: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(args, dict):
        return None
    return dict(args)


def _require_args_dict(args: Any, tool_name: str) -> Tuple[Optional[Dict[str, Any]], Optional[ToolResult]]:
    normalized = normalize_args(args)
    if normalized is None:
        return None, ToolResult.error("invalid_arguments", tool=tool_name, detail="expected object")
    return normalized, None


def _optional_int(args: Dict[str, Any], key: str) -> Tuple[Optional[int], Optional[ToolResult]]:
    """Read a non-negative whole number, accepting 10 and 10.0."""
    value = args.get(key)
    if value is None:
        return None, None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None, ToolResult.error("invalid_arguments", key=key, detail="expected number")
    if isinstance(value, float):
        if not value.is_integer():
            return None, ToolResult.error("invalid_arguments", key=key, detail="expected whole number")
        value = int(value)
    if value < 0:
        return None, ToolResult.error("invalid_arguments", key=key, detail="must be >= 0")
    return value, None
