"""
Path sandbox for tool handlers.

Every user path is joined to the working root, canonicalized with realpath
(so `..` segments and symlinks are resolved) and accepted only when the result
is the root itself or nested under it. The check runs on every call.
"""

import os
from typing import Any, Optional

from llmcoders.tool_handlers import _state
from llmcoders.types import ToolResult


class PathRejected(ValueError):
    """Raised by _validate_path; handlers turn it into an error result."""

    def __init__(self, reason: str, path: Any):
        self.reason = reason
        self.path = path
        super().__init__(f"{reason}: {path}")

    def to_result(self) -> ToolResult:
        return ToolResult.error(self.reason, path=self.path)


def _is_path_within_sandbox(path: str, sandbox_root: str) -> bool:
    try:
        resolved = os.path.realpath(path)
        sandbox_resolved = os.path.realpath(sandbox_root)
        return resolved == sandbox_resolved or resolved.startswith(sandbox_resolved.rstrip(os.sep) + os.sep)
    except (OSError, ValueError):
        return False


def resolve_path(user_path: Any, root: Optional[str] = None) -> str:
    """Resolve `user_path` against the working root.

    Returns the canonical absolute path, or raises PathRejected when the path
    is missing, not a string, or lands outside the root.
    """
    if user_path is None or user_path == "":
        raise PathRejected("missing_argument", "")
    if not isinstance(user_path, str):
        raise PathRejected("invalid_arguments", repr(user_path))
    if "\x00" in user_path:
        raise PathRejected("invalid_arguments", user_path.replace("\x00", "\\0"))

    sandbox_root = os.path.realpath(root) if root else _state.get_root()
    candidate = os.path.join(sandbox_root, os.path.expanduser(user_path))
    real_path = os.path.realpath(candidate)
    if not _is_path_within_sandbox(real_path, sandbox_root):
        raise PathRejected("path_outside_root", user_path)
    return real_path


def _validate_path(path: Any) -> str:
    return resolve_path(path)
