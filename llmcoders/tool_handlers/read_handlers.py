"""
File reading tool handler: read_text_file().
"""

import os
import re
from typing import Any

from llmcoders.tool_handlers._state import MAX_FILE_SIZE, _optional_int, _require_args_dict
from llmcoders.tool_handlers._path import PathRejected, _validate_path
from llmcoders.types import ToolResult

_LINE_SPLIT_RE = re.compile(r"\r?\n")


def read_file_text(path: str) -> str:
    """Read a whole UTF-8 file without newline translation."""
    with open(path, "r", encoding="utf-8", newline="") as f:
        return f.read()


def read_text_file(args: Any) -> ToolResult:
    args, err = _require_args_dict(args, "read_text_file")
    if err:
        return err
    user_path = args.get("path")
    try:
        path = _validate_path(user_path)
    except PathRejected as e:
        return e.to_result()

    head, err = _optional_int(args, "head")
    if err:
        return err
    tail, err = _optional_int(args, "tail")
    if err:
        return err
    if head is not None and tail is not None:
        return ToolResult.error("head_and_tail_conflict", path=user_path)

    try:
        size = os.path.getsize(path)
    except OSError as e:
        return ToolResult.error("file_read_error", path=user_path, detail=e.strerror or e)
    if size > MAX_FILE_SIZE:
        return ToolResult.error("file_too_large", path=user_path, bytes=size, max=MAX_FILE_SIZE)

    try:
        content = read_file_text(path)
    except (OSError, UnicodeDecodeError) as e:
        detail = e.strerror if isinstance(e, OSError) and e.strerror else e
        return ToolResult.error("file_read_error", path=user_path, detail=detail)

    if head is not None:
        return ToolResult.ok("\n".join(_LINE_SPLIT_RE.split(content)[:head]))
    if tail is not None:
        if tail == 0:
            return ToolResult.ok("")
        return ToolResult.ok("\n".join(_LINE_SPLIT_RE.split(content)[-tail:]))
    return ToolResult.ok(content)
