"""
File writing tool handlers: write_file(), create_directory(), move_file().
"""

import os
import tempfile
from typing import Any

from llmcoders.tool_handlers import _state
from llmcoders.tool_handlers._state import _require_args_dict
from llmcoders.tool_handlers._path import PathRejected, _validate_path
from llmcoders.types import ToolResult, success_notice


def atomic_write(path: str, content: str) -> int:
    """Write `content` through a temp file in the same directory, then rename.

    Returns the number of bytes written. The target is either fully replaced
    or left untouched.
    """
    data = content.encode("utf-8")
    directory = os.path.dirname(path) or "."
    fd, tmp_path = tempfile.mkstemp(prefix=".llmcoders-", suffix=".tmp", dir=directory)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        if os.path.exists(path):
            try:
                os.chmod(tmp_path, os.stat(path).st_mode & 0o7777)
            except OSError:
                pass
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise
    return len(data)


def write_file(args: Any) -> ToolResult:
    args, err = _require_args_dict(args, "write_file")
    if err:
        return err
    user_path = args.get("path")
    try:
        path = _validate_path(user_path)
    except PathRejected as e:
        return e.to_result()

    content = args.get("content")
    if not isinstance(content, str):
        return ToolResult.error("invalid_arguments", key="content", detail="expected string")

    parent_dir = os.path.dirname(path)
    if not os.path.isdir(parent_dir):
        return ToolResult.error("parent_directory_missing", path=user_path)
    if os.path.isdir(path):
        return ToolResult.error("file_write_error", path=user_path, detail="is a directory")

    try:
        written = atomic_write(path, content)
    except OSError as e:
        return ToolResult.error("file_write_error", path=user_path, detail=e.strerror or e)
    return success_notice("write_file", path=user_path, bytes=written)


def create_directory(args: Any) -> ToolResult:
    args, err = _require_args_dict(args, "create_directory")
    if err:
        return err
    user_path = args.get("path")
    try:
        path = _validate_path(user_path)
    except PathRejected as e:
        return e.to_result()

    if os.path.exists(path) and not os.path.isdir(path):
        return ToolResult.error("not_a_directory", path=user_path)
    try:
        os.makedirs(path, exist_ok=True)
    except OSError as e:
        return ToolResult.error("mkdir_error", path=user_path, detail=e.strerror or e)
    return success_notice("create_directory", path=user_path)


def move_file(args: Any) -> ToolResult:
    args, err = _require_args_dict(args, "move_file")
    if err:
        return err
    user_source = args.get("source")
    user_dest = args.get("destination")
    try:
        source = _validate_path(user_source)
        destination = _validate_path(user_dest)
    except PathRejected as e:
        return e.to_result()

    if not os.path.lexists(source):
        return ToolResult.error("source_missing", path=user_source)
    if source == _state.get_root():
        return ToolResult.error("move_error", source=user_source, detail="cannot move the working root")
    if os.path.lexists(destination):
        return ToolResult.error("destination_exists", path=user_dest)
    if not os.path.isdir(os.path.dirname(destination)):
        return ToolResult.error("parent_directory_missing", path=user_dest)

    try:
        os.rename(source, destination)
    except OSError as e:
        return ToolResult.error("move_error", source=user_source, destination=user_dest, detail=e.strerror or e)
    return success_notice("move_file", source=user_source, destination=user_dest)
