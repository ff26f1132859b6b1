"""
Search tool handlers: list_directory(), search_files().
"""

import os
import re
from functools import lru_cache
from typing import Any, List, Optional, Pattern

from llmcoders.tool_handlers import _state
from llmcoders.tool_handlers._state import MAX_SEARCH_RESULTS, _require_args_dict
from llmcoders.tool_handlers._path import PathRejected, _validate_path
from llmcoders.types import ToolResult


def _translate_glob(pattern: str) -> str:
    """Translate a glob into a regex body.

    Supports `**` (any depth), `*` and `?` (within one segment), `[...]`
    classes with `!` negation, and `{a,b}` alternation. Semantics follow
    picomatch with `nocase` and `dot` enabled; fnmatch has neither `**` nor
    `{a,b}`, and glob matches case-sensitively on POSIX.
    """
    out: List[str] = []
    i, n = 0, len(pattern)
    while i < n:
        c = pattern[i]
        if c == "*":
            if pattern.startswith("**", i):
                i += 2
                if i < n and pattern[i] == "/":
                    out.append("(?:.*/)?")
                    i += 1
                else:
                    out.append(".*")
                continue
            out.append("[^/]*")
        elif c == "?":
            out.append("[^/]")
        elif c == "[":
            first = i + 2 if pattern[i + 1:i + 2] in ("!", "^") else i + 1
            end = pattern.find("]", first + 1)
            if end < 0:
                out.append(re.escape(c))
            else:
                body = pattern[i + 1:end]
                if body[:1] in ("!", "^"):
                    body = "^" + body[1:]
                out.append("[" + body.replace("\\", "\\\\") + "]")
                i = end
        elif c == "{":
            end = _matching_brace(pattern, i)
            if end < 0:
                out.append(re.escape(c))
            else:
                options = _split_alternatives(pattern[i + 1:end])
                out.append("(?:" + "|".join(_translate_glob(opt) for opt in options) + ")")
                i = end
        else:
            out.append(re.escape(c))
        i += 1
    return "".join(out)


def _matching_brace(pattern: str, start: int) -> int:
    depth = 0
    for idx in range(start, len(pattern)):
        if pattern[idx] == "{":
            depth += 1
        elif pattern[idx] == "}":
            depth -= 1
            if depth == 0:
                return idx
    return -1


def _split_alternatives(body: str) -> List[str]:
    parts: List[str] = []
    depth = 0
    current = []
    for ch in body:
        if ch == "," and depth == 0:
            parts.append("".join(current))
            current = []
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
        current.append(ch)
    parts.append("".join(current))
    return parts


@lru_cache(maxsize=128)
def compile_glob(pattern: str) -> Pattern[str]:
    """Case-insensitive glob matcher over `/`-separated relative paths.

    Leading dots get no special treatment, so dotfiles match like any name.
    """
    normalized = pattern.replace("\\", "/")
    while normalized.startswith("./"):
        normalized = normalized[2:]
    body = _translate_glob(normalized)
    return re.compile(r"\A" + body + r"\Z", re.IGNORECASE | re.DOTALL)


def _glob_matches(pattern: str, rel_path: str) -> bool:
    return compile_glob(pattern).match(rel_path) is not None


def list_directory(args: Any) -> ToolResult:
    args, err = _require_args_dict(args, "list_directory")
    if err:
        return err
    user_path = args.get("path")
    try:
        path = _validate_path(user_path)
    except PathRejected as e:
        return e.to_result()

    if not os.path.isdir(path):
        return ToolResult.error("not_a_directory", path=user_path)
    try:
        with os.scandir(path) as it:
            entries = [(entry.is_dir(), entry.name) for entry in it]
    except OSError as e:
        return ToolResult.error("list_error", path=user_path, detail=e.strerror or e)

    if not entries:
        return ToolResult.ok("(empty directory)")
    entries.sort(key=lambda item: (not item[0], item[1]))
    lines = [f"[DIR] {name}/" if is_dir else f"[FILE] {name}" for is_dir, name in entries]
    return ToolResult.ok("\n".join(lines))


def _walk_matches(
    start: str,
    pattern: str,
    excludes: List[str],
    root: str,
    limit: int,
) -> List[str]:
    """Depth-first walk. Excluded entries are not reported but are still descended."""
    results: List[str] = []
    stack = [start]
    while stack:
        current = stack.pop()
        try:
            with os.scandir(current) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError:
            continue
        subdirs = []
        for entry in entries:
            rel = os.path.relpath(entry.path, start).replace(os.sep, "/")
            excluded = any(_glob_matches(ex, rel) for ex in excludes)
            if not excluded and _glob_matches(pattern, rel):
                results.append(os.path.relpath(entry.path, root).replace(os.sep, "/"))
                if len(results) >= limit:
                    return results
            try:
                if entry.is_dir(follow_symlinks=False):
                    subdirs.append(entry.path)
            except OSError:
                continue
        stack.extend(reversed(subdirs))
    return results


def _normalize_excludes(raw: Any) -> Optional[List[str]]:
    if raw is None:
        return []
    if isinstance(raw, str):
        return [raw]
    if isinstance(raw, list) and all(isinstance(item, str) for item in raw):
        return list(raw)
    return None


def search_files(args: Any) -> ToolResult:
    args, err = _require_args_dict(args, "search_files")
    if err:
        return err
    user_path = args.get("path")
    try:
        path = _validate_path(user_path)
    except PathRejected as e:
        return e.to_result()

    pattern = args.get("pattern")
    if not isinstance(pattern, str) or not pattern:
        return ToolResult.error("invalid_arguments", key="pattern", detail="expected non-empty string")
    excludes = _normalize_excludes(args.get("excludePatterns"))
    if excludes is None:
        return ToolResult.error("invalid_arguments", key="excludePatterns", detail="expected string array")
    if not os.path.isdir(path):
        return ToolResult.error("not_a_directory", path=user_path)

    matches = _walk_matches(path, pattern, excludes, _state.get_root(), MAX_SEARCH_RESULTS + 1)
    if not matches:
        return ToolResult.ok("no files found")
    truncated = len(matches) > MAX_SEARCH_RESULTS
    out = "\n".join(matches[:MAX_SEARCH_RESULTS])
    if truncated:
        out += "\n\n(results are truncated; refine path or pattern)"
    return ToolResult.ok(out)
