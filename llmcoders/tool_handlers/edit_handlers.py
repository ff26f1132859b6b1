"""
Text editing tool handlers: edit_text_file(), edit_text_file_by_range().

Both handlers compute every edit against one snapshot of the file, reject the
whole batch on any failure, and write through atomic_write().
"""

import re
from typing import Any, Dict, List, Optional, Tuple

from llmcoders.tool_handlers._state import _require_args_dict
from llmcoders.tool_handlers._path import PathRejected, _validate_path
from llmcoders.tool_handlers.read_handlers import read_file_text
from llmcoders.tool_handlers.write_handlers import atomic_write
from llmcoders.types import ToolResult, success_notice

_EOL_RE = re.compile(r"\r\n|\n|\r")
_ANY_EOL = r"(?:\r\n|\n|\r)"


def _literal_pattern(old_text: str) -> "re.Pattern[str]":
    """Exact-literal regex whose line breaks match CRLF, LF or CR."""
    pieces = _EOL_RE.split(old_text)
    return re.compile(_ANY_EOL.join(re.escape(piece) for piece in pieces))


def _load(user_path: Any) -> Tuple[Optional[str], Optional[str], Optional[ToolResult]]:
    try:
        path = _validate_path(user_path)
    except PathRejected as e:
        return None, None, e.to_result()
    try:
        return path, read_file_text(path), None
    except (OSError, UnicodeDecodeError) as e:
        detail = e.strerror if isinstance(e, OSError) and e.strerror else e
        return None, None, ToolResult.error("file_read_error", path=user_path, detail=detail)


def _commit(path: str, user_path: Any, content: str) -> Optional[ToolResult]:
    try:
        atomic_write(path, content)
    except OSError as e:
        return ToolResult.error("file_write_error", path=user_path, detail=e.strerror or e)
    return None


def _splice(original: str, spans: List[Tuple[int, int, int, str]]) -> str:
    """Apply (start, end, index, text) replacements from the highest offset down."""
    out = original
    for start, end, _, text in sorted(spans, reverse=True):
        out = out[:start] + text + out[end:]
    return out


def _edits_list(args: Dict[str, Any]) -> Tuple[Optional[List[Dict[str, Any]]], Optional[ToolResult]]:
    edits = args.get("edits")
    if not isinstance(edits, list) or not edits:
        return None, ToolResult.error("invalid_arguments", key="edits", detail="expected non-empty array")
    for i, edit in enumerate(edits):
        if not isinstance(edit, dict):
            return None, ToolResult.error("invalid_arguments", key="edits", index=i, detail="expected object")
    return edits, None


def find_literal_spans(content: str, old_text: str) -> List[Tuple[int, int]]:
    if not old_text:
        return []
    return [m.span() for m in _literal_pattern(old_text).finditer(content)]


def edit_text_file(args: Any) -> ToolResult:
    args, err = _require_args_dict(args, "edit_text_file")
    if err:
        return err
    edits, err = _edits_list(args)
    if err:
        return err
    for i, edit in enumerate(edits):
        if not isinstance(edit.get("oldText"), str) or not isinstance(edit.get("newText"), str):
            return ToolResult.error("invalid_arguments", key="edits", index=i, detail="oldText and newText must be strings")
    dry_run = bool(args.get("dryRun", False))

    user_path = args.get("path")
    path, original, err = _load(user_path)
    if err:
        return err

    spans: List[Tuple[int, int, int, str]] = []
    not_found: List[int] = []
    for i, edit in enumerate(edits):
        found = find_literal_spans(original, edit["oldText"])
        if not found:
            not_found.append(i)
        spans.extend((start, end, i, edit["newText"]) for start, end in found)
    if not_found:
        indices = ",".join(str(i) for i in not_found)
        return ToolResult.error("edit_failed", not_found_indices=f"[{indices}]", path=user_path)

    spans.sort()
    for prev, cur in zip(spans, spans[1:]):
        if cur[0] < prev[1]:
            return ToolResult.error("overlapping_matches", indices=f"{prev[2]},{cur[2]}", path=user_path)

    updated = _splice(original, spans)
    if not dry_run and updated != original:
        err = _commit(path, user_path, updated)
        if err:
            return err
    return success_notice("edit_text_file", replacements=len(spans), path=user_path, dryRun=dry_run)


def _line_starts(content: str) -> List[int]:
    """Offsets of each 1-based line; a trailing newline does not open a new line."""
    starts = [0]
    for m in re.finditer("\n", content):
        starts.append(m.end())
    if starts[-1] == len(content) and len(starts) > 1:
        starts.pop()
    if not content:
        return []
    return starts


def detect_eol(content: str) -> str:
    return "\r\n" if "\r\n" in content else "\n"


def _range_args(edit: Dict[str, Any], index: int) -> Tuple[Optional[Tuple[int, int, str]], Optional[ToolResult]]:
    start_line = edit.get("startLine")
    line_count = edit.get("lineCount")
    new_text = edit.get("newText", "")
    for key, value in (("startLine", start_line), ("lineCount", line_count)):
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        if isinstance(value, bool) or not isinstance(value, int):
            return None, ToolResult.error("invalid_arguments", key=key, index=index, detail="expected integer")
        if key == "startLine":
            start_line = value
        else:
            line_count = value
    if not isinstance(new_text, str):
        return None, ToolResult.error("invalid_arguments", key="newText", index=index, detail="expected string")
    return (start_line, line_count, new_text), None


def range_edit_offsets(content: str, start_line: int, line_count: int) -> Optional[Tuple[int, int]]:
    """Character span covered by a line range, or None when out of bounds."""
    starts = _line_starts(content)
    total = len(starts)
    if start_line < 1 or line_count < 0 or start_line > total + 1:
        return None
    if start_line == total + 1 and line_count > 0:
        return None
    end_line = start_line + line_count
    if end_line > total + 1:
        return None
    start_idx = starts[start_line - 1] if start_line <= total else len(content)
    end_idx = starts[end_line - 1] if end_line <= total else len(content)
    return start_idx, end_idx


def _fit_replacement(text: str, eol: str, start_idx: int, end_idx: int, content: str) -> str:
    """Make replacement text keep line boundaries intact around its span."""
    if not text:
        return text
    replaced = content[start_idx:end_idx]
    terminated = content.endswith(("\n", "\r"))
    # Replacement text ends its own line unless the file itself ends unterminated.
    ends_line = end_idx < len(content) or replaced.endswith(("\n", "\r"))
    if start_idx == len(content) and terminated:
        ends_line = True
    if not text.endswith(("\n", "\r")) and ends_line:
        text += eol
    # Appending after an unterminated last line starts a new line.
    if start_idx == len(content) and content and not terminated:
        text = eol + text
    return text


def _count_lines(text: str, eol: str) -> int:
    if not text:
        return 0
    if text.endswith(eol):
        text = text[:-len(eol)]
    return len(_EOL_RE.split(text))


def edit_text_file_by_range(args: Any) -> ToolResult:
    args, err = _require_args_dict(args, "edit_text_file_by_range")
    if err:
        return err
    edits, err = _edits_list(args)
    if err:
        return err
    parsed: List[Tuple[int, int, str]] = []
    for i, edit in enumerate(edits):
        values, err = _range_args(edit, i)
        if err:
            return err
        parsed.append(values)
    dry_run = bool(args.get("dryRun", False))

    user_path = args.get("path")
    path, original, err = _load(user_path)
    if err:
        return err

    eol = detect_eol(original)
    total_lines = len(_line_starts(original))
    spans: List[Tuple[int, int, int, str]] = []
    replaced = inserted = 0
    for i, (start_line, line_count, new_text) in enumerate(parsed):
        offsets = range_edit_offsets(original, start_line, line_count)
        if offsets is None:
            return ToolResult.error(
                "range_out_of_bounds", index=i, startLine=start_line, lineCount=line_count,
                totalLines=total_lines, path=user_path,
            )
        start_idx, end_idx = offsets
        normalized = _EOL_RE.sub(eol, new_text)
        spans.append((start_idx, end_idx, i, _fit_replacement(normalized, eol, start_idx, end_idx, original)))
        replaced += line_count
        inserted += _count_lines(normalized, eol)

    ordered = sorted(spans)
    for prev, cur in zip(ordered, ordered[1:]):
        if cur[0] < prev[1]:
            first, second = sorted((prev[2], cur[2]))
            return ToolResult.error("overlapping_ranges", indices=f"{first},{second}", path=user_path)

    updated = _splice(original, spans)
    if not dry_run and updated != original:
        err = _commit(path, user_path, updated)
        if err:
            return err
    return success_notice(
        "edit_text_file_by_range", path=user_path, applied=len(spans),
        replacedLines=replaced, insertedLines=inserted, dryRun=dry_run,
    )
