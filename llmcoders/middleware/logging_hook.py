"""
Logging middleware: writes a JSONL event log entry for every lifecycle event.

Modules that are not driven by hooks (config parsing, the tool-server manager)
call log_event() directly. Nothing is written until a log path is set.
"""

import json
import os
import re
import threading
import time
from typing import Any, Dict, Optional

from llmcoders import hooks

_log_path: Optional[str] = None
_run_context: Dict[str, Any] = {}
# The tool-server manager logs from its event-loop thread.
_write_lock = threading.Lock()

# Fields that carry whole conversations or file bodies.
_SKIPPED_FIELDS = ("messages", "content", "request_data")


def get_log_path() -> Optional[str]:
    return _log_path


def set_log_path(path: Optional[str]) -> None:
    global _log_path
    _log_path = path


def _write_event(event_type: str, payload: Optional[Dict[str, Any]] = None) -> None:
    if not _log_path:
        return
    rec: Dict[str, Any] = {"ts": time.strftime("%Y-%m-%dT%H:%M:%S"), "event": event_type}
    for key in ("session", "coder", "root"):
        val = _run_context.get(key)
        if val:
            rec[key] = val
    if payload:
        rec.update(payload)
    line = json.dumps(rec, ensure_ascii=False, default=str) + "\n"
    with _write_lock:
        os.makedirs(os.path.dirname(_log_path) or ".", exist_ok=True)
        with open(_log_path, "a", encoding="utf-8") as f:
            f.write(line)


def _on_event(event_name: str):
    def callback(data: Dict[str, Any]) -> None:
        payload = {k: v for k, v in data.items() if k not in _SKIPPED_FIELDS}
        _write_event(event_name, payload)
    return callback


def log_event(event_type: str, payload: Optional[Dict[str, Any]] = None) -> None:
    """Write one entry directly, bypassing the hook registry."""
    _write_event(event_type, payload)


def init_logging(log_dir: str, agent_name: Optional[str] = None) -> str:
    """Pick the log file for this process. Returns the log path."""
    global _log_path
    if _log_path:
        return _log_path
    os.makedirs(log_dir, exist_ok=True)
    timestamp = time.strftime("%Y-%m-%d_%H-%M-%S")
    safe_agent = re.sub(r"[^A-Za-z0-9_.-]", "_", agent_name or "coder")
    _log_path = os.path.join(log_dir, f"llmcoders_{safe_agent}_{timestamp}.jsonl")
    return _log_path


def update_run_context(context: Dict[str, Any]) -> None:
    _run_context.update(context)


def install(log_path: Optional[str] = None, run_context: Optional[Dict[str, Any]] = None) -> None:
    """Register logging hooks for all lifecycle events."""
    global _log_path
    if log_path:
        _log_path = log_path
    if run_context:
        _run_context.update(run_context)

    for event in hooks.LIFECYCLE_EVENTS:
        hooks.register(event, _on_event(event))
