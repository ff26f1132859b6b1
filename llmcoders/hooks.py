"""
Hook registry for llmcoders lifecycle events.

The orchestrator, dispatcher and tool-server manager emit events at key
lifecycle points (turn start/end, model requests, tool execution, approvals,
catalog warnings). Registered hooks receive the event data and can optionally
replace it by returning a new dict.

Usage:
    from llmcoders import hooks

    def on_tool(data):
        print(data["tool_name"], data["is_error"])

    hooks.register("tool_after", on_tool)
"""

from typing import Any, Callable, Dict, List

HookCallback = Callable[[Dict[str, Any]], Any]

# Events emitted by the runtime. Hooks may register for other names too.
LIFECYCLE_EVENTS = (
    "turn_start", "turn_end",
    "api_request", "api_error",
    "tool_before", "tool_after", "tool_format_repair",
    "approval_request", "approval_result",
    "catalog_warning",
    "tool_server_start", "tool_server_error",
    "model_call",
)

_hooks: Dict[str, List[HookCallback]] = {}


def register(event: str, callback: HookCallback) -> None:
    """Register a callback for a named event."""
    _hooks.setdefault(event, []).append(callback)


def unregister(event: str, callback: HookCallback) -> bool:
    """Remove a previously registered callback. Returns False if absent."""
    callbacks = _hooks.get(event) or []
    if callback not in callbacks:
        return False
    callbacks.remove(callback)
    return True


def emit(event: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """Emit event, passing data through each hook in registration order."""
    for cb in list(_hooks.get(event, [])):
        result = cb(data)
        if isinstance(result, dict):
            data = result
    return data


def clear() -> None:
    """Remove all registered hooks."""
    _hooks.clear()


def registered_events() -> List[str]:
    """Return list of events that have at least one hook registered."""
    return [ev for ev, cbs in _hooks.items() if cbs]
