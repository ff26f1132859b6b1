"""
Metrics middleware: per-turn tool, approval and API error tallies.

The collector resets on every turn_start, so summary() always describes the
most recent turn.
"""

import time
from collections import Counter
from typing import Any, Dict, Optional

from llmcoders import hooks


class MetricsCollector:
    """Tallies lifecycle events for the current turn."""

    def __init__(self):
        self.reset()

    def reset(self) -> None:
        self.tool_call_counts: Counter = Counter()
        self.tool_error_counts: Counter = Counter()
        self.decisions: Counter = Counter()
        self.api_errors: int = 0
        self.outcome: Optional[str] = None
        self.started_at: Optional[float] = None
        self.finished_at: Optional[float] = None

    @property
    def tool_calls_total(self) -> int:
        return sum(self.tool_call_counts.values())

    @property
    def tool_errors_total(self) -> int:
        return sum(self.tool_error_counts.values())

    @property
    def approvals(self) -> int:
        return self.decisions["approve"]

    @property
    def denials(self) -> int:
        return sum(n for d, n in self.decisions.items() if d != "approve")

    def on_turn_start(self, data: Dict[str, Any]) -> None:
        self.reset()
        self.started_at = time.monotonic()

    def on_tool_after(self, data: Dict[str, Any]) -> None:
        name = data.get("tool_name") or "unknown"
        self.tool_call_counts[name] += 1
        if data.get("is_error"):
            self.tool_error_counts[name] += 1

    def on_approval_result(self, data: Dict[str, Any]) -> None:
        decision = data.get("decision") or ("approve" if data.get("approved") else "deny")
        self.decisions[decision] += 1

    def on_api_error(self, data: Dict[str, Any]) -> None:
        self.api_errors += 1

    def on_turn_end(self, data: Dict[str, Any]) -> None:
        self.finished_at = time.monotonic()
        self.outcome = data.get("outcome")

    def summary(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "tool_calls_total": self.tool_calls_total,
            "tool_errors_total": self.tool_errors_total,
            "tool_call_counts": dict(self.tool_call_counts),
            "tool_error_counts": dict(self.tool_error_counts),
            "approvals": self.approvals,
            "denials": self.denials,
            "api_errors": self.api_errors,
        }
        if self.outcome:
            out["outcome"] = self.outcome
        if self.started_at is not None and self.finished_at is not None:
            out["duration_seconds"] = round(self.finished_at - self.started_at, 2)
        return out


_SUBSCRIPTIONS = {
    "turn_start": "on_turn_start",
    "tool_after": "on_tool_after",
    "approval_result": "on_approval_result",
    "api_error": "on_api_error",
    "turn_end": "on_turn_end",
}


def install() -> MetricsCollector:
    """Register metrics hooks and return the collector instance."""
    collector = MetricsCollector()
    for event, method in _SUBSCRIPTIONS.items():
        hooks.register(event, getattr(collector, method))
    return collector
