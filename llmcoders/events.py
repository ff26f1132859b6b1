"""
Events yielded to the caller by Orchestrator.submit_turn().
"""

from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Optional, Union


@dataclass(frozen=True)
class ContentDelta:
    type: ClassVar[str] = "content-delta"
    text: str


@dataclass(frozen=True)
class ToolExecutionStarted:
    type: ClassVar[str] = "tool-execution-started"
    name: str
    tool_call_id: str = ""


@dataclass(frozen=True)
class ToolExecutionCompleted:
    type: ClassVar[str] = "tool-execution-completed"
    name: str
    tool_call_id: str = ""


@dataclass(frozen=True)
class ToolExecutionFailed:
    type: ClassVar[str] = "tool-execution-failed"
    name: str
    error: str
    tool_call_id: str = ""


@dataclass(frozen=True)
class ApprovalRequested:
    """The turn is suspended until Orchestrator.resolve_approval() is called."""

    type: ClassVar[str] = "approval-requested"
    name: str
    args: Dict[str, Any] = field(hash=False)
    tool_call_id: str = ""
    diff_preview: Optional[str] = None
    diff_previews: List[str] = field(default_factory=list, hash=False)


@dataclass(frozen=True)
class ApprovalResolved:
    type: ClassVar[str] = "approval-resolved"
    name: str
    approved: bool
    tool_call_id: str = ""


@dataclass(frozen=True)
class TurnComplete:
    type: ClassVar[str] = "turn-complete"


@dataclass(frozen=True)
class TurnError:
    type: ClassVar[str] = "turn-error"
    detail: str


@dataclass(frozen=True)
class TurnCancelled:
    type: ClassVar[str] = "turn-cancelled"


TurnEvent = Union[
    ContentDelta,
    ToolExecutionStarted,
    ToolExecutionCompleted,
    ToolExecutionFailed,
    ApprovalRequested,
    ApprovalResolved,
    TurnComplete,
    TurnError,
    TurnCancelled,
]
