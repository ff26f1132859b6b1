"""
Agent orchestrator: owns the conversation history and drives the
request / stream / approve / execute / follow-up loop.

submit_turn() is a generator. Content is forwarded as it streams; each tool
call suspends the generator on an ApprovalRequested event until the caller
resolves it with resolve_approval() and resumes iteration. Tool calls are
approved and executed one at a time, in the order the model issued them, and
every call gets exactly one tool message in history.

History is only committed at round boundaries: a failed or cancelled model
stream leaves it exactly as it was before that request.
"""

import json
import threading
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Generator, Iterator, List, Optional, Tuple, Union

from llmcoders import hooks, llm_client
from llmcoders.catalog import resolve_catalog
from llmcoders.config import Configuration, OrchestratorSettings, Profile
from llmcoders.events import (
    ApprovalRequested,
    ApprovalResolved,
    ContentDelta,
    ToolExecutionCompleted,
    ToolExecutionFailed,
    ToolExecutionStarted,
    TurnCancelled,
    TurnComplete,
    TurnError,
    TurnEvent,
)
from llmcoders.line_diff import render_diff
from llmcoders.llm_client import StreamingClient
from llmcoders.tool_handlers._path import PathRejected, resolve_path
from llmcoders.tool_handlers.dispatch import ToolDispatcher
from llmcoders.tool_handlers.edit_handlers import range_edit_offsets
from llmcoders.tool_handlers.read_handlers import read_file_text
from llmcoders.tool_handlers.schema import (
    CONFIG_TOOL_PARAMETERS,
    BuiltinTool,
    ConfigTool,
    ToolDefinition,
    builtin_tools,
    make_openai_tools,
)
from llmcoders.types import Message, Role, ToolCall


class OrchestratorState(Enum):
    IDLE = "idle"
    AWAITING_MODEL = "awaiting-model"
    STREAMING_TOOLS = "streaming-tools"
    AWAITING_APPROVAL = "awaiting-approval"
    APPENDING_RESULT = "appending-result"


class ApprovalDecision(str, Enum):
    APPROVE = "approve"
    DENY = "deny"
    CANCEL = "cancel"


_DECISION_ALIASES = {
    "approve": ApprovalDecision.APPROVE,
    "yes": ApprovalDecision.APPROVE,
    "y": ApprovalDecision.APPROVE,
    "deny": ApprovalDecision.DENY,
    "no": ApprovalDecision.DENY,
    "n": ApprovalDecision.DENY,
    "cancel": ApprovalDecision.CANCEL,
    "escape": ApprovalDecision.CANCEL,
    "esc": ApprovalDecision.CANCEL,
}

DIFF_PREVIEW_TOOLS = ("edit_text_file", "edit_text_file_by_range")


def parse_decision(decision: Union[ApprovalDecision, str]) -> ApprovalDecision:
    if isinstance(decision, ApprovalDecision):
        return decision
    if isinstance(decision, str):
        parsed = _DECISION_ALIASES.get(decision.strip().lower())
        if parsed is not None:
            return parsed
    raise ValueError(f"Unknown approval decision: {decision!r}")


def denial_notice(name: str) -> str:
    return f"error: reason=denied_by_user; tool={name}; detail=the user declined this tool call"


def cancellation_notice(name: str) -> str:
    return f"error: reason=cancelled_by_user; tool={name}; detail=the user cancelled the turn before this call ran"


@dataclass
class PendingApproval:
    tool_call: ToolCall
    diff_preview: Optional[str] = None


@dataclass
class _PartialCall:
    id: str = ""
    name: str = ""
    arguments: str = ""


@dataclass
class _RoundOutcome:
    content: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    error: Optional[str] = None
    cancelled: bool = False


def merge_tool_call_delta(partials: Dict[int, _PartialCall], delta: llm_client.ToolCallDelta) -> None:
    """Fold one delta into the working call at its index.

    The first non-empty id wins; name and argument fragments are appended in
    arrival order.
    """
    call = partials.setdefault(delta.index, _PartialCall())
    if delta.id and not call.id:
        call.id = delta.id
    if delta.name:
        call.name += delta.name
    if delta.arguments:
        call.arguments += delta.arguments


def finalize_tool_calls(partials: Dict[int, _PartialCall]) -> List[ToolCall]:
    calls: List[ToolCall] = []
    for index in sorted(partials):
        partial = partials[index]
        calls.append(ToolCall(
            id=partial.id or f"call_{uuid.uuid4().hex[:24]}",
            name=partial.name,
            arguments=partial.arguments,
        ))
    return calls


def _display_args(raw: str) -> Dict[str, Any]:
    if not raw or not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return {"raw": raw}
    return parsed if isinstance(parsed, dict) else {"raw": raw}


def _strip_eol(text: str) -> str:
    if text.endswith("\r\n"):
        return text[:-2]
    if text.endswith(("\n", "\r")):
        return text[:-1]
    return text


def diff_previews(name: str, args: Dict[str, Any]) -> List[str]:
    """Display-only diffs for edit calls. Never raises."""
    edits = args.get("edits")
    if name not in DIFF_PREVIEW_TOOLS or not isinstance(edits, list):
        return []
    previews: List[str] = []
    if name == "edit_text_file":
        for edit in edits:
            if isinstance(edit, dict) and isinstance(edit.get("oldText"), str) \
                    and isinstance(edit.get("newText"), str):
                previews.append(render_diff(edit["oldText"], edit["newText"]))
        return previews

    try:
        content = read_file_text(resolve_path(args.get("path")))
    except (PathRejected, OSError, UnicodeDecodeError):
        return []
    for edit in edits:
        if not isinstance(edit, dict):
            continue
        start, count, new_text = edit.get("startLine"), edit.get("lineCount"), edit.get("newText", "")
        if not all(isinstance(v, int) and not isinstance(v, bool) for v in (start, count)) \
                or not isinstance(new_text, str):
            continue
        offsets = range_edit_offsets(content, start, count)
        if offsets is None:
            continue
        old_segment = content[offsets[0]:offsets[1]]
        if not old_segment and not new_text:
            continue
        previews.append(render_diff(_strip_eol(old_segment), _strip_eol(new_text)))
    return previews


class Orchestrator:
    """Runs one conversation at a time against the selected coder profile."""

    def __init__(
        self,
        config: Configuration,
        client: Optional[StreamingClient] = None,
        tool_servers: Any = None,
        settings: Optional[OrchestratorSettings] = None,
        builtins: Optional[List[BuiltinTool]] = None,
    ):
        self.config = config
        self.settings = settings or OrchestratorSettings()
        self.client = client or StreamingClient(timeout=self.settings.request_timeout)
        self.tool_servers = tool_servers
        self.dispatcher = ToolDispatcher(config, self.client, tool_servers)
        self._builtins = list(builtins) if builtins is not None else builtin_tools()
        self._history: List[Message] = []
        self._state = OrchestratorState.IDLE
        self._cancel = threading.Event()
        self._pending: Optional[PendingApproval] = None
        self._decision: Optional[ApprovalDecision] = None
        self._active = False
        self.last_catalog_warnings: List[str] = []

    # -- caller interface -------------------------------------------------

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def pending_approval(self) -> Optional[PendingApproval]:
        return self._pending

    def list_available_profiles(self) -> List[Profile]:
        return list(self.config.profiles)

    def get_history(self) -> List[Message]:
        return [m.copy() for m in self._history]

    def reset_conversation(self) -> None:
        if self._active:
            raise RuntimeError("cannot reset the conversation while a turn is running")
        self._history = []

    def cancel(self) -> None:
        """Request cancellation; honoured at the next suspension point."""
        self._cancel.set()

    def resolve_approval(self, decision: Union[ApprovalDecision, str]) -> None:
        parsed = parse_decision(decision)
        if self._pending is None:
            raise RuntimeError("no tool call is awaiting approval")
        if self._decision is not None:
            raise RuntimeError("the pending approval has already been resolved")
        self._decision = parsed

    def build_catalog(self) -> Tuple[List[ToolDefinition], List[str]]:
        config_tools = [
            ConfigTool(
                name=spec.name,
                description=spec.description,
                parameters=CONFIG_TOOL_PARAMETERS,
                model_key=spec.model,
                system_prompt=spec.system_prompt,
            )
            for spec in self.config.tools
        ]
        external = self.tool_servers.tools_by_server() if self.tool_servers is not None else {}
        catalog, warnings = resolve_catalog(self._builtins, config_tools, external)
        self.last_catalog_warnings = warnings
        return catalog, warnings

    def submit_turn(self, profile: Union[Profile, str], text: str) -> Iterator[TurnEvent]:
        """Run one user turn, yielding events until the turn ends."""
        if isinstance(profile, str):
            found = self.config.find_profile(profile)
            if found is None:
                raise ValueError(f"Unknown coder profile: {profile}")
            profile = found
        return self._turn(profile, text)

    # -- turn loop --------------------------------------------------------

    def _turn(self, profile: Profile, text: str) -> Iterator[TurnEvent]:
        if self._active:
            raise RuntimeError("a turn is already in progress")
        self._active = True
        self._cancel.clear()
        outcome = "incomplete"
        hooks.emit("turn_start", {"coder": profile.name, "model": profile.model, "history_len": len(self._history)})
        rounds = self._rounds(profile)
        try:
            if not self._history and profile.system_prompt:
                self._history.append(Message.system(profile.system_prompt))
            self._history.append(Message.user(text))
            for event in rounds:
                if isinstance(event, (TurnComplete, TurnError, TurnCancelled)):
                    outcome = event.type
                yield event
        finally:
            rounds.close()
            self._active = False
            self._pending = None
            self._decision = None
            self._state = OrchestratorState.IDLE
            hooks.emit("turn_end", {"coder": profile.name, "outcome": outcome, "history_len": len(self._history)})

    def _rounds(self, profile: Profile) -> Iterator[TurnEvent]:
        for _ in range(self.settings.max_rounds):
            if self._cancel.is_set():
                yield TurnCancelled()
                return
            catalog, _warnings = self.build_catalog()
            outcome = yield from self._stream_round(profile, catalog)
            if outcome.cancelled:
                yield TurnCancelled()
                return
            if outcome.error is not None:
                yield TurnError(outcome.error)
                return
            if not outcome.tool_calls:
                self._history.append(Message.assistant(outcome.content))
                yield TurnComplete()
                return

            self._history.append(Message.assistant(outcome.content, outcome.tool_calls))
            cancelled = yield from self._run_tool_calls(outcome.tool_calls, catalog)
            if cancelled:
                yield TurnCancelled()
                return
        yield TurnError(f"stopped after {self.settings.max_rounds} model rounds without a final answer")

    def _stream_round(
        self,
        profile: Profile,
        catalog: List[ToolDefinition],
    ) -> Generator[TurnEvent, None, _RoundOutcome]:
        self._state = OrchestratorState.AWAITING_MODEL
        tools = make_openai_tools(catalog)
        parts: List[str] = []
        partials: Dict[int, _PartialCall] = {}
        stream = self.client.stream_chat(
            profile.endpoint,
            profile.model,
            list(self._history),
            tools=tools or None,
            tool_choice="auto" if tools else None,
        )
        try:
            for event in stream:
                if self._cancel.is_set():
                    return _RoundOutcome(cancelled=True)
                if isinstance(event, llm_client.ContentDelta):
                    parts.append(event.text)
                    yield ContentDelta(event.text)
                elif isinstance(event, llm_client.ToolCallDelta):
                    self._state = OrchestratorState.STREAMING_TOOLS
                    merge_tool_call_delta(partials, event)
                elif isinstance(event, llm_client.StreamError):
                    return _RoundOutcome(error=event.detail)
                elif isinstance(event, llm_client.StreamComplete):
                    break
                if self._cancel.is_set():
                    return _RoundOutcome(cancelled=True)
        finally:
            stream.close()
        return _RoundOutcome(content="".join(parts), tool_calls=finalize_tool_calls(partials))

    def _run_tool_calls(
        self,
        calls: List[ToolCall],
        catalog: List[ToolDefinition],
    ) -> Generator[TurnEvent, None, bool]:
        """Approve and execute calls in order. Returns True when cancelled."""
        try:
            for call in calls:
                if self._cancel.is_set():
                    return True
                if call.name not in self.settings.auto_approve:
                    decision = yield from self._await_approval(call)
                    if decision is ApprovalDecision.CANCEL:
                        return True
                    if decision is ApprovalDecision.DENY:
                        self._history.append(Message.tool(call.id, denial_notice(call.name)))
                        continue
                if self._cancel.is_set():
                    return True

                self._state = OrchestratorState.APPENDING_RESULT
                yield ToolExecutionStarted(name=call.name, tool_call_id=call.id)
                result = self.dispatcher.dispatch(call.name, call.arguments, catalog)
                self._history.append(Message.tool(call.id, result.content))
                if result.is_error:
                    yield ToolExecutionFailed(name=call.name, error=result.content, tool_call_id=call.id)
                else:
                    yield ToolExecutionCompleted(name=call.name, tool_call_id=call.id)
        finally:
            # Cancelled, abandoned or interrupted: every call still gets its tool message.
            self._append_cancellations(calls)
        return False

    def _await_approval(self, call: ToolCall) -> Generator[TurnEvent, None, ApprovalDecision]:
        args = _display_args(call.arguments)
        previews = diff_previews(call.name, args)
        preview = "\n\n".join(previews) if previews else None
        self._pending = PendingApproval(tool_call=call, diff_preview=preview)
        self._decision = None
        self._state = OrchestratorState.AWAITING_APPROVAL
        hooks.emit("approval_request", {"tool_name": call.name, "tool_call_id": call.id})

        yield ApprovalRequested(
            name=call.name,
            args=args,
            tool_call_id=call.id,
            diff_preview=preview,
            diff_previews=previews,
        )

        decision = self._decision
        if decision is None or self._cancel.is_set():
            decision = ApprovalDecision.CANCEL
        self._pending = None
        self._decision = None
        approved = decision is ApprovalDecision.APPROVE
        hooks.emit("approval_result", {
            "tool_name": call.name,
            "tool_call_id": call.id,
            "decision": decision.value,
            "approved": approved,
        })
        yield ApprovalResolved(name=call.name, approved=approved, tool_call_id=call.id)
        return decision

    def _append_cancellations(self, calls: List[ToolCall]) -> None:
        """Answer every call of the latest assistant message that has no tool message yet."""
        answered = set()
        for message in reversed(self._history):
            if message.role is not Role.TOOL:
                break
            answered.add(message.tool_call_id)
        for call in calls:
            if call.id not in answered:
                self._history.append(Message.tool(call.id, cancellation_notice(call.name)))
