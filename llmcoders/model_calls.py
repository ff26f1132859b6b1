"""Secondary model calls for configuration-defined helper tools.

A helper tool forwards its single `text` argument as the user turn of an
independent request to the tool's own model, optionally behind the tool's
system prompt. Nothing from the main conversation is sent, and the streamed
reply is aggregated before it becomes the tool result.
"""

import time
from typing import Any, Dict, List, Optional

from llmcoders import hooks
from llmcoders.config import ModelSpec
from llmcoders.llm_client import StreamingClient
from llmcoders.tool_handlers.schema import ConfigTool
from llmcoders.types import Message, ToolResult


def _log_sidechannel_event(payload: Dict[str, Any]) -> None:
    hooks.emit("model_call", payload)


def build_helper_messages(text: str, system_prompt: Optional[str] = None) -> List[Message]:
    messages: List[Message] = []
    if system_prompt:
        messages.append(Message.system(system_prompt))
    messages.append(Message.user(text))
    return messages


def call_config_tool(
    client: StreamingClient,
    tool: ConfigTool,
    model: ModelSpec,
    args: Dict[str, Any],
) -> ToolResult:
    text = args.get("text") if isinstance(args, dict) else None
    if not isinstance(text, str) or not text.strip():
        return ToolResult.error("missing_argument", key="text", tool=tool.name)

    started = time.time()
    content, error = client.complete_text(
        model.endpoint,
        model.model_id,
        build_helper_messages(text, tool.system_prompt),
    )
    _log_sidechannel_event({
        "tool_name": tool.name,
        "model": model.model_id,
        "prompt_chars": len(text),
        "response_chars": len(content),
        "duration_ms": int((time.time() - started) * 1000),
        "is_error": bool(error),
    })
    if error:
        return ToolResult.error("config_tool_error", tool=tool.name, detail=error)
    return ToolResult.ok(content)
