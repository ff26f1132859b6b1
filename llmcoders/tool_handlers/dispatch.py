"""
Tool dispatch: argument parsing and repair, schema validation, and routing of
a call to its builtin handler, helper model, or tool server.

dispatch() always returns a ToolResult; failures are folded into error
results so the orchestrator never sees an exception from tool execution.
"""

import json
import re
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple

from llmcoders import hooks
from llmcoders.catalog import catalog_index
from llmcoders.config import Configuration
from llmcoders.llm_client import StreamingClient
from llmcoders.model_calls import call_config_tool
from llmcoders.tool_handlers.schema import (
    BuiltinTool,
    ConfigTool,
    ExternalTool,
    ToolDefinition,
)
from llmcoders.types import ToolResult


# ---------------------------
# JSON repair for malformed tool arguments
# ---------------------------

def _repair_json(raw: str) -> str:
    """Try to fix common JSON errors from small models.

    Handles single-quoted objects, unterminated strings, objects and arrays
    left open at the end of the stream, and trailing commas.
    """
    if not raw or not raw.strip():
        return raw
    s = raw.strip()
    # Single quotes become double quotes only when no double quotes are present
    if "'" in s and '"' not in s:
        s = s.replace("'", '"')
    closers: List[str] = []
    in_string = escaped = False
    for ch in s:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch in "{[":
            closers.append("}" if ch == "{" else "]")
        elif ch in "}]" and closers and closers[-1] == ch:
            closers.pop()
    if in_string:
        s += '"'
    s += "".join(reversed(closers))
    # Fix trailing commas before } or ]
    return re.sub(r',\s*([}\]])', r'\1', s)


def parse_tool_arguments(tool_name: str, raw_args: Any) -> Tuple[Optional[Dict[str, Any]], Optional[ToolResult]]:
    """Decode the JSON argument string of a tool call."""
    if isinstance(raw_args, dict):
        return raw_args, None
    if raw_args is None or (isinstance(raw_args, str) and not raw_args.strip()):
        return {}, None
    try:
        parsed = json.loads(raw_args)
    except (TypeError, json.JSONDecodeError) as exc:
        repaired = _repair_json(str(raw_args))
        try:
            parsed = json.loads(repaired)
        except json.JSONDecodeError:
            return None, ToolResult.error(
                "invalid_json", tool=tool_name, detail=str(exc), raw=str(raw_args)[:100],
            )
        hooks.emit("tool_format_repair", {"tool_name": tool_name, "reason": "json_repair"})
    if not isinstance(parsed, dict):
        return None, ToolResult.error("invalid_arguments", tool=tool_name, detail="expected object")
    return parsed, None


_JSON_TYPES = {
    "string": lambda v: isinstance(v, str),
    "boolean": lambda v: isinstance(v, bool),
    "integer": lambda v: (isinstance(v, int) and not isinstance(v, bool))
    or (isinstance(v, float) and v.is_integer()),
    "number": lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
    "array": lambda v: isinstance(v, list),
    "object": lambda v: isinstance(v, dict),
}


def _validate_tool_args(tool_name: str, args: Dict[str, Any], schema: Dict[str, Any]) -> Optional[ToolResult]:
    """Top-level JSON Schema check: required keys, unknown keys, primitive types."""
    properties = schema.get("properties") or {}
    if schema.get("additionalProperties") is False:
        unknown = sorted(set(args) - set(properties))
        if unknown:
            return ToolResult.error(
                "invalid_arguments", tool=tool_name, unknown=",".join(unknown),
                valid=",".join(sorted(properties)),
            )
    missing = [key for key in schema.get("required") or [] if key not in args]
    if missing:
        return ToolResult.error("missing_argument", key=",".join(missing), tool=tool_name)
    for key, value in args.items():
        prop = properties.get(key)
        if not isinstance(prop, dict):
            continue
        expected = prop.get("type")
        check = _JSON_TYPES.get(expected) if isinstance(expected, str) else None
        if check is not None and value is not None and not check(value):
            return ToolResult.error("invalid_arguments", tool=tool_name, key=key, detail=f"expected {expected}")
    return None


class ToolDispatcher:
    """Routes tool calls by the kind of their catalog entry."""

    def __init__(self, config: Configuration, client: StreamingClient, tool_servers: Any = None):
        self.config = config
        self.client = client
        self.tool_servers = tool_servers

    def dispatch(self, name: str, raw_args: Any, catalog: Sequence[ToolDefinition]) -> ToolResult:
        started = time.time()
        tool = catalog_index(catalog).get(name)
        hooks.emit("tool_before", {"tool_name": name, "kind": getattr(tool, "kind", None)})
        result = self._dispatch(name, raw_args, tool, catalog)
        hooks.emit("tool_after", {
            "tool_name": name,
            "kind": getattr(tool, "kind", None),
            "is_error": result.is_error,
            "result_chars": len(result.content),
            "duration_ms": int((time.time() - started) * 1000),
        })
        return result

    def _dispatch(
        self,
        name: str,
        raw_args: Any,
        tool: Optional[ToolDefinition],
        catalog: Sequence[ToolDefinition],
    ) -> ToolResult:
        if tool is None:
            available = ",".join(t.name for t in catalog)
            return ToolResult.error("tool_not_found", tool=name or "(empty)", available=available)

        args, err = parse_tool_arguments(name, raw_args)
        if err:
            return err

        if isinstance(tool, BuiltinTool):
            err = _validate_tool_args(name, args, tool.parameters)
            if err:
                return err
            try:
                return tool.handler(args)
            except Exception as exc:
                return ToolResult.error("builtin_error", tool=name, detail=f"{type(exc).__name__}: {exc}")

        if isinstance(tool, ConfigTool):
            model = self.config.get_model(tool.model_key)
            if model is None:
                return ToolResult.error("unknown_model", tool=name, model=tool.model_key)
            try:
                return call_config_tool(self.client, tool, model, args)
            except Exception as exc:
                return ToolResult.error("config_tool_error", tool=name, detail=f"{type(exc).__name__}: {exc}")

        if isinstance(tool, ExternalTool):
            if self.tool_servers is None:
                return ToolResult.error("server_unavailable", tool=name, server=tool.server)
            try:
                return self.tool_servers.call_tool(name, args)
            except Exception as exc:
                return ToolResult.error("mcp_error", tool=name, detail=f"{type(exc).__name__}: {exc}")

        return ToolResult.error("tool_not_found", tool=name)
