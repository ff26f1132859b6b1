"""
Tool definitions and schema building: builtin tool table, the tagged
ToolDefinition union, and rendering to OpenAI function tools.

Builtin parameters are written in a compact form (`"string"`, `"integer?"`
or a dict with `type`/`description`/`items`); params_to_schema() expands them
into JSON Schema.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Dict, List, Optional, Union

from llmcoders.tool_handlers.edit_handlers import edit_text_file, edit_text_file_by_range
from llmcoders.tool_handlers.read_handlers import read_text_file
from llmcoders.tool_handlers.search_handlers import list_directory, search_files
from llmcoders.tool_handlers.write_handlers import create_directory, move_file, write_file
from llmcoders.types import ToolResult

Handler = Callable[[Any], ToolResult]


@dataclass(frozen=True)
class BuiltinTool:
    kind: ClassVar[str] = "builtin"
    name: str
    description: str
    parameters: Dict[str, Any]
    handler: Handler = field(compare=False)


@dataclass(frozen=True)
class ConfigTool:
    """A helper tool answered by a secondary model from configuration."""

    kind: ClassVar[str] = "config"
    name: str
    description: str
    parameters: Dict[str, Any]
    model_key: str
    system_prompt: Optional[str] = None


@dataclass(frozen=True)
class ExternalTool:
    """A tool discovered on a tool server at connect time."""

    kind: ClassVar[str] = "external"
    name: str
    description: str
    parameters: Dict[str, Any]
    server: str


ToolDefinition = Union[BuiltinTool, ConfigTool, ExternalTool]


_EDIT_ITEM = {
    "type": "object",
    "properties": {
        "oldText": {"type": "string", "description": "Exact text to find (literal, every occurrence). No regex."},
        "newText": {"type": "string", "description": "Replacement text for each occurrence of oldText."},
    },
    "required": ["oldText", "newText"],
    "additionalProperties": False,
}

_RANGE_ITEM = {
    "type": "object",
    "properties": {
        "startLine": {"type": "integer", "minimum": 1, "description": "1-based first line of the range."},
        "lineCount": {"type": "integer", "minimum": 0, "description": "Lines to replace; 0 inserts before startLine."},
        "newText": {"type": "string", "description": "Replacement or inserted text."},
    },
    "required": ["startLine", "lineCount", "newText"],
    "additionalProperties": False,
}

TOOL_DEFS: Dict[str, Dict[str, Any]] = {
    "read_text_file": {
        "description": (
            "Read a UTF-8 text file under the working directory. head returns the first N lines, "
            "tail the last N lines; they cannot be combined."
        ),
        "parameters": {
            "path": {"type": "string", "description": "Path relative to the working directory."},
            "head": {"type": "integer?", "description": "Return only the first N lines."},
            "tail": {"type": "integer?", "description": "Return only the last N lines."},
        },
    },
    "write_file": {
        "description": (
            "Write UTF-8 text to a file, replacing it if it exists. The parent directory must already exist."
        ),
        "parameters": {
            "path": {"type": "string", "description": "Target file path relative to the working directory."},
            "content": {"type": "string", "description": "Full text to write."},
        },
    },
    "edit_text_file": {
        "description": (
            "Replace every occurrence of each oldText with its newText. All edits are matched against the "
            "original file; if any oldText is missing nothing is written. dryRun reports without writing."
        ),
        "parameters": {
            "path": {"type": "string", "description": "File to edit, relative to the working directory."},
            "edits": {"type": "array", "items": _EDIT_ITEM, "minItems": 1},
            "dryRun": {"type": "boolean?", "description": "Report the outcome without writing."},
        },
    },
    "edit_text_file_by_range": {
        "description": (
            "Replace or insert whole lines by 1-based line number. All ranges refer to the file as it is now "
            "and must not overlap. lineCount 0 inserts before startLine; startLine may be one past the last "
            "line to append."
        ),
        "parameters": {
            "path": {"type": "string", "description": "File to edit, relative to the working directory."},
            "edits": {"type": "array", "items": _RANGE_ITEM, "minItems": 1},
            "dryRun": {"type": "boolean?", "description": "Report the outcome without writing."},
        },
    },
    "create_directory": {
        "description": "Create a directory and any missing parents. Succeeds if it already exists.",
        "parameters": {
            "path": {"type": "string", "description": "Directory path relative to the working directory."},
        },
    },
    "list_directory": {
        "description": (
            "List direct children of a directory as [DIR] name/ or [FILE] name, directories first. "
            "Includes dotfiles."
        ),
        "parameters": {
            "path": {"type": "string", "description": "Directory path relative to the working directory."},
        },
    },
    "move_file": {
        "description": "Move or rename a file or directory. Fails if the destination exists.",
        "parameters": {
            "source": {"type": "string", "description": "Existing path relative to the working directory."},
            "destination": {"type": "string", "description": "New path; must not exist yet."},
        },
    },
    "search_files": {
        "description": (
            "Recursively find entries whose path relative to `path` matches a case-insensitive glob "
            "(use **/ for any depth). excludePatterns hides matches but does not stop descent."
        ),
        "parameters": {
            "path": {"type": "string", "description": "Start directory relative to the working directory."},
            "pattern": {"type": "string", "description": "Glob such as **/*.py."},
            "excludePatterns": {"type": "array?", "items": "string", "description": "Globs to leave out."},
        },
    },
}

TOOL_ORDER = [
    "read_text_file",
    "write_file",
    "edit_text_file",
    "edit_text_file_by_range",
    "create_directory",
    "list_directory",
    "move_file",
    "search_files",
]

HANDLERS: Dict[str, Handler] = {
    "read_text_file": read_text_file,
    "write_file": write_file,
    "edit_text_file": edit_text_file,
    "edit_text_file_by_range": edit_text_file_by_range,
    "create_directory": create_directory,
    "list_directory": list_directory,
    "move_file": move_file,
    "search_files": search_files,
}

# Schema for configuration-defined helper tools.
CONFIG_TOOL_PARAMETERS: Dict[str, Any] = {
    "type": "object",
    "properties": {"text": {"type": "string", "description": "Input passed to the helper model."}},
    "required": ["text"],
    "additionalProperties": False,
}


def params_to_schema(params: Dict[str, Any], additional_properties: bool = False) -> Dict[str, Any]:
    properties: Dict[str, Any] = {}
    required: List[str] = []
    for pn, pt in params.items():
        if isinstance(pt, str):
            spec: Dict[str, Any] = {"type": pt}
        elif isinstance(pt, dict) and isinstance(pt.get("type"), str):
            spec = dict(pt)
        else:
            continue
        base_type = spec.pop("type")
        is_optional = bool(spec.pop("optional", False))
        if base_type.endswith("?"):
            is_optional = True
            base_type = base_type.rstrip("?")
        if base_type == "int":
            base_type = "integer"
        prop: Dict[str, Any] = {"type": base_type}
        if base_type == "array":
            items = spec.pop("items", "string")
            prop["items"] = {"type": items} if isinstance(items, str) else items
        prop.update(spec)
        properties[pn] = prop
        if not is_optional:
            required.append(pn)
    return {
        "type": "object",
        "properties": properties,
        "required": required,
        "additionalProperties": additional_properties,
    }


def build_tools(
    tool_defs: Dict[str, Dict[str, Any]],
    handlers: Dict[str, Handler],
    tool_order: List[str],
) -> List[BuiltinTool]:
    tools: List[BuiltinTool] = []
    for name in tool_order:
        tool_def = tool_defs.get(name)
        if not tool_def:
            raise ValueError(f"Missing tool definition for '{name}'")
        handler = handlers.get(tool_def.get("handler", name))
        if handler is None or tool_def.get("parameters") is None:
            raise ValueError(f"Invalid tool definition: {name}")
        tools.append(BuiltinTool(
            name=name,
            description=tool_def.get("description", ""),
            parameters=params_to_schema(tool_def["parameters"]),
            handler=handler,
        ))
    return tools


def builtin_tools() -> List[BuiltinTool]:
    return build_tools(TOOL_DEFS, HANDLERS, TOOL_ORDER)


def make_openai_tools(catalog: List[ToolDefinition]) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    for tool in catalog:
        function: Dict[str, Any] = {"name": tool.name, "parameters": tool.parameters}
        if tool.description:
            function["description"] = tool.description
        out.append({"type": "function", "function": function})
    return out
