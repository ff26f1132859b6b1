"""
Tool catalog resolver.

Merges builtin, configuration-defined and tool-server tools into one list with
unique, well-formed names. Precedence is builtin > config > external; every
rejected entry yields a warning and processing continues.
"""

import re
from typing import Dict, List, Mapping, Sequence, Tuple

from llmcoders import hooks
from llmcoders.tool_handlers.schema import (
    BuiltinTool,
    ConfigTool,
    ExternalTool,
    ToolDefinition,
)

TOOL_NAME_RE = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9]|[_-](?=[A-Za-z0-9]))*[A-Za-z0-9]$")


def is_valid_tool_name(name: object) -> bool:
    return isinstance(name, str) and TOOL_NAME_RE.match(name) is not None


def resolve_catalog(
    builtins: Sequence[BuiltinTool],
    config_tools: Sequence[ConfigTool],
    external_tools_by_server: Mapping[str, Sequence[ExternalTool]],
) -> Tuple[List[ToolDefinition], List[str]]:
    """Return (catalog, warnings). Never raises for bad entries."""
    catalog: List[ToolDefinition] = list(builtins)
    owners: Dict[str, str] = {tool.name: "builtin" for tool in builtins}
    warnings: List[str] = []

    for tool in config_tools:
        if not is_valid_tool_name(tool.name):
            warnings.append(f"Skipping config tool '{tool.name}': invalid name")
            continue
        if tool.name in owners:
            warnings.append(f"Skipping config tool '{tool.name}': duplicate of {owners[tool.name]} tool")
            continue
        owners[tool.name] = "config"
        catalog.append(tool)

    for server, tools in external_tools_by_server.items():
        for tool in tools:
            if not is_valid_tool_name(tool.name):
                warnings.append(f"Skipping tool '{tool.name}' from server '{server}': invalid name")
                continue
            owner = owners.get(tool.name)
            if owner in ("builtin", "config"):
                warnings.append(
                    f"Skipping tool '{tool.name}' from server '{server}': conflicts with {owner} tool"
                )
                continue
            if owner is not None:
                warnings.append(f"Skipping tool '{tool.name}' from server '{server}': duplicate of {owner}")
                continue
            owners[tool.name] = f"server '{server}'"
            catalog.append(tool)

    for message in warnings:
        hooks.emit("catalog_warning", {"warning": message})
    return catalog, warnings


def catalog_index(catalog: Sequence[ToolDefinition]) -> Dict[str, ToolDefinition]:
    return {tool.name: tool for tool in catalog}
