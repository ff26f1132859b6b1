"""llmcoders: terminal coding assistant that drives OpenAI-compatible models
with sandboxed file tools, helper-model tools and MCP tool servers."""

__version__ = "1.0.0"

_LAZY = {
    "Orchestrator": "llmcoders.orchestrator",
    "ApprovalDecision": "llmcoders.orchestrator",
    "OrchestratorState": "llmcoders.orchestrator",
    "load_config": "llmcoders.config",
    "parse_config": "llmcoders.config",
    "StreamingClient": "llmcoders.llm_client",
    "ToolServerManager": "llmcoders.tool_servers",
}


def __getattr__(name):
    # Allow direct submodule access (hooks, middleware) without loading the orchestrator
    if name in ("hooks", "middleware"):
        import importlib
        return importlib.import_module(f".{name}", __name__)
    module = _LAZY.get(name)
    if module is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    import importlib
    return getattr(importlib.import_module(module), name)


def __dir__():
    return sorted(set(globals()) | set(_LAZY) | {"hooks", "middleware"})
