"""Config loading and validation.

The JSON document is validated once into frozen records. Bad entries are
dropped with a warning; only a document with no usable coder profile fails.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from llmcoders.middleware import logging_hook

SUPPORTED_TRANSPORTS = ("stdio",)
KNOWN_TRANSPORTS = ("stdio", "ws", "tcp")


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class Profile:
    name: str
    endpoint: str
    model: str
    color: str
    system_prompt: Optional[str] = None


@dataclass(frozen=True)
class ModelSpec:
    endpoint: str
    model_id: str


@dataclass(frozen=True)
class ConfigToolSpec:
    name: str
    model: str
    description: str = ""
    system_prompt: Optional[str] = None


@dataclass(frozen=True)
class ToolServerSpec:
    name: str
    command: str
    args: Tuple[str, ...] = ()
    env: Optional[Dict[str, str]] = field(default=None, compare=False)
    cwd: Optional[str] = None
    transport: str = "stdio"


@dataclass(frozen=True)
class Configuration:
    profiles: Tuple[Profile, ...]
    models: Dict[str, ModelSpec] = field(default_factory=dict, compare=False)
    tools: Tuple[ConfigToolSpec, ...] = ()
    servers: Tuple[ToolServerSpec, ...] = ()

    def get_model(self, key: str) -> Optional[ModelSpec]:
        return self.models.get(key)

    def find_profile(self, name: str) -> Optional[Profile]:
        for profile in self.profiles:
            if profile.name == name:
                return profile
        return None


@dataclass(frozen=True)
class OrchestratorSettings:
    max_rounds: int = 20
    request_timeout: float = 120.0
    auto_approve: Tuple[str, ...] = ()


def load_json(path: str) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def _nonempty_str(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _optional_str(value: Any) -> Optional[str]:
    return value if _nonempty_str(value) else None


def _parse_profiles(raw: Any, warnings: List[str]) -> List[Profile]:
    profiles: List[Profile] = []
    seen = set()
    if not isinstance(raw, list):
        warnings.append("'coders' must be a list")
        return profiles
    for index, entry in enumerate(raw):
        if not isinstance(entry, dict):
            warnings.append(f"Skipping coder at index {index}: expected object")
            continue
        missing = [k for k in ("name", "endpoint", "model", "color") if not _nonempty_str(entry.get(k))]
        if missing:
            warnings.append(f"Skipping coder at index {index}: missing {', '.join(missing)}")
            continue
        if entry["name"] in seen:
            warnings.append(f"Skipping coder '{entry['name']}': duplicate name")
            continue
        seen.add(entry["name"])
        profiles.append(Profile(
            name=entry["name"],
            endpoint=entry["endpoint"],
            model=entry["model"],
            color=entry["color"],
            system_prompt=_optional_str(entry.get("systemPrompt")),
        ))
    return profiles


def _parse_models(raw: Any, warnings: List[str]) -> Dict[str, ModelSpec]:
    models: Dict[str, ModelSpec] = {}
    if raw is None:
        return models
    if not isinstance(raw, dict):
        warnings.append("'models' must be an object")
        return models
    for key, entry in raw.items():
        if not isinstance(entry, dict) or not _nonempty_str(entry.get("endpoint")) \
                or not _nonempty_str(entry.get("modelId")):
            warnings.append(f"Skipping model '{key}': endpoint and modelId are required")
            continue
        models[key] = ModelSpec(endpoint=entry["endpoint"], model_id=entry["modelId"])
    return models


def _parse_tools(raw: Any, models: Dict[str, ModelSpec], warnings: List[str]) -> List[ConfigToolSpec]:
    tools: List[ConfigToolSpec] = []
    if raw is None:
        return tools
    if not isinstance(raw, list):
        warnings.append("'tools' must be a list")
        return tools
    for index, entry in enumerate(raw):
        if not isinstance(entry, dict) or not _nonempty_str(entry.get("name")):
            warnings.append(f"Skipping tool at index {index}: name is required")
            continue
        model_key = entry.get("model")
        if model_key not in models:
            warnings.append(f"Skipping config tool '{entry['name']}': unknown model '{model_key}'")
            continue
        tools.append(ConfigToolSpec(
            name=entry["name"],
            model=model_key,
            description=entry.get("description") if isinstance(entry.get("description"), str) else "",
            system_prompt=_optional_str(entry.get("systemPrompt")),
        ))
    return tools


def _parse_servers(raw: Any, warnings: List[str]) -> List[ToolServerSpec]:
    servers: List[ToolServerSpec] = []
    seen = set()
    if raw is None:
        return servers
    if not isinstance(raw, list):
        warnings.append("'mcpServers' must be a list")
        return servers
    for index, entry in enumerate(raw):
        if not isinstance(entry, dict) or not _nonempty_str(entry.get("name")):
            warnings.append(f"Skipping tool server at index {index}: name is required")
            continue
        name = entry["name"]
        transport = entry.get("transport") or "stdio"
        if transport not in SUPPORTED_TRANSPORTS:
            if transport in KNOWN_TRANSPORTS:
                warnings.append(f"Skipping tool server '{name}': unsupported transport '{transport}'")
            else:
                warnings.append(f"Skipping tool server '{name}': unknown transport '{transport}'")
            continue
        if not _nonempty_str(entry.get("command")):
            warnings.append(f"Skipping tool server '{name}': stdio transport requires a command")
            continue
        if name in seen:
            warnings.append(f"Skipping tool server '{name}': duplicate name")
            continue
        args = entry.get("args") or []
        if not isinstance(args, list) or not all(isinstance(a, str) for a in args):
            warnings.append(f"Skipping tool server '{name}': args must be a list of strings")
            continue
        env = entry.get("env")
        if env is not None and not (isinstance(env, dict) and all(isinstance(v, str) for v in env.values())):
            warnings.append(f"Skipping tool server '{name}': env must map names to strings")
            continue
        seen.add(name)
        servers.append(ToolServerSpec(
            name=name,
            command=entry["command"],
            args=tuple(args),
            env=dict(env) if env else None,
            cwd=_optional_str(entry.get("cwd")),
            transport=transport,
        ))
    return servers


def parse_config(data: Any) -> Tuple[Configuration, List[str]]:
    """Validate a decoded config document. Returns (configuration, warnings)."""
    if not isinstance(data, dict):
        raise ConfigError("Invalid config: expected a JSON object")
    warnings: List[str] = []
    raw_profiles = data.get("coders", data.get("agents"))
    profiles = _parse_profiles(raw_profiles, warnings)
    if not profiles:
        raise ConfigError("Invalid config: no usable coder profiles")
    models = _parse_models(data.get("models"), warnings)
    config = Configuration(
        profiles=tuple(profiles),
        models=models,
        tools=tuple(_parse_tools(data.get("tools"), models, warnings)),
        servers=tuple(_parse_servers(data.get("mcpServers"), warnings)),
    )
    for message in warnings:
        logging_hook.log_event("config_warning", {"warning": message})
    return config, warnings


def load_config(path: str) -> Tuple[Configuration, List[str]]:
    try:
        data = load_json(path)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid config {path}: {exc}") from exc
    return parse_config(data)


def parse_name_list(raw: Optional[str]) -> Tuple[str, ...]:
    if not raw:
        return ()
    return tuple(item.strip() for item in raw.split(",") if item.strip())
