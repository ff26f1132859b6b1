"""
Terminal front end: `llm-coders [--config FILE] [--root DIR] ...`.

Loads the configuration, starts tool servers, and runs an input() REPL that
streams each turn and prompts for every tool call approval.
"""

import argparse
import os
import sys
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

from llmcoders import __version__
from llmcoders.config import (
    ConfigError,
    Configuration,
    OrchestratorSettings,
    Profile,
    load_config,
    parse_name_list,
)
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
)
from llmcoders.middleware import install_defaults, logging_hook
from llmcoders.orchestrator import ApprovalDecision, Orchestrator
from llmcoders.tool_handlers import _state
from llmcoders.tool_servers import ToolServerManager

RESET, BOLD, DIM = "\033[0m", "\033[1m", "\033[2m"
BLUE, CYAN, GREEN, RED, YELLOW = "\033[34m", "\033[36m", "\033[32m", "\033[31m", "\033[33m"

COLORS = {
    "blue": BLUE,
    "cyan": CYAN,
    "green": GREEN,
    "red": RED,
    "yellow": YELLOW,
    "magenta": "\033[35m",
    "white": "\033[37m",
}

DEFAULT_CONFIG = "llmcoders.json"


def color_code(profile: Profile) -> str:
    return COLORS.get(profile.color.strip().lower(), "")


@dataclass
class CliSession:
    orchestrator: Orchestrator
    profile: Profile
    metrics: Any = None


# ---------------------------
# Turn rendering
# ---------------------------

def prompt_approval(event: ApprovalRequested) -> ApprovalDecision:
    print(f"\n{YELLOW}?{RESET} {BOLD}{event.name}{RESET} {DIM}{_args_preview(event.args)}{RESET}")
    if event.diff_preview:
        for line in event.diff_preview.splitlines():
            if line.startswith("+ "):
                print(f"  {GREEN}{line}{RESET}")
            elif line.startswith("- "):
                print(f"  {RED}{line}{RESET}")
            else:
                print(f"  {DIM}{line}{RESET}")
    while True:
        try:
            answer = input("  Approve? [y]es / [n]o / esc: ").strip().lower()
        except (KeyboardInterrupt, EOFError):
            print()
            return ApprovalDecision.CANCEL
        if answer in ("y", "yes"):
            return ApprovalDecision.APPROVE
        if answer in ("n", "no"):
            return ApprovalDecision.DENY
        if answer in ("esc", "escape", "\x1b"):
            return ApprovalDecision.CANCEL


def _args_preview(args: Dict[str, Any], limit: int = 160) -> str:
    parts = []
    for key, value in args.items():
        text = value if isinstance(value, str) else repr(value)
        if key in ("content", "edits", "text") and len(text) > 40:
            text = f"<{len(text)} chars>"
        parts.append(f"{key}={text}")
    out = " ".join(parts)
    return out if len(out) <= limit else out[:limit - 3] + "..."


def run_turn(session: CliSession, text: str) -> None:
    orch = session.orchestrator
    color = color_code(session.profile)
    print(f"{BOLD}{color}{session.profile.name}{RESET} ", end="", flush=True)
    turn = orch.submit_turn(session.profile, text)
    try:
        for event in turn:
            if isinstance(event, ContentDelta):
                print(event.text, end="", flush=True)
            elif isinstance(event, ApprovalRequested):
                orch.resolve_approval(prompt_approval(event))
            elif isinstance(event, ApprovalResolved):
                if not event.approved:
                    print(f"  {DIM}skipped {event.name}{RESET}")
            elif isinstance(event, ToolExecutionStarted):
                print(f"  {CYAN}>{RESET} {event.name}", flush=True)
            elif isinstance(event, ToolExecutionCompleted):
                print(f"  {GREEN}✓{RESET} {event.name}")
            elif isinstance(event, ToolExecutionFailed):
                print(f"  {RED}✗{RESET} {event.name}: {DIM}{event.error}{RESET}")
            elif isinstance(event, TurnError):
                print(f"\n{RED}Error:{RESET} {event.detail}")
            elif isinstance(event, TurnCancelled):
                print(f"\n{YELLOW}Cancelled{RESET}")
            elif isinstance(event, TurnComplete):
                print()
    except KeyboardInterrupt:
        orch.cancel()
        turn.close()
        print(f"\n{YELLOW}Cancelled{RESET}")
    if session.metrics is not None:
        summary = session.metrics.summary()
        if summary["tool_calls_total"]:
            print(f"{DIM}tools: {summary['tool_calls_total']} calls, "
                  f"{summary['tool_errors_total']} errors{RESET}")


# ---------------------------
# Interactive commands
# ---------------------------

def cmd_help(session: CliSession, arg: str) -> None:
    print(f"\n{BOLD}Commands{RESET}")
    print("  /coders       - List coder profiles")
    print("  /use <name>   - Switch coder (starts a new conversation)")
    print("  /clear        - Clear the conversation")
    print("  /history      - Show the conversation so far")
    print("  /help         - Show this help")
    print("  /exit         - Quit")
    print()


def cmd_coders(session: CliSession, arg: str) -> None:
    for profile in session.orchestrator.list_available_profiles():
        marker = "*" if profile.name == session.profile.name else " "
        print(f" {marker} {BOLD}{color_code(profile)}{profile.name}{RESET} {DIM}{profile.model} @ {profile.endpoint}{RESET}")


def cmd_use(session: CliSession, arg: str) -> None:
    name = arg.strip()
    profile = session.orchestrator.config.find_profile(name) if name else None
    if profile is None:
        print(f"{RED}Unknown coder:{RESET} {name or '(none)'}. Type /coders to list them.")
        return
    session.orchestrator.reset_conversation()
    session.profile = profile
    logging_hook.update_run_context({"coder": profile.name})
    print(f"{GREEN}✓{RESET} Now talking to {BOLD}{color_code(profile)}{profile.name}{RESET} (new conversation)")


def cmd_clear(session: CliSession, arg: str) -> None:
    session.orchestrator.reset_conversation()
    print(f"{GREEN}✓{RESET} Conversation cleared")


def cmd_history(session: CliSession, arg: str) -> None:
    history = session.orchestrator.get_history()
    if not history:
        print(f"{DIM}(empty){RESET}")
        return
    for message in history:
        label = message.role.value
        if message.tool_calls:
            names = ", ".join(tc.name for tc in message.tool_calls)
            label += f" -> {names}"
        text = message.content.replace("\n", " ")
        if len(text) > 120:
            text = text[:117] + "..."
        print(f"  {BOLD}{label}{RESET} {DIM}{text}{RESET}")


COMMANDS = {
    "/help": cmd_help,
    "/h": cmd_help,
    "/?": cmd_help,
    "/coders": cmd_coders,
    "/use": cmd_use,
    "/clear": cmd_clear,
    "/history": cmd_history,
}

EXIT_COMMANDS = ("/exit", "/q", "/quit", "exit")


def repl(session: CliSession) -> None:
    print(f"{BOLD}llm-coders{RESET} {__version__} | {DIM}{session.profile.name} | {_state.get_root()}{RESET}")
    print(f"{DIM}Type /help for commands{RESET}\n")
    while True:
        try:
            user_input = input(f"{BOLD}{BLUE}❯{RESET} ").strip()
        except (KeyboardInterrupt, EOFError):
            print()
            break
        if not user_input:
            continue
        if user_input in EXIT_COMMANDS:
            break
        if user_input.startswith("/"):
            name, _, arg = user_input.partition(" ")
            cmd = COMMANDS.get(name)
            if cmd:
                cmd(session, arg)
                continue
            print(f"{RED}Unknown command:{RESET} {user_input}. Type /help for available commands.")
            continue
        run_turn(session, user_input)


# ---------------------------
# Entrypoint
# ---------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="llm-coders - coding assistant with approved tool calls")
    parser.add_argument("--config", default=DEFAULT_CONFIG, help="Config file (default: %(default)s)")
    parser.add_argument("--root", help="Working directory the file tools are confined to (default: cwd)")
    parser.add_argument("--log-dir", dest="log_dir", help="Write a JSONL event log to this directory")
    parser.add_argument("--coder", help="Coder profile to start with (default: first in config)")
    parser.add_argument(
        "--auto-approve", dest="auto_approve",
        help="Comma-separated tool names that run without asking",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def _pick_profile(config: Configuration, name: Optional[str]) -> Profile:
    if not name:
        return config.profiles[0]
    profile = config.find_profile(name)
    if profile is None:
        available = ", ".join(p.name for p in config.profiles)
        raise SystemExit(f"Unknown coder '{name}'. Available coders: {available}")
    return profile


def main(argv: Optional[list] = None) -> int:
    args = build_parser().parse_args(argv)

    root = os.path.realpath(args.root or os.getcwd())
    if not os.path.isdir(root):
        raise SystemExit(f"Working root is not a directory: {root}")
    _state.SANDBOX_ROOT = root

    log_path = None
    if args.log_dir:
        log_path = logging_hook.init_logging(args.log_dir, args.coder)
    installed = install_defaults(
        log_path=log_path,
        run_context={"session": uuid.uuid4().hex[:12], "root": root},
    )

    try:
        config, warnings = load_config(args.config)
    except (OSError, ConfigError) as e:
        print(f"{RED}✗{RESET} {e}", file=sys.stderr)
        return 2
    for warning in warnings:
        print(f"{YELLOW}!{RESET} {warning}", file=sys.stderr)

    profile = _pick_profile(config, args.coder)
    logging_hook.update_run_context({"coder": profile.name})
    settings = OrchestratorSettings(auto_approve=parse_name_list(args.auto_approve))

    servers = ToolServerManager()
    if config.servers:
        print(f"{DIM}Starting {len(config.servers)} tool server(s)...{RESET}")
        servers.start(config.servers)
        for server in config.servers:
            if server.name not in servers.server_names():
                print(f"{YELLOW}!{RESET} tool server '{server.name}' is unavailable", file=sys.stderr)

    orchestrator = Orchestrator(config, tool_servers=servers, settings=settings)
    try:
        _catalog, catalog_warnings = orchestrator.build_catalog()
        for warning in catalog_warnings:
            print(f"{YELLOW}!{RESET} {warning}", file=sys.stderr)
        repl(CliSession(orchestrator=orchestrator, profile=profile, metrics=installed["metrics"]))
    finally:
        servers.stop()
        orchestrator.client.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
