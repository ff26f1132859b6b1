"""Tests for the llmcoders terminal front end."""

import json
import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from llmcoders import cli, hooks, llm_client
from llmcoders.config import Configuration, Profile
from llmcoders.events import ApprovalRequested
from llmcoders.middleware import logging_hook
from llmcoders.orchestrator import ApprovalDecision, Orchestrator
from llmcoders.tool_handlers import _state
from llmcoders.types import Message

ALICE = Profile(name="alice", endpoint="http://a/v1", model="m1", color="Blue")
BOB = Profile(name="bob", endpoint="http://b/v1", model="m2", color="chartreuse")


class FakeClient:
    def __init__(self, *rounds):
        self.rounds = list(rounds)

    def stream_chat(self, endpoint, model, messages, tools=None, tool_choice=None):
        yield from self.rounds.pop(0)

    def close(self):
        pass


def answers(monkeypatch, *replies):
    replies = list(replies)

    def fake_input(prompt=""):
        reply = replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return reply
    monkeypatch.setattr("builtins.input", fake_input)


@pytest.fixture(autouse=True)
def isolated(tmp_path, monkeypatch):
    hooks.clear()
    monkeypatch.setattr(_state, "SANDBOX_ROOT", str(tmp_path))
    yield
    hooks.clear()
    logging_hook.set_log_path(None)
    logging_hook._run_context.clear()


def test_color_code():
    assert cli.color_code(ALICE) == cli.BLUE
    assert cli.color_code(BOB) == ""


def test_args_preview_shortens_bodies():
    preview = cli._args_preview({"path": "a.txt", "content": "x" * 100})
    assert preview == "path=a.txt content=<100 chars>"
    assert cli._args_preview({"path": "p" * 300}).endswith("...")


def test_parser_defaults():
    args = cli.build_parser().parse_args([])
    assert args.config == cli.DEFAULT_CONFIG
    assert args.root is None and args.coder is None
    args = cli.build_parser().parse_args(["--auto-approve", "list_directory,read_text_file", "--coder", "bob"])
    assert args.auto_approve == "list_directory,read_text_file"
    assert args.coder == "bob"


class TestPromptApproval:

    EVENT = ApprovalRequested(name="edit_text_file", args={"path": "f.txt"}, diff_preview="- a\n+ b")

    def test_reprompts_until_valid(self, monkeypatch, capsys):
        answers(monkeypatch, "maybe", "n")
        assert cli.prompt_approval(self.EVENT) is ApprovalDecision.DENY
        out = capsys.readouterr().out
        assert "edit_text_file" in out
        assert "- a" in out and "+ b" in out

    def test_yes_and_escape(self, monkeypatch):
        answers(monkeypatch, "Y")
        assert cli.prompt_approval(self.EVENT) is ApprovalDecision.APPROVE
        answers(monkeypatch, "esc")
        assert cli.prompt_approval(self.EVENT) is ApprovalDecision.CANCEL

    def test_interrupt_cancels(self, monkeypatch):
        answers(monkeypatch, KeyboardInterrupt())
        assert cli.prompt_approval(self.EVENT) is ApprovalDecision.CANCEL


def test_run_turn_streams_and_approves(tmp_path, monkeypatch, capsys):
    (tmp_path / "notes.txt").write_text("hello", encoding="utf-8")
    first = [
        llm_client.ToolCallDelta(index=0, id="call_1", name="read_text_file", arguments='{"path": "notes.txt"}'),
        llm_client.StreamComplete(),
    ]
    second = [llm_client.ContentDelta("It says hello."), llm_client.StreamComplete()]
    orch = Orchestrator(Configuration(profiles=(ALICE, BOB)), client=FakeClient(first, second))
    answers(monkeypatch, "y")
    cli.run_turn(cli.CliSession(orchestrator=orch, profile=ALICE), "what is in notes.txt?")
    out = capsys.readouterr().out
    assert "read_text_file" in out
    assert "It says hello." in out
    assert orch.get_history()[-1].content == "It says hello."


class TestCommands:

    def make_session(self):
        orch = Orchestrator(Configuration(profiles=(ALICE, BOB)), client=FakeClient())
        return cli.CliSession(orchestrator=orch, profile=ALICE)

    def test_use_switches_and_resets(self, capsys):
        session = self.make_session()
        session.orchestrator._history.append(Message.user("old"))
        cli.cmd_use(session, "bob")
        assert session.profile is BOB
        assert session.orchestrator.get_history() == []
        assert "bob" in capsys.readouterr().out

    def test_use_unknown(self, capsys):
        session = self.make_session()
        cli.cmd_use(session, "carol")
        assert session.profile is ALICE
        assert "Unknown coder" in capsys.readouterr().out

    def test_coders_marks_current(self, capsys):
        cli.cmd_coders(self.make_session(), "")
        lines = capsys.readouterr().out.splitlines()
        assert lines[0].startswith(" *") and "alice" in lines[0]
        assert lines[1].startswith("  ") and "bob" in lines[1]

    def test_repl_dispatches_commands(self, monkeypatch, capsys):
        answers(monkeypatch, "/history", "/nope", "/exit")
        cli.repl(self.make_session())
        out = capsys.readouterr().out
        assert "(empty)" in out
        assert "Unknown command" in out


class TestMain:

    def test_missing_config(self, tmp_path, capsys):
        code = cli.main(["--config", str(tmp_path / "absent.json"), "--root", str(tmp_path)])
        assert code == 2

    def test_invalid_config(self, tmp_path, capsys):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"coders": []}), encoding="utf-8")
        assert cli.main(["--config", str(path), "--root", str(tmp_path)]) == 2
        assert "no usable coder profiles" in capsys.readouterr().err

    def test_unknown_coder(self, tmp_path):
        path = tmp_path / "cfg.json"
        path.write_text(json.dumps({"coders": [
            {"name": "alice", "endpoint": "http://a/v1", "model": "m", "color": "blue"},
        ]}), encoding="utf-8")
        with pytest.raises(SystemExit):
            cli.main(["--config", str(path), "--root", str(tmp_path), "--coder", "zed"])

    def test_runs_repl_and_exits(self, tmp_path, monkeypatch, capsys):
        path = tmp_path / "cfg.json"
        path.write_text(json.dumps({"coders": [
            {"name": "alice", "endpoint": "http://a/v1", "model": "m", "color": "blue"},
        ], "mcpServers": [{"name": "ws", "transport": "ws", "url": "ws://x"}]}), encoding="utf-8")
        answers(monkeypatch, "/exit")
        assert cli.main(["--config", str(path), "--root", str(tmp_path)]) == 0
        assert "unsupported transport 'ws'" in capsys.readouterr().err
