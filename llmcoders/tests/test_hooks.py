"""Tests for llmcoders.hooks and the default middleware."""

import json
import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from llmcoders import hooks
from llmcoders.catalog import resolve_catalog
from llmcoders.middleware import install_defaults, logging_hook, metrics_hook
from llmcoders.tool_handlers.schema import CONFIG_TOOL_PARAMETERS, ConfigTool, builtin_tools


def read_jsonl(path):
    with open(path, "r", encoding="utf-8") as f:
        return [json.loads(line) for line in f if line.strip()]


@pytest.fixture
def clean_logging():
    hooks.clear()
    logging_hook.set_log_path(None)
    logging_hook._run_context.clear()
    yield
    hooks.clear()
    logging_hook.set_log_path(None)
    logging_hook._run_context.clear()


class TestHooksRegistry:
    """Registration, ordering and data replacement."""

    def setup_method(self):
        hooks.clear()

    def teardown_method(self):
        hooks.clear()

    def test_callbacks_receive_payload(self):
        received = []
        hooks.register("turn_start", received.append)
        hooks.emit("turn_start", {"coder": "alice"})
        assert received == [{"coder": "alice"}]

    def test_emit_without_callbacks_returns_payload(self):
        assert hooks.emit("unheard_of", {"n": 1}) == {"n": 1}

    def test_returned_dict_replaces_payload(self):
        hooks.register("tool_before", lambda data: dict(data, tagged=True))
        hooks.register("tool_before", lambda data: None)
        assert hooks.emit("tool_before", {"tool_name": "t"}) == {"tool_name": "t", "tagged": True}

    def test_callbacks_run_in_registration_order(self):
        seen = []
        hooks.register("order", lambda d: seen.append("first"))
        hooks.register("order", lambda d: seen.append("second"))
        hooks.emit("order", {})
        assert seen == ["first", "second"]

    def test_unregister(self):
        def never(data):
            raise AssertionError("unregistered callback ran")
        hooks.register("ev", never)
        assert hooks.unregister("ev", never) is True
        assert hooks.unregister("ev", never) is False
        hooks.emit("ev", {})
        assert "ev" not in hooks.registered_events()

    def test_clear(self):
        hooks.register("ev", lambda d: None)
        hooks.clear()
        assert hooks.registered_events() == []


class TestMetricsHook:

    def setup_method(self):
        hooks.clear()
        self.collector = metrics_hook.install()

    def teardown_method(self):
        hooks.clear()

    def test_tool_tallies(self):
        hooks.emit("turn_start", {})
        hooks.emit("tool_after", {"tool_name": "read_text_file", "is_error": False})
        hooks.emit("tool_after", {"tool_name": "read_text_file", "is_error": True})
        hooks.emit("tool_after", {"tool_name": "write_file", "is_error": False})
        assert self.collector.tool_calls_total == 3
        assert self.collector.tool_errors_total == 1
        assert self.collector.tool_call_counts == {"read_text_file": 2, "write_file": 1}
        assert self.collector.tool_error_counts == {"read_text_file": 1}

    def test_new_turn_resets(self):
        hooks.emit("tool_after", {"tool_name": "write_file", "is_error": False})
        hooks.emit("approval_result", {"decision": "deny", "approved": False})
        hooks.emit("turn_start", {})
        assert self.collector.tool_calls_total == 0
        assert self.collector.denials == 0

    def test_decisions_and_summary(self):
        hooks.emit("turn_start", {})
        hooks.emit("approval_result", {"decision": "approve", "approved": True})
        hooks.emit("approval_result", {"decision": "deny", "approved": False})
        hooks.emit("approval_result", {"decision": "cancel", "approved": False})
        hooks.emit("api_error", {"error": "HTTP 500"})
        hooks.emit("turn_end", {"outcome": "turn-cancelled"})
        summary = self.collector.summary()
        assert summary["approvals"] == 1
        assert summary["denials"] == 2
        assert self.collector.decisions["cancel"] == 1
        assert summary["api_errors"] == 1
        assert summary["outcome"] == "turn-cancelled"
        assert summary["duration_seconds"] >= 0

    def test_approval_without_decision_field(self):
        hooks.emit("approval_result", {"approved": True})
        hooks.emit("approval_result", {"approved": False})
        assert (self.collector.approvals, self.collector.denials) == (1, 1)


@pytest.mark.usefixtures("clean_logging")
class TestLoggingHook:

    def test_init_logging_path(self, tmp_path):
        path = logging_hook.init_logging(str(tmp_path / "logs"), "alice/bob")
        assert os.path.dirname(path) == str(tmp_path / "logs")
        assert os.path.basename(path).startswith("llmcoders_alice_bob_")
        assert path.endswith(".jsonl")
        # A second call keeps the chosen file.
        assert logging_hook.init_logging(str(tmp_path / "other"), "x") == path

    def test_without_path_nothing_is_written(self, tmp_path):
        logging_hook.log_event("config_warning", {"warning": "w"})
        assert logging_hook.get_log_path() is None
        assert list(tmp_path.iterdir()) == []

    def test_log_event_record(self, tmp_path):
        path = logging_hook.init_logging(str(tmp_path), "alice")
        logging_hook.update_run_context({"session": "abc123", "coder": "alice", "unrelated": "x"})
        logging_hook.log_event("config_warning", {"warning": "Skipping coder at index 1"})
        logging_hook.log_event("config_warning", {"warning": "second"})
        records = read_jsonl(path)
        assert len(records) == 2
        first = records[0]
        assert first["event"] == "config_warning"
        assert first["warning"] == "Skipping coder at index 1"
        assert first["session"] == "abc123"
        assert first["coder"] == "alice"
        assert "unrelated" not in first
        assert "ts" in first

    def test_install_subscribes_lifecycle_events(self):
        logging_hook.install()
        assert set(hooks.LIFECYCLE_EVENTS) <= set(hooks.registered_events())

    def test_large_fields_not_logged(self, tmp_path):
        path = str(tmp_path / "events.jsonl")
        logging_hook.install(log_path=path)
        hooks.emit("api_request", {"model": "m", "messages": [{"role": "user", "content": "secret"}]})
        hooks.emit("tool_after", {"tool_name": "read_text_file", "content": "file body", "is_error": False})
        api, tool = read_jsonl(path)
        assert api["model"] == "m" and "messages" not in api
        assert tool["tool_name"] == "read_text_file" and "content" not in tool

    def test_catalog_warnings_are_logged(self, tmp_path):
        path = str(tmp_path / "events.jsonl")
        logging_hook.install(log_path=path)
        dup = ConfigTool(name="write_file", description="", parameters=CONFIG_TOOL_PARAMETERS, model_key="m")
        _, warnings = resolve_catalog(builtin_tools(), [dup], {})
        records = read_jsonl(path)
        assert [r["event"] for r in records] == ["catalog_warning"]
        assert records[0]["warning"] == warnings[0]


def test_install_defaults(tmp_path, clean_logging):
    path = tmp_path / "run.jsonl"
    installed = install_defaults(log_path=str(path), run_context={"session": "s1"})
    assert isinstance(installed["metrics"], metrics_hook.MetricsCollector)
    hooks.emit("tool_after", {"tool_name": "list_directory", "is_error": False})
    assert installed["metrics"].tool_calls_total == 1
    (record,) = read_jsonl(path)
    assert record["event"] == "tool_after"
    assert record["session"] == "s1"
