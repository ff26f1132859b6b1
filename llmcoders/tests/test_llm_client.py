"""Tests for llmcoders.llm_client (SSE parsing over httpx.MockTransport)."""

import json
import os
import sys

import httpx
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from llmcoders import hooks
from llmcoders.llm_client import (
    ContentDelta,
    LineDecoder,
    MalformedFrame,
    StreamComplete,
    StreamError,
    StreamingClient,
    ToolCallDelta,
    build_request,
    chat_completions_url,
    parse_frame,
)
from llmcoders.orchestrator import finalize_tool_calls, merge_tool_call_delta
from llmcoders.types import Message


def sse(*payloads):
    out = []
    for payload in payloads:
        data = payload if isinstance(payload, str) else json.dumps(payload, ensure_ascii=False)
        out.append(f"data: {data}\n\n")
    return "".join(out).encode("utf-8")


def content_frame(text):
    return {"choices": [{"index": 0, "delta": {"content": text}}]}


def tool_frame(index, id=None, name=None, arguments=None):
    function = {}
    if name is not None:
        function["name"] = name
    if arguments is not None:
        function["arguments"] = arguments
    entry = {"index": index, "function": function}
    if id is not None:
        entry["id"] = id
    return {"choices": [{"index": 0, "delta": {"tool_calls": [entry]}}]}


def split_every(data, size):
    return [data[i:i + size] for i in range(0, len(data), size)]


def make_client(chunks, status=200, seen=None):
    def handler(request):
        if seen is not None:
            seen.append(request)
        return httpx.Response(status, content=iter(chunks))
    return StreamingClient(transport=httpx.MockTransport(handler))


def collect(client, tools=None):
    return list(client.stream_chat("http://llm.local/v1/", "test-model", [Message.user("hi")], tools=tools))


TOOL_BODY = sse(
    content_frame("Let me look. "),
    tool_frame(0, id="call_a", name="read_", arguments=""),
    tool_frame(0, name="text_file", arguments='{"pa'),
    tool_frame(0, arguments='th": "src/ü.py", '),
    tool_frame(1, id="call_b", name="list_directory", arguments='{"path"'),
    tool_frame(0, arguments='"head": 5}'),
    tool_frame(1, arguments=': "."}'),
    "[DONE]",
)


class TestFrameParsing:

    def test_content_frame(self):
        done, events = parse_frame('data: {"choices":[{"delta":{"content":"hi"}}]}')
        assert not done
        assert events == [ContentDelta("hi")]

    def test_prefix_without_space(self):
        assert parse_frame('data:{"choices":[{"delta":{"content":"x"}}]}')[1] == [ContentDelta("x")]

    def test_done(self):
        assert parse_frame("data: [DONE]") == (True, [])

    def test_non_data_lines_ignored(self):
        for line in ("", ": keep-alive", "event: message", "id: 7"):
            assert parse_frame(line) == (False, [])

    def test_usage_chunk_without_choices_ignored(self):
        assert parse_frame('data: {"choices": [], "usage": {"total_tokens": 3}}') == (False, [])

    def test_malformed(self):
        with pytest.raises(MalformedFrame):
            parse_frame("data: {not json")
        with pytest.raises(MalformedFrame):
            parse_frame("data: [1, 2]")

    def test_tool_call_without_index_uses_position(self):
        line = 'data: {"choices":[{"delta":{"tool_calls":[{"id":"a"},{"id":"b"}]}}]}'
        _, events = parse_frame(line)
        assert [(e.index, e.id) for e in events] == [(0, "a"), (1, "b")]

    def test_error_payload(self):
        _, events = parse_frame('data: {"error": {"message": "overloaded"}}')
        assert events == [StreamError("server error: overloaded")]


class TestLineDecoder:

    def test_multibyte_split_across_chunks(self):
        decoder = LineDecoder()
        data = "é✓\r\nnext".encode("utf-8")
        lines = []
        for byte in split_every(data, 1):
            lines.extend(decoder.feed(byte))
        lines.extend(decoder.flush())
        assert lines == ["é✓", "next"]


class TestRequest:

    def test_url(self):
        assert chat_completions_url("http://h/v1/") == "http://h/v1/chat/completions"

    def test_tool_choice_only_with_tools(self):
        payload = build_request("m", [Message.user("x")], tools=None, tool_choice="auto")
        assert "tools" not in payload and "tool_choice" not in payload
        assert payload["stream"] is True

    def test_request_body(self):
        seen = []
        client = make_client([sse("[DONE]")], seen=seen)
        tools = [{"type": "function", "function": {"name": "t", "parameters": {"type": "object"}}}]
        list(client.stream_chat("http://llm.local/v1/", "m", [Message.user("hi")], tools=tools, tool_choice="auto"))
        request = seen[0]
        assert request.method == "POST"
        assert str(request.url) == "http://llm.local/v1/chat/completions"
        body = json.loads(request.content)
        assert body["model"] == "m"
        assert body["stream"] is True
        assert body["messages"] == [{"role": "user", "content": "hi"}]
        assert body["tools"] == tools
        assert body["tool_choice"] == "auto"


class TestStreamChat:

    def setup_method(self):
        hooks.clear()

    def teardown_method(self):
        hooks.clear()

    def test_content_stream(self):
        events = collect(make_client([sse(content_frame("Hello, "), content_frame("world"), "[DONE]")]))
        assert events == [ContentDelta("Hello, "), ContentDelta("world"), StreamComplete(dropped_frames=0)]

    def test_chunking_does_not_change_events(self):
        reference = collect(make_client([TOOL_BODY]))
        for size in (1, 2, 3, 5, 7, 64):
            assert collect(make_client(split_every(TOOL_BODY, size))) == reference

    def test_tool_call_reassembly(self):
        partials = {}
        for event in collect(make_client(split_every(TOOL_BODY, 3))):
            if isinstance(event, ToolCallDelta):
                merge_tool_call_delta(partials, event)
        calls = finalize_tool_calls(partials)
        assert [(c.id, c.name) for c in calls] == [("call_a", "read_text_file"), ("call_b", "list_directory")]
        assert calls[0].arguments == '{"path": "src/ü.py", "head": 5}'
        assert json.loads(calls[1].arguments) == {"path": "."}

    def test_multibyte_content_split_bytewise(self):
        body = sse(content_frame("héllo wörld ✓"), "[DONE]")
        events = collect(make_client(split_every(body, 1)))
        assert events[0] == ContentDelta("héllo wörld ✓")

    def test_malformed_frames_dropped_and_counted(self):
        body = b"data: {broken\n\n" + sse(content_frame("ok"), "[DONE]")
        events = collect(make_client([body]))
        assert events == [ContentDelta("ok"), StreamComplete(dropped_frames=1)]

    def test_crlf_frames_and_comments(self):
        body = b": ping\r\n" + sse(content_frame("a")).replace(b"\n", b"\r\n") + b"data: [DONE]\r\n\r\n"
        assert collect(make_client([body])) == [ContentDelta("a"), StreamComplete(dropped_frames=0)]

    def test_stream_without_done_still_completes(self):
        events = collect(make_client([sse(content_frame("a"))]))
        assert events[-1] == StreamComplete(dropped_frames=0)

    def test_http_error_status(self):
        errors = []
        hooks.register("api_error", lambda data: errors.append(data))
        events = collect(make_client([b'{"error": "bad model"}'], status=404))
        assert len(events) == 1
        assert isinstance(events[0], StreamError)
        assert "HTTP 404" in events[0].detail
        assert len(errors) == 1

    def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)
        client = StreamingClient(transport=httpx.MockTransport(handler))
        events = collect(client)
        assert len(events) == 1
        assert isinstance(events[0], StreamError)
        assert "ConnectError" in events[0].detail

    def test_server_error_frame_ends_stream(self):
        body = sse(content_frame("a"), {"error": {"message": "overloaded"}}, content_frame("never"))
        events = collect(make_client([body]))
        assert events == [ContentDelta("a"), StreamError("server error: overloaded")]

    def test_invalid_utf8_is_stream_error(self):
        events = collect(make_client([b'data: {"choices":[{"delta":{"content":"\xff"}}]}\n\n']))
        assert isinstance(events[-1], StreamError)

    def test_api_request_hook(self):
        seen = []
        hooks.register("api_request", lambda data: seen.append(data))
        collect(make_client([sse("[DONE]")]))
        assert seen[0]["model"] == "test-model"
        assert seen[0]["message_count"] == 1

    def test_complete_text(self):
        client = make_client([sse(content_frame("sum"), content_frame("mary"), "[DONE]")])
        assert client.complete_text("http://h/v1", "m", [Message.user("x")]) == ("summary", None)
