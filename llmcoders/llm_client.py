"""
Streaming chat-completions client.

Issues one OpenAI-compatible `POST {endpoint}/chat/completions` request with
`stream: true` and turns the server-sent event body into a lazy sequence of
events. Bytes are decoded incrementally, so multi-byte characters split across
reads come out intact. Tool-call deltas are reported as they arrive, keyed by
their `index`; reassembly is left to the caller.
"""

import codecs
import json
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Union

import httpx

from llmcoders import hooks
from llmcoders.types import Message

FRAME_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"

# Malformed frames are dropped and counted; the stream continues.
DROP_MALFORMED_FRAMES = "drop-malformed-frames"
MALFORMED_FRAME_POLICY = DROP_MALFORMED_FRAMES


@dataclass(frozen=True)
class ContentDelta:
    text: str


@dataclass(frozen=True)
class ToolCallDelta:
    index: int
    id: Optional[str] = None
    name: Optional[str] = None
    arguments: Optional[str] = None


@dataclass(frozen=True)
class StreamComplete:
    dropped_frames: int = 0


@dataclass(frozen=True)
class StreamError:
    detail: str


StreamEvent = Union[ContentDelta, ToolCallDelta, StreamComplete, StreamError]


class LineDecoder:
    """Incremental UTF-8 decoder that yields complete lines."""

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")()
        self._buffer = ""

    def feed(self, chunk: bytes) -> List[str]:
        self._buffer += self._decoder.decode(chunk)
        if "\n" not in self._buffer:
            return []
        *lines, self._buffer = self._buffer.split("\n")
        return [line.rstrip("\r") for line in lines]

    def flush(self) -> List[str]:
        self._buffer += self._decoder.decode(b"", final=True)
        rest, self._buffer = self._buffer.rstrip("\r"), ""
        return [rest] if rest else []


class MalformedFrame(ValueError):
    pass


def chat_completions_url(endpoint: str) -> str:
    return endpoint.rstrip("/") + "/chat/completions"


def build_request(
    model: str,
    messages: Sequence[Union[Message, Dict[str, Any]]],
    tools: Optional[List[Dict[str, Any]]] = None,
    tool_choice: Optional[Any] = None,
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "model": model,
        "messages": [m.to_dict() if isinstance(m, Message) else m for m in messages],
        "stream": True,
    }
    if tools:
        payload["tools"] = tools
        if tool_choice is not None:
            payload["tool_choice"] = tool_choice
    return payload


def parse_frame(line: str) -> Tuple[bool, List[StreamEvent]]:
    """Decode one transport line. Returns (done, events).

    Lines that are not `data:` frames (comments, `event:` fields, blanks)
    produce nothing. Raises MalformedFrame for undecodable payloads.
    """
    if not line.startswith(FRAME_PREFIX):
        return False, []
    data = line[len(FRAME_PREFIX):]
    if data.startswith(" "):
        data = data[1:]
    if data.strip() == DONE_SENTINEL:
        return True, []
    try:
        payload = json.loads(data)
    except json.JSONDecodeError as exc:
        raise MalformedFrame(str(exc)) from exc
    if not isinstance(payload, dict):
        raise MalformedFrame("frame is not an object")

    if payload.get("error"):
        error = payload["error"]
        detail = error.get("message") if isinstance(error, dict) else error
        return False, [StreamError(f"server error: {detail}")]

    choices = payload.get("choices")
    if not choices:
        return False, []
    if not isinstance(choices, list) or not isinstance(choices[0], dict):
        raise MalformedFrame("choices[0] is not an object")
    delta = choices[0].get("delta") or {}
    if not isinstance(delta, dict):
        raise MalformedFrame("delta is not an object")

    events: List[StreamEvent] = []
    content = delta.get("content")
    if isinstance(content, str) and content:
        events.append(ContentDelta(content))
    tool_calls = delta.get("tool_calls")
    if isinstance(tool_calls, list):
        for pos, entry in enumerate(tool_calls):
            if not isinstance(entry, dict):
                continue
            index = entry.get("index")
            if isinstance(index, bool) or not isinstance(index, int):
                index = pos
            function = entry.get("function") or {}
            if not isinstance(function, dict):
                function = {}
            arguments = function.get("arguments")
            events.append(ToolCallDelta(
                index=index,
                id=entry.get("id") or None,
                name=function.get("name") or None,
                arguments=arguments if isinstance(arguments, str) and arguments else None,
            ))
    return False, events


class StreamingClient:
    """Streaming chat client over one pooled httpx.Client."""

    def __init__(
        self,
        timeout: float = 120.0,
        connect_timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.timeout = timeout
        self._client = httpx.Client(
            timeout=httpx.Timeout(
                connect=connect_timeout,
                read=timeout,
                write=30.0,
                pool=10.0,
            ),
            transport=transport,
            headers=headers,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "StreamingClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def stream_chat(
        self,
        endpoint: str,
        model: str,
        messages: Sequence[Union[Message, Dict[str, Any]]],
        tools: Optional[List[Dict[str, Any]]] = None,
        tool_choice: Optional[Any] = None,
    ) -> Iterator[StreamEvent]:
        """Yield stream events for one request.

        Ends with exactly one StreamComplete or StreamError. Closing the
        generator early closes the HTTP response.
        """
        url = chat_completions_url(endpoint)
        payload = build_request(model, messages, tools, tool_choice)
        hooks.emit("api_request", {
            "url": url,
            "model": model,
            "message_count": len(payload["messages"]),
            "tool_count": len(tools or []),
        })

        dropped = 0
        decoder = LineDecoder()
        try:
            with self._client.stream(
                "POST", url, json=payload, headers={"Accept": "text/event-stream"},
            ) as response:
                if response.status_code >= 400:
                    body = response.read().decode("utf-8", errors="replace")[:500]
                    yield self._error(url, f"HTTP {response.status_code}: {body}".strip())
                    return
                for chunk in response.iter_bytes():
                    for line in decoder.feed(chunk):
                        try:
                            done, events = parse_frame(line)
                        except MalformedFrame:
                            dropped += 1
                            continue
                        for event in events:
                            if isinstance(event, StreamError):
                                yield self._error(url, event.detail)
                                return
                            yield event
                        if done:
                            yield StreamComplete(dropped_frames=dropped)
                            return
                for line in decoder.flush():
                    try:
                        done, events = parse_frame(line)
                    except MalformedFrame:
                        dropped += 1
                        continue
                    for event in events:
                        if isinstance(event, StreamError):
                            yield self._error(url, event.detail)
                            return
                        yield event
        except httpx.HTTPError as exc:
            yield self._error(url, f"{type(exc).__name__}: {exc}")
            return
        except UnicodeDecodeError as exc:
            yield self._error(url, f"invalid UTF-8 in response: {exc}")
            return
        yield StreamComplete(dropped_frames=dropped)

    def _error(self, url: str, detail: str) -> StreamError:
        hooks.emit("api_error", {"url": url, "error": detail})
        return StreamError(detail)

    def complete_text(
        self,
        endpoint: str,
        model: str,
        messages: Sequence[Union[Message, Dict[str, Any]]],
    ) -> Tuple[str, Optional[str]]:
        """Run a tool-less request to completion. Returns (text, error)."""
        parts: List[str] = []
        for event in self.stream_chat(endpoint, model, messages):
            if isinstance(event, ContentDelta):
                parts.append(event.text)
            elif isinstance(event, StreamError):
                return "".join(parts), event.detail
        return "".join(parts), None
