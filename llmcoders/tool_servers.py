"""
Tool-server process manager (MCP over stdio).

One private asyncio loop runs in a daemon thread; the public methods are
synchronous wrappers around it. Each configured server gets one long-lived
connection task that owns its stdio_client/ClientSession contexts from open
to close, so startup of all servers runs concurrently and one server failing
never affects the others.

The tool list is fetched once per connection after startup settles and frozen
into an immutable snapshot shared by all readers.
"""

import asyncio
import json
import threading
from collections import OrderedDict
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from mcp import types as mcp_types
from mcp.client.session import ClientSession
from mcp.client.stdio import StdioServerParameters, stdio_client

from llmcoders import hooks
from llmcoders.config import SUPPORTED_TRANSPORTS, ToolServerSpec
from llmcoders.tool_handlers.schema import ExternalTool
from llmcoders.types import ToolResult

CLIENT_NAME = "llm-coders"
CLIENT_VERSION = "1.0.0"

SessionFactory = Callable[[ToolServerSpec], Any]


@asynccontextmanager
async def stdio_session(spec: ToolServerSpec) -> AsyncIterator[ClientSession]:
    """Launch the server subprocess and yield an initialized session."""
    if spec.transport not in SUPPORTED_TRANSPORTS:
        raise ValueError(f"Unsupported transport: {spec.transport}")
    if not spec.command:
        raise ValueError(f"Tool server '{spec.name}' requires a command")
    params = StdioServerParameters(
        command=spec.command,
        args=list(spec.args),
        env=dict(spec.env) if spec.env else None,
        cwd=spec.cwd,
    )
    async with AsyncExitStack() as stack:
        read_stream, write_stream = await stack.enter_async_context(stdio_client(params))
        session = await stack.enter_async_context(ClientSession(
            read_stream,
            write_stream,
            client_info=mcp_types.Implementation(name=CLIENT_NAME, version=CLIENT_VERSION),
        ))
        await session.initialize()
        yield session


class _Connection:
    """A live server connection held open by its own task until closed."""

    def __init__(self, spec: ToolServerSpec, factory: SessionFactory):
        self.spec = spec
        self.session: Any = None
        self._factory = factory
        self._ready: "asyncio.Future[Any]" = asyncio.get_running_loop().create_future()
        self._stop = asyncio.Event()
        self._task: Optional["asyncio.Task[None]"] = None
        self.close_error: Optional[BaseException] = None

    @property
    def name(self) -> str:
        return self.spec.name

    def start(self) -> None:
        self._task = asyncio.get_running_loop().create_task(self._run(), name=f"tool-server:{self.name}")

    async def _run(self) -> None:
        try:
            async with self._factory(self.spec) as session:
                self.session = session
                if not self._ready.done():
                    self._ready.set_result(session)
                await self._stop.wait()
        except asyncio.CancelledError:
            self._ready.cancel()
            raise
        except Exception as exc:
            if not self._ready.done():
                self._ready.set_exception(exc)
            else:
                self.close_error = exc
        finally:
            self.session = None

    async def wait_ready(self, timeout: float) -> Any:
        return await asyncio.wait_for(asyncio.shield(self._ready), timeout)

    async def list_tools(self) -> Any:
        session = self.session
        if session is None:
            raise ConnectionError(f"server '{self.name}' exited before listing tools")
        return await session.list_tools()

    async def close(self, timeout: float) -> None:
        self._stop.set()
        if self._task is None:
            return
        done, _ = await asyncio.wait({self._task}, timeout=timeout)
        if not done:
            self._task.cancel()
            await asyncio.wait({self._task})
        if self.close_error is not None:
            raise self.close_error


def render_call_result(result: Any) -> ToolResult:
    """Flatten an MCP CallToolResult into a ToolResult."""
    is_error = bool(getattr(result, "isError", False))
    parts: List[str] = []
    for block in getattr(result, "content", None) or []:
        text = getattr(block, "text", None)
        if isinstance(text, str):
            parts.append(text)
            continue
        dump = getattr(block, "model_dump", None)
        parts.append(json.dumps(dump(mode="json"), ensure_ascii=False) if dump else str(block))
    content = "\n".join(parts)
    if not content:
        structured = getattr(result, "structuredContent", None)
        if structured:
            content = json.dumps(structured, ensure_ascii=False)
    return ToolResult(content=content, is_error=is_error)


class ToolServerManager:
    """Starts tool servers, snapshots their tools, and routes calls to them."""

    def __init__(
        self,
        session_factory: Optional[SessionFactory] = None,
        startup_timeout: float = 20.0,
        call_timeout: float = 120.0,
        close_timeout: float = 5.0,
    ):
        self._session_factory = session_factory or stdio_session
        self.startup_timeout = startup_timeout
        self.call_timeout = call_timeout
        self.close_timeout = close_timeout
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._connections: Dict[str, _Connection] = {}
        self._snapshot: Tuple[ExternalTool, ...] = ()
        self._owners: Mapping[str, str] = {}
        self._lock = threading.Lock()

    # -- event loop -------------------------------------------------------

    def _ensure_loop(self) -> asyncio.AbstractEventLoop:
        with self._lock:
            if self._loop is None:
                loop = asyncio.new_event_loop()
                ready = threading.Event()

                def run() -> None:
                    asyncio.set_event_loop(loop)
                    ready.set()
                    loop.run_forever()

                self._thread = threading.Thread(target=run, name="tool-server-loop", daemon=True)
                self._thread.start()
                ready.wait(timeout=5.0)
                self._loop = loop
            return self._loop

    def _run(self, coro: Any, timeout: Optional[float] = None) -> Any:
        loop = self._ensure_loop()
        return asyncio.run_coroutine_threadsafe(coro, loop).result(timeout=timeout)

    # -- lifecycle --------------------------------------------------------

    def start(self, servers: Sequence[ToolServerSpec]) -> None:
        """Connect to every server concurrently and build the tool snapshot."""
        self._run(self._start_all(list(servers)))

    async def _start_all(self, specs: List[ToolServerSpec]) -> None:
        conns: List[_Connection] = []
        for spec in specs:
            if spec.name in self._connections or any(c.name == spec.name for c in conns):
                self._warn(spec.name, "duplicate server name")
                continue
            conn = _Connection(spec, self._session_factory)
            conn.start()
            conns.append(conn)

        results = await asyncio.gather(
            *(conn.wait_ready(self.startup_timeout) for conn in conns),
            return_exceptions=True,
        )
        live: List[_Connection] = []
        for conn, outcome in zip(conns, results):
            if isinstance(outcome, BaseException):
                self._warn(conn.name, f"failed to start: {_describe(outcome)}")
                await self._discard(conn)
                continue
            hooks.emit("tool_server_start", {"server": conn.name})
            live.append(conn)

        listings = await asyncio.gather(
            *(conn.list_tools() for conn in live),
            return_exceptions=True,
        )
        connections = dict(self._connections)
        tools = list(self._snapshot)
        owners = dict(self._owners)
        for conn, listing in zip(live, listings):
            if isinstance(listing, BaseException):
                self._warn(conn.name, f"failed to list tools: {_describe(listing)}")
                if conn.session is None:
                    await self._discard(conn)
                else:
                    connections[conn.name] = conn
                continue
            connections[conn.name] = conn
            for tool in getattr(listing, "tools", None) or []:
                name = getattr(tool, "name", None)
                if not isinstance(name, str) or not name:
                    continue
                if name in owners:
                    self._warn(conn.name, f"tool '{name}' already provided by '{owners[name]}'")
                    continue
                schema = getattr(tool, "inputSchema", None)
                owners[name] = conn.name
                tools.append(ExternalTool(
                    name=name,
                    description=getattr(tool, "description", None) or "",
                    parameters=dict(schema) if isinstance(schema, dict) else {"type": "object"},
                    server=conn.name,
                ))

        self._connections = connections
        self._owners = owners
        self._snapshot = tuple(tools)

    async def _discard(self, conn: _Connection) -> None:
        try:
            await conn.close(self.close_timeout)
        except Exception as exc:
            self._warn(conn.name, f"error while closing: {_describe(exc)}")

    def stop(self) -> None:
        """Close every connection, tolerating close failures, and stop the loop."""
        if self._loop is None:
            self._snapshot = ()
            return
        try:
            self._run(self._stop_all())
        finally:
            loop, thread = self._loop, self._thread
            self._loop = self._thread = None
            loop.call_soon_threadsafe(loop.stop)
            if thread is not None:
                thread.join(timeout=2.0)

    async def _stop_all(self) -> None:
        connections = list(self._connections.values())
        self._connections = {}
        self._owners = {}
        self._snapshot = ()
        results = await asyncio.gather(
            *(conn.close(self.close_timeout) for conn in connections),
            return_exceptions=True,
        )
        for conn, outcome in zip(connections, results):
            if isinstance(outcome, BaseException):
                self._warn(conn.name, f"error while closing: {_describe(outcome)}")

    # -- queries ----------------------------------------------------------

    def list_tools(self) -> List[ExternalTool]:
        return list(self._snapshot)

    def tools_by_server(self) -> "OrderedDict[str, List[ExternalTool]]":
        grouped: "OrderedDict[str, List[ExternalTool]]" = OrderedDict()
        for tool in self._snapshot:
            grouped.setdefault(tool.server, []).append(tool)
        return grouped

    def has_tool(self, name: str) -> bool:
        return name in self._owners

    def server_names(self) -> List[str]:
        return list(self._connections)

    def call_tool(self, name: str, arguments: Dict[str, Any]) -> ToolResult:
        """Call a snapshot tool on its owning server. Never raises."""
        server = self._owners.get(name)
        if server is None:
            return ToolResult.error("tool_not_found", tool=name)
        conn = self._connections.get(server)
        if conn is None or conn.session is None or self._loop is None:
            return ToolResult.error("server_unavailable", tool=name, server=server)
        try:
            result = self._run(
                conn.session.call_tool(name, arguments=dict(arguments or {})),
                timeout=self.call_timeout,
            )
        except Exception as exc:
            hooks.emit("tool_server_error", {"server": server, "tool_name": name, "error": _describe(exc)})
            return ToolResult.error("mcp_error", tool=name, server=server, detail=_describe(exc))
        return render_call_result(result)

    def _warn(self, server: str, message: str) -> None:
        hooks.emit("tool_server_error", {"server": server, "error": message})


def _describe(exc: BaseException) -> str:
    text = str(exc)
    return f"{type(exc).__name__}: {text}" if text else type(exc).__name__
