"""
MCP (Model Context Protocol) proxy tools.

Servers are listed in a JSON file::

    {"mcpServers": {"fs": {"command": "npx", "args": ["-y", "@modelcontextprotocol/server-filesystem"],
                           "env": {}, "disabled": false}}}

Each enabled server is started as a stdio subprocess and kept open in a :class:`McpConnectionPool`.
The pool is an explicitly owned handle: it is created by the caller, filled by
:func:`load_mcp_tools`, handed to every :class:`McpTool` it produced, and torn down with
:meth:`McpConnectionPool.close`.
"""

import asyncio
import logging
from contextlib import AsyncExitStack
from pathlib import Path
from typing import (
    Any,
    Dict,
    List,
    Optional,
)

from pydantic import (
    BaseModel,
    Field,
)

from agentloop.core.schema import ToolResult
from agentloop.tools import (
    Tool,
    ToolExecutionError,
)

logger = logging.getLogger(__name__)


def _field(obj: Any, *names: str) -> Any:
    """First present attribute among *names*; the SDK has spelled some fields both ways."""
    for name in names:
        if hasattr(obj, name):
            return getattr(obj, name)
    return None


class McpServerConfig(BaseModel):
    command: str
    args: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)
    cwd: Optional[str] = None
    disabled: bool = False


class McpServersConfig(BaseModel):
    servers: Dict[str, McpServerConfig] = Field(default_factory=dict, alias="mcpServers")


class McpConnectionPool:
    """
    Owns the MCP client sessions of one process (or one caller) until :meth:`close`.

    ``stdio_client`` and ``ClientSession`` open anyio task groups that must be exited by the task
    that entered them.  Every connection is therefore entered and exited by one owner task started
    on the first :meth:`connect`.  Other tasks may use the sessions but never enter or exit them.
    """

    def __init__(self) -> None:
        self.sessions: Dict[str, Any] = {}
        self._requests: Optional["asyncio.Queue[Optional[tuple]]"] = None
        self._owner: Optional["asyncio.Task[None]"] = None
        self._connecting: Dict[str, "asyncio.Future[Any]"] = {}

    async def connect(self, name: str, server: McpServerConfig) -> Any:
        """Start *server* (once) and return its initialized ``ClientSession``."""
        if name in self.sessions:
            return self.sessions[name]
        if name in self._connecting:
            return await asyncio.shield(self._connecting[name])

        if self._owner is None or self._owner.done():
            self._requests = asyncio.Queue()
            self._owner = asyncio.create_task(self._own_connections(self._requests), name="mcp-pool")
        future: "asyncio.Future[Any]" = asyncio.get_running_loop().create_future()
        self._connecting[name] = future
        try:
            await self._requests.put((server, future))
            session = await asyncio.shield(future)
        finally:
            self._connecting.pop(name, None)
        self.sessions[name] = session
        logger.info("Connected MCP server '%s'", name)
        return session

    @staticmethod
    async def _open(stack: AsyncExitStack, server: McpServerConfig) -> Any:
        from mcp import (  # pylint: disable=import-outside-toplevel
            ClientSession,
            StdioServerParameters,
        )
        from mcp.client.stdio import stdio_client  # pylint: disable=import-outside-toplevel

        params = StdioServerParameters(
            command=server.command, args=server.args, env=server.env or None, cwd=server.cwd
        )
        read_stream, write_stream = await stack.enter_async_context(stdio_client(params))
        session = await stack.enter_async_context(ClientSession(read_stream, write_stream))
        await session.initialize()
        return session

    async def _own_connections(self, requests: "asyncio.Queue[Optional[tuple]]") -> None:
        """Serve connect requests until ``None`` arrives, then unwind every connection."""
        waiting: List["asyncio.Future[Any]"] = []
        try:
            async with AsyncExitStack() as stack:
                while True:
                    request = await requests.get()
                    if request is None:
                        break
                    server, future = request
                    waiting.append(future)
                    try:
                        session = await self._open(stack, server)
                    except Exception as exc:  # pylint: disable=broad-except
                        future.set_exception(exc)
                        continue
                    future.set_result(session)
        finally:
            while not requests.empty():
                pending = requests.get_nowait()
                if pending is not None:
                    waiting.append(pending[1])
            for future in waiting:
                if not future.done():
                    future.set_exception(RuntimeError("MCP connection pool is closed"))

    async def close(self) -> None:
        """Shut down every server started through this pool."""
        if self._owner is None:
            return
        owner, self._owner = self._owner, None
        requests, self._requests = self._requests, None
        self.sessions = {}
        await requests.put(None)
        await asyncio.wait([owner])
        if not owner.cancelled() and owner.exception() is not None:
            logger.warning("Error while closing MCP connections: %s", owner.exception())
        logger.info("MCP connections closed")

    async def __aenter__(self) -> "McpConnectionPool":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()


class McpTool(Tool):
    """Forwards calls to a tool living on an MCP server."""

    def __init__(self, name: str, description: str, parameters: Dict[str, Any], session: Any):
        self.name = name
        self.description = description
        self.parameters = parameters
        self._session = session

    async def run(self, arguments: Dict[str, Any]) -> ToolResult:
        try:
            result = await self._session.call_tool(self.name, arguments)
        except Exception as exc:  # pylint: disable=broad-except
            raise ToolExecutionError(f"MCP call failed: {exc}") from exc

        parts: List[str] = []
        for item in result.content or []:
            text = getattr(item, "text", None)
            parts.append(text if text is not None else repr(item))
        text = "\n".join(parts)
        if _field(result, "isError", "is_error"):
            return ToolResult(success=False, content=text, error=text or "Tool returned error")
        return ToolResult.ok(text)


def load_mcp_config(config_path: Path) -> McpServersConfig:
    return McpServersConfig.model_validate_json(Path(config_path).read_text(encoding="utf-8"))


async def load_mcp_tools(config_path: Path, pool: McpConnectionPool) -> List[Tool]:
    """
    Connect every enabled server in *config_path* and wrap its tools.

    A missing config file yields no tools.  A server that fails to start or to list its tools is
    logged and skipped.
    """
    if not Path(config_path).exists():
        return []
    config = load_mcp_config(config_path)

    tools: List[Tool] = []
    seen: Dict[str, str] = {}
    for name, server in config.servers.items():
        if server.disabled:
            continue
        try:
            session = await pool.connect(name, server)
            listing = await session.list_tools()
            offered = []
            for tool in listing.tools:
                schema = _field(tool, "inputSchema", "input_schema") or {"type": "object", "properties": {}}
                offered.append((tool.name, tool.description or "", dict(schema)))
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("Failed to load tools from MCP server '%s': %s", name, exc)
            continue
        for tool_name, description, schema in offered:
            if tool_name in seen:
                logger.warning(
                    "Duplicate tool %r from server %r (already from %r)", tool_name, name, seen[tool_name]
                )
                continue
            seen[tool_name] = name
            tools.append(McpTool(tool_name, description, schema, session))
    return tools
