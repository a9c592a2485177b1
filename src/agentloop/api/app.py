"""
Core API backend for agentloop.

Every session is an independent :class:`~agentloop.agent.agent_loop.Agent` with its own history,
step counter and tools.  MCP servers are started once per process in a pool shared by all sessions
and closed when the application shuts down.  It exposes the following endpoints:
- **GET /health**  - liveness probe for health checks.
- **POST /sessions** - create a new session, returns a session ID.
- **GET /sessions** - list all active sessions.
- **DELETE /sessions/{id}** - drop a session.
- **POST /sessions/{id}/messages** - add a user message and run the loop to termination.
- **POST /sessions/{id}/reset** - clear the history and step counter of a session.
- **GET /sessions/{id}/tools** - tool descriptors advertised to the model.
- **POST /sessions/{id}/tools/{name}** - invoke a tool directly, bypassing the model.
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import (
    dataclass,
    field,
)
from typing import (
    Any,
    AsyncIterator,
    Callable,
    Dict,
    List,
    Optional,
)

from fastapi import (
    FastAPI,
    HTTPException,
)

from agentloop.agent.chat_backend import ChatBackend
from agentloop.agent.factory import (
    AgentBundle,
    build_agent,
)
from agentloop.api.models import (
    MessageRequest,
    MessageResponse,
    SessionResponse,
    ToolCallRequest,
    ToolListResponse,
)
from agentloop.common import (
    AnsiColors,
    colored_print,
)
from agentloop.config import (
    ConfigError,
    Settings,
    settings as default_settings,
)
from agentloop.core.observer import LoggingObserver
from agentloop.core.retry import BackendError
from agentloop.core.schema import ToolResult
from agentloop.tools.mcp import McpConnectionPool

logger = logging.getLogger(__name__)


@dataclass
class Session:
    bundle: AgentBundle
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


def create_app(
    config: Optional[Settings] = None,
    backend_factory: Optional[Callable[[], ChatBackend]] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Parameters
    ----------
    config:
        Settings used for every new session (defaults to the module-level settings).
    backend_factory:
        Optional callable producing a chat backend per session; by default the backend is built from
        *config*.
    """
    config = config or default_settings
    sessions: Dict[str, Session] = {}
    mcp_pool = McpConnectionPool()

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        for session in sessions.values():
            await session.bundle.aclose()
        sessions.clear()
        await mcp_pool.close()

    app = FastAPI(
        title="agentloop API",
        version="0.1.0",
        description="Autonomous tool-using agent loop",
        lifespan=lifespan,
    )

    def get_session(session_id: str) -> Session:
        session = sessions.get(session_id)
        if session is None:
            raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")
        return session

    # -----------------------------------------------------------------------
    # Routes
    # -----------------------------------------------------------------------
    @app.get("/health", summary="Health check")
    async def health() -> dict[str, str]:
        """Return a simple liveness payload."""
        return {"status": "ok"}

    @app.post("/sessions", response_model=SessionResponse, summary="Create a new session")
    async def create_session() -> SessionResponse:
        """Create a new agent session."""
        backend = backend_factory() if backend_factory is not None else None
        try:
            bundle = await build_agent(
                config, observer=LoggingObserver(), backend=backend, pool=mcp_pool
            )
        except ConfigError as exc:
            logger.error("Cannot create session: %s", exc)
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        session_id = str(uuid.uuid4())
        sessions[session_id] = Session(bundle=bundle)
        logger.info("Created session %s", session_id)
        return SessionResponse(session_id=session_id, tools=bundle.agent.tool_names())

    @app.get("/sessions", response_model=List[str], summary="List active sessions")
    async def list_sessions() -> List[str]:
        """List all active session IDs."""
        return list(sessions.keys())

    @app.delete("/sessions/{session_id}", summary="Close a session")
    async def delete_session(session_id: str) -> dict[str, str]:
        session = get_session(session_id)
        async with session.lock:
            await session.bundle.aclose()
        sessions.pop(session_id, None)
        return {"status": "closed", "session_id": session_id}

    @app.post(
        "/sessions/{session_id}/messages",
        response_model=MessageResponse,
        summary="Process a message",
    )
    async def post_message(session_id: str, req: MessageRequest) -> MessageResponse:
        """Append the user message and run the agent loop to termination."""
        session = get_session(session_id)
        agent = session.bundle.agent
        async with session.lock:
            agent.add_user_message(req.message)
            try:
                reply = await agent.run()
            except BackendError as exc:
                logger.error("Session %s aborted by backend failure: %s", session_id, exc)
                raise HTTPException(status_code=502, detail=str(exc)) from exc
        return MessageResponse(
            reply=reply,
            session_id=session_id,
            steps=agent.step_count,
            messages=len(agent.messages),
        )

    @app.post("/sessions/{session_id}/reset", summary="Reset a session")
    async def reset_session(session_id: str) -> dict[str, Any]:
        """Forget the conversation so far, keeping the system prompt and tools."""
        session = get_session(session_id)
        agent = session.bundle.agent
        async with session.lock:
            agent.reset()
        logger.info("Reset session %s", session_id)
        return {
            "status": "reset",
            "session_id": session_id,
            "steps": agent.step_count,
            "messages": len(agent.messages),
        }

    @app.get("/sessions/{session_id}/tools", response_model=ToolListResponse, summary="List tools")
    async def list_tools(session_id: str) -> ToolListResponse:
        agent = get_session(session_id).bundle.agent
        return ToolListResponse(tools=agent.registry.descriptors())

    @app.post(
        "/sessions/{session_id}/tools/{name}",
        response_model=ToolResult,
        summary="Invoke a tool directly",
    )
    async def call_tool(session_id: str, name: str, req: ToolCallRequest) -> ToolResult:
        agent = get_session(session_id).bundle.agent
        result = await agent.call_tool_direct(name, req.arguments)
        if result is None:
            raise HTTPException(status_code=404, detail=f"Tool '{name}' not found")
        return result

    return app


app = create_app()


# ---------------------------------------------------------------------------
# Public helper to launch the API (imported by main.py)
# ---------------------------------------------------------------------------
def run_api(
    host: str = "0.0.0.0", port: int = 8000, reload: bool = False, log_level: str | None = None
) -> None:
    """Start a uvicorn server hosting *app*.

    Parameters
    ----------
    host, port:
        Bind address for the HTTP server.
    reload:
        If *True*, enable auto-reload (useful in development).
    log_level:
        Logging level to use (default from settings if not provided).
    """

    # Lazy import - keeps uvicorn an optional dependency at pkg-import time
    import uvicorn  # pylint: disable=import-outside-toplevel

    if log_level is None:  # Use the default from settings if not provided
        log_level = default_settings.LOG_LEVEL

    logger.info(
        "Starting agentloop API at %s:%d (reload=%s, log_level=%s)", host, port, reload, log_level
    )
    colored_print(f"agentloop API is running at http://localhost:{port}.", AnsiColors.GREEN)
    colored_print(f"Visit http://localhost:{port}/docs for API documentation.", AnsiColors.BLUE)
    uvicorn.run(
        "agentloop.api.app:app",
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )


# ---------------------------------------------------------------------------
# `python -m agentloop.api.app` helper
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    run_api(reload=True)
