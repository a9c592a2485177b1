"""Shared fixtures: a scripted chat backend and a recording observer."""

import json
import sys
from pathlib import Path
from typing import (
    Any,
    List,
    Sequence,
    Tuple,
    Union,
)

import pytest

from agentloop.agent.chat_backend import ChatBackend
from agentloop.config import Settings
from agentloop.core.observer import AgentObserver
from agentloop.core.retry import RetryPolicy
from agentloop.core.schema import (
    ChatResponse,
    Message,
    ToolCall,
    ToolDescriptor,
)
from agentloop.tools import function_tool

Scripted = Union[ChatResponse, Exception]


class ScriptedBackend(ChatBackend):
    """Replays canned responses (or raises canned errors) and records every request."""

    def __init__(self, script: Sequence[Scripted], retry: RetryPolicy | None = None):
        super().__init__(retry=retry or RetryPolicy(enabled=False))
        self.script: List[Scripted] = list(script)
        self.requests: List[Tuple[List[Message], List[ToolDescriptor]]] = []

    async def _send(self, messages: List[Message], tools: List[ToolDescriptor]) -> ChatResponse:
        self.requests.append((list(messages), list(tools)))
        if not self.script:
            raise AssertionError("ScriptedBackend ran out of responses")
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class RecordingObserver(AgentObserver):
    def __init__(self) -> None:
        self.events: List[Tuple[str, Any]] = []

    def on_log_file(self, path: Path) -> None:
        self.events.append(("log_file", path))

    def on_retry(self, attempt: int, next_delay: float, error: str) -> None:
        self.events.append(("retry", (attempt, next_delay, error)))

    def on_summarize_start(self, before_tokens: int, threshold: int) -> None:
        self.events.append(("summarize_start", (before_tokens, threshold)))

    def on_summarize_done(self, after_tokens: int) -> None:
        self.events.append(("summarize_done", after_tokens))

    def on_thinking(self, text: str) -> None:
        self.events.append(("thinking", text))

    def on_assistant_text(self, text: str) -> None:
        self.events.append(("text", text))

    def on_tool_call(self, name: str, args_preview: str) -> None:
        self.events.append(("tool_call", (name, args_preview)))

    def on_tool_result(self, name: str, success: bool, preview: str) -> None:
        self.events.append(("tool_result", (name, success, preview)))

    def of_kind(self, kind: str) -> List[Any]:
        return [payload for event, payload in self.events if event == kind]


def text_response(text: str) -> ChatResponse:
    return ChatResponse(text=text, finish_reason="stop")


def tool_response(*calls: Tuple[str, str, dict], text: str | None = None) -> ChatResponse:
    return ChatResponse(
        text=text,
        tool_calls=[ToolCall(id=call_id, name=name, arguments=args) for call_id, name, args in calls],
        finish_reason="tool_calls",
    )


@function_tool("echo")
def echo_tool(text: str) -> str:
    """Echo the input text back to the caller."""
    return text


@pytest.fixture
def observer() -> RecordingObserver:
    return RecordingObserver()


@pytest.fixture
def make_settings(tmp_path: Path):
    """Settings isolated from the environment: file tools only, no logs, no retries."""

    def factory(**overrides: Any) -> Settings:
        values: dict[str, Any] = {
            "PROVIDER": "openai",
            "MODEL": "test-model",
            "API_KEY": "test-key",
            "WORKSPACE_DIR": str(tmp_path),
            "LOG_DIR": None,
            "SYSTEM_PROMPT_PATH": "system_prompt.md",
            "ENABLE_BASH": False,
            "ENABLE_FILE_TOOLS": True,
            "ENABLE_NOTES": False,
            "ENABLE_SKILLS": False,
            "ENABLE_MCP": False,
            "RETRY_ENABLED": False,
        }
        values.update(overrides)
        return Settings(**values)

    return factory


PING_SERVER = '''
from mcp.server.fastmcp import FastMCP

server = FastMCP("ping")


@server.tool()
def ping(text: str) -> str:
    """Answer with pong."""
    return f"pong:{text}"


server.run()
'''


@pytest.fixture
def ping_server_config(tmp_path: Path) -> Path:
    """An ``mcp.json`` pointing at a real stdio MCP server offering one ``ping`` tool."""
    script = tmp_path / "ping_server.py"
    script.write_text(PING_SERVER, encoding="utf-8")
    path = tmp_path / "mcp.json"
    path.write_text(
        json.dumps({"mcpServers": {"ping": {"command": sys.executable, "args": [str(script)]}}}),
        encoding="utf-8",
    )
    return path
