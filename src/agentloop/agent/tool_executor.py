"""Dispatches tool calls to the session's ``ToolRegistry`` and shapes their results."""

import json
import logging
from typing import Any

from agentloop.common import (
    truncate_text,
    truncate_value,
)
from agentloop.core.schema import (
    Message,
    ToolCall,
    ToolResult,
)
from agentloop.tools import ToolRegistry

logger = logging.getLogger(__name__)

DEFAULT_ERROR = "Tool execution failed"


async def execute_tool(registry: ToolRegistry, name: str, args: Any = None) -> ToolResult:
    """
    Look up *name* in *registry* and invoke it with *args*.

    Parameters
    ----------
    registry:
        The session's tools.
    name:
        The requested tool name (exact, case-sensitive match).
    args:
        Argument object passed verbatim to the tool.  If *None*, an empty dict is assumed.

    Returns
    -------
    ToolResult
        The tool's result, or a failed result with ``"Unknown tool: <name>"`` when nothing is
        registered under *name*.  This function does not raise for tool failures.
    """
    if args is None:
        args = {}

    tool = registry.get(name)
    if tool is None:
        logger.warning("Model requested unknown tool '%s'", name)
        return ToolResult.fail(f"Unknown tool: {name}")

    logger.debug("Executing tool '%s' with args=%s", name, args)
    return await tool.execute(args)


def result_message(call: ToolCall, result: ToolResult) -> Message:
    """Tool-role message answering *call*."""
    if result.success:
        return Message.tool_result(call.id, call.name, result.content)
    return Message.tool_result(call.id, call.name, result.error or DEFAULT_ERROR, is_error=True)


def preview_arguments(arguments: Any, limit: int) -> str:
    """Pretty JSON of *arguments* with every string cut to *limit* characters."""
    return json.dumps(truncate_value(arguments, limit), indent=2, ensure_ascii=False, default=str)


def preview_result(result: ToolResult, limit: int) -> str:
    """Display text for a result: truncated content on success, the full error otherwise."""
    if result.success:
        return truncate_text(result.content, limit)
    return result.error or DEFAULT_ERROR
