"""Shell command tool."""

import asyncio
import logging
from pathlib import Path
from typing import (
    Any,
    Dict,
)

from agentloop.core.schema import ToolResult
from agentloop.tools import (
    Tool,
    ToolExecutionError,
    require_str,
)

logger = logging.getLogger(__name__)


class BashTool(Tool):
    """Runs ``bash -lc <command>`` inside the workspace."""

    name = "bash"
    description = "Execute a shell command in the workspace (bash -lc). Returns stdout and stderr."
    parameters = {
        "type": "object",
        "properties": {"command": {"type": "string", "description": "Command to run"}},
        "required": ["command"],
    }

    def __init__(self, workspace: Path, timeout: float = 120.0):
        self.workspace = Path(workspace)
        self.timeout = timeout

    async def run(self, arguments: Dict[str, Any]) -> ToolResult:
        command = require_str(arguments, "command")
        logger.debug("bash: %s", command)
        try:
            proc = await asyncio.create_subprocess_exec(
                "bash",
                "-lc",
                command,
                cwd=self.workspace,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise ToolExecutionError(f"failed to start command: {exc}") from exc

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            proc.kill()
            await proc.wait()
            raise ToolExecutionError(f"command timed out after {self.timeout:g}s") from exc

        output = stdout.decode("utf-8", errors="replace") + stderr.decode("utf-8", errors="replace")
        if proc.returncode == 0:
            return ToolResult.ok(output)
        return ToolResult(success=False, content=output, error=f"exit: {proc.returncode}\n{output}".rstrip())
