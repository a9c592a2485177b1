"""Workspace file tools: read, write and search/replace edit."""

from pathlib import Path
from typing import (
    Any,
    Dict,
)

from agentloop.tools import (
    Tool,
    ToolExecutionError,
    require_str,
)


def resolve_path(workspace: Path, raw: str) -> Path:
    """Absolute paths are used as-is; relative ones are anchored at *workspace*."""
    path = Path(raw).expanduser()
    return path if path.is_absolute() else workspace / path


class _WorkspaceTool(Tool):
    def __init__(self, workspace: Path):
        self.workspace = Path(workspace)


class ReadFileTool(_WorkspaceTool):
    name = "read_file"
    description = "Read a text file from the workspace (UTF-8)."
    parameters = {
        "type": "object",
        "properties": {"path": {"type": "string", "description": "Relative or absolute file path"}},
        "required": ["path"],
    }

    async def run(self, arguments: Dict[str, Any]) -> str:
        full = resolve_path(self.workspace, require_str(arguments, "path"))
        try:
            return full.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ToolExecutionError(f"read error: {exc}") from exc


class WriteFileTool(_WorkspaceTool):
    name = "write_file"
    description = "Write text to a file (create or overwrite, UTF-8). Parent directories are created."
    parameters = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Relative or absolute file path"},
            "content": {"type": "string", "description": "File content (UTF-8)"},
        },
        "required": ["path", "content"],
    }

    async def run(self, arguments: Dict[str, Any]) -> str:
        full = resolve_path(self.workspace, require_str(arguments, "path"))
        content = require_str(arguments, "content")
        try:
            full.parent.mkdir(parents=True, exist_ok=True)
            full.write_text(content, encoding="utf-8")
        except OSError as exc:
            raise ToolExecutionError(f"write error: {exc}") from exc
        return f"wrote {len(content.encode('utf-8'))} bytes to {full}"


class EditFileTool(_WorkspaceTool):
    name = "edit_file"
    description = "Search and replace text within a file. Every occurrence of old_str is replaced."
    parameters = {
        "type": "object",
        "properties": {
            "path": {"type": "string"},
            "old_str": {"type": "string", "description": "Exact text to find"},
            "new_str": {"type": "string", "description": "Replacement text"},
        },
        "required": ["path", "old_str", "new_str"],
    }

    async def run(self, arguments: Dict[str, Any]) -> str:
        full = resolve_path(self.workspace, require_str(arguments, "path"))
        old = require_str(arguments, "old_str")
        new = require_str(arguments, "new_str")
        if not old:
            raise ToolExecutionError("'old_str' must not be empty")
        try:
            text = full.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ToolExecutionError(f"read error: {exc}") from exc

        count = text.count(old)
        if count == 0:
            raise ToolExecutionError(f"'old_str' not found in {full}")
        try:
            full.write_text(text.replace(old, new), encoding="utf-8")
        except OSError as exc:
            raise ToolExecutionError(f"write error: {exc}") from exc
        return f"replaced {count} occurrence(s) in {full}"
