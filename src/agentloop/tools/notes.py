"""
Session note tools.

Notes live in one JSON file that several sessions may share, so every read-modify-write happens under
a process-wide lock keyed by the resolved file path.
"""

import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import (
    Any,
    Dict,
    List,
)

from pydantic import (
    BaseModel,
    Field,
    TypeAdapter,
    ValidationError,
)

from agentloop.tools import (
    Tool,
    ToolExecutionError,
    optional_str,
    require_str,
)

logger = logging.getLogger(__name__)

_LOCKS: Dict[Path, threading.Lock] = {}
_LOCKS_GUARD = threading.Lock()


class Note(BaseModel):
    """One recorded note."""

    timestamp: str = Field(default_factory=lambda: datetime.now().astimezone().isoformat())
    category: str = "general"
    content: str


_NOTES = TypeAdapter(List[Note])


def _lock_for(path: Path) -> threading.Lock:
    key = path.resolve()
    with _LOCKS_GUARD:
        return _LOCKS.setdefault(key, threading.Lock())


class NoteStore:
    """JSON-file backed list of :class:`Note` objects."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> List[Note]:
        if not self.path.exists():
            return []
        try:
            return _NOTES.validate_json(self.path.read_bytes())
        except (OSError, ValidationError) as exc:
            logger.warning("Ignoring unreadable notes file %s: %s", self.path, exc)
            return []

    def append(self, note: Note) -> None:
        with _lock_for(self.path):
            notes = self.load()
            notes.append(note)
            self.path.parent.mkdir(parents=True, exist_ok=True)
            payload = [n.model_dump() for n in notes]
            self.path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")


class RecordNoteTool(Tool):
    name = "record_note"
    description = "Record important information as session notes for future reference (timestamped)."
    parameters = {
        "type": "object",
        "properties": {
            "content": {"type": "string", "description": "Note content"},
            "category": {"type": "string", "description": "Optional category"},
        },
        "required": ["content"],
    }

    def __init__(self, store: NoteStore):
        self.store = store

    async def run(self, arguments: Dict[str, Any]) -> str:
        content = require_str(arguments, "content")
        category = optional_str(arguments, "category") or "general"
        try:
            self.store.append(Note(content=content, category=category))
        except OSError as exc:
            raise ToolExecutionError(f"Failed to record note: {exc}") from exc
        return f"Recorded note: {content} (category: {category})"


class RecallNotesTool(Tool):
    name = "recall_notes"
    description = "Recall all previously recorded session notes (optionally filter by category)."
    parameters = {
        "type": "object",
        "properties": {"category": {"type": "string", "description": "Optional category filter"}},
    }

    def __init__(self, store: NoteStore):
        self.store = store

    async def run(self, arguments: Dict[str, Any]) -> str:
        category = optional_str(arguments, "category")
        notes = self.store.load()
        if not notes:
            return "No notes recorded yet."
        if category is not None:
            notes = [n for n in notes if n.category == category]
        if not notes:
            suffix = f" in category: {category}" if category is not None else ""
            return f"No notes found{suffix}"

        lines = ["Recorded Notes:"]
        for idx, note in enumerate(notes, start=1):
            lines.append(f"{idx}. [{note.category}] {note.content}")
            lines.append(f"   (recorded at {note.timestamp})")
        return "\n".join(lines)
