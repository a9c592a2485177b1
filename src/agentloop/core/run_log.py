"""Per-run audit trail of backend requests, responses and tool results (JSON lines)."""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import (
    Any,
    Mapping,
    Optional,
)

logger = logging.getLogger(__name__)


class AgentRunLog:
    """
    Writes one ``agent_run_<timestamp>.jsonl`` file per :meth:`start_new_run`.

    Each line is ``{"index", "kind", "timestamp", "payload"}``.  I/O problems are logged and
    swallowed: the audit trail must never stop a session.  With ``log_dir=None`` nothing is written.
    """

    def __init__(self, log_dir: Optional[Path]):
        self._log_dir = Path(log_dir).expanduser() if log_dir is not None else None
        self._path: Optional[Path] = None
        self._index = 0

    @property
    def path(self) -> Optional[Path]:
        return self._path

    def start_new_run(self) -> Optional[Path]:
        """Open a fresh log file and return its path (``None`` when disabled or unwritable)."""
        self._index = 0
        self._path = None
        if self._log_dir is None:
            return None
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        path = self._log_dir / f"agent_run_{stamp}.jsonl"
        try:
            self._log_dir.mkdir(parents=True, exist_ok=True)
            path.touch()
        except OSError as exc:
            logger.warning("Cannot create run log in %s: %s", self._log_dir, exc)
            return None
        self._path = path
        return path

    def log_request(self, payload: Mapping[str, Any]) -> None:
        self._write("REQUEST", payload)

    def log_response(self, payload: Mapping[str, Any]) -> None:
        self._write("RESPONSE", payload)

    def log_tool_result(self, payload: Mapping[str, Any]) -> None:
        self._write("TOOL_RESULT", payload)

    def _write(self, kind: str, payload: Mapping[str, Any]) -> None:
        if self._path is None:
            return
        self._index += 1
        record = {
            "index": self._index,
            "kind": kind,
            "timestamp": datetime.now().isoformat(timespec="milliseconds"),
            "payload": payload,
        }
        try:
            with self._path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(record, ensure_ascii=False, default=str) + "\n")
        except OSError as exc:
            logger.warning("Failed to append to run log %s: %s", self._path, exc)
