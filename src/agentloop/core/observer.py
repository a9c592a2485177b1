"""
Observer sinks for agent progress.

The loop pushes notifications and never reads anything back.  Every hook of :class:`AgentObserver`
is a no-op so implementers override only what they need.
"""

import logging
from pathlib import Path

from agentloop.common import (
    AnsiColors,
    colored_print,
)

logger = logging.getLogger(__name__)


class AgentObserver:
    """Base observer: all notifications are accepted and ignored."""

    def on_log_file(self, path: Path) -> None:
        """A new run-log file was opened."""

    def on_retry(self, attempt: int, next_delay: float, error: str) -> None:
        """The backend is about to retry a failed request."""

    def on_summarize_start(self, before_tokens: int, threshold: int) -> None:
        """History compaction is starting."""

    def on_summarize_done(self, after_tokens: int) -> None:
        """History compaction finished."""

    def on_thinking(self, text: str) -> None:
        """The model emitted reasoning text."""

    def on_assistant_text(self, text: str) -> None:
        """The model emitted visible text."""

    def on_tool_call(self, name: str, args_preview: str) -> None:
        """A tool is about to run; *args_preview* is already truncated for display."""

    def on_tool_result(self, name: str, success: bool, preview: str) -> None:
        """A tool finished."""


class ConsoleObserver(AgentObserver):
    """Renders progress to the terminal with ANSI colours."""

    def on_log_file(self, path: Path) -> None:
        colored_print(f"Log file: {path}", AnsiColors.DIM)

    def on_retry(self, attempt: int, next_delay: float, error: str) -> None:
        colored_print(f"! LLM call failed (attempt {attempt}): {error}", AnsiColors.YELLOW)
        colored_print(f"  Retrying in {next_delay:.1f}s (attempt {attempt + 1})...", AnsiColors.DIM)

    def on_summarize_start(self, before_tokens: int, threshold: int) -> None:
        colored_print(f"\n* Token estimate: {before_tokens}/{threshold}", AnsiColors.YELLOW)
        colored_print("* Triggering message history summarization...", AnsiColors.YELLOW)

    def on_summarize_done(self, after_tokens: int) -> None:
        colored_print(f"✓ Summary completed, tokens reduced to {after_tokens}", AnsiColors.GREEN)

    def on_thinking(self, text: str) -> None:
        colored_print("\nThinking:", AnsiColors.MAGENTA)
        colored_print(text, AnsiColors.DIM)

    def on_assistant_text(self, text: str) -> None:
        colored_print("\nAssistant:", AnsiColors.BLUE)
        print(text)

    def on_tool_call(self, name: str, args_preview: str) -> None:
        colored_print(f"\nTool Call: {name}", AnsiColors.CYAN)
        for line in args_preview.splitlines():
            colored_print(f"   {line}", AnsiColors.DIM)

    def on_tool_result(self, name: str, success: bool, preview: str) -> None:
        if success:
            colored_print(f"Result: {preview}", AnsiColors.GREEN)
        else:
            colored_print(f"Error: {preview}", AnsiColors.RED)


class LoggingObserver(AgentObserver):
    """Forwards notifications to the standard logging tree (used by the HTTP API)."""

    def __init__(self, name: str = __name__):
        self._log = logging.getLogger(name)

    def on_log_file(self, path: Path) -> None:
        self._log.info("Run log: %s", path)

    def on_retry(self, attempt: int, next_delay: float, error: str) -> None:
        self._log.warning("LLM call failed (attempt %d), retrying in %.1fs: %s", attempt, next_delay, error)

    def on_summarize_start(self, before_tokens: int, threshold: int) -> None:
        self._log.info("Summarizing history (%d tokens, threshold %d)", before_tokens, threshold)

    def on_summarize_done(self, after_tokens: int) -> None:
        self._log.info("History summarized to %d tokens", after_tokens)

    def on_thinking(self, text: str) -> None:
        self._log.debug("Thinking: %s", text)

    def on_assistant_text(self, text: str) -> None:
        self._log.debug("Assistant: %s", text)

    def on_tool_call(self, name: str, args_preview: str) -> None:
        self._log.info("Tool call %s %s", name, args_preview)

    def on_tool_result(self, name: str, success: bool, preview: str) -> None:
        if success:
            self._log.info("Tool %s ok: %s", name, preview)
        else:
            self._log.warning("Tool %s failed: %s", name, preview)
