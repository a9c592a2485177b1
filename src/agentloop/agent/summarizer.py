"""
History compaction.

When the token estimate crosses the budget, the settled part of the history is rewritten:

* the system message (index 0) and every user message are kept verbatim and in order;
* each run of assistant/tool messages following a user message becomes one synthetic user message
  ``"[Assistant Execution Summary]\\n\\n<summary>"``.

The summary text comes from a side-channel request to the chat backend.  If that request fails the
summary is empty; compaction itself never aborts a session.
"""

import logging
from typing import (
    List,
    Sequence,
)

from agentloop.agent.chat_backend import ChatBackend
from agentloop.core.schema import (
    Message,
    Role,
)

logger = logging.getLogger(__name__)

SUMMARY_PREFIX = "[Assistant Execution Summary]\n\n"

SUMMARIZER_SYSTEM_PROMPT = "You are an assistant skilled at summarizing Agent execution processes."


class HistorySummarizer:
    """Compacts assistant/tool segments between user messages."""

    def __init__(self, backend: ChatBackend, word_limit: int = 1000):
        self.backend = backend
        self.word_limit = word_limit

    async def compact(self, messages: Sequence[Message]) -> List[Message]:
        """
        Return the compacted history.

        With no user message there is nothing to anchor segments to and the history is returned
        unchanged; the same holds when no assistant/tool message sits between user messages.
        """
        history = list(messages)
        if not history:
            return history

        user_idxs = [i for i, msg in enumerate(history) if i > 0 and msg.role == Role.USER]
        if not user_idxs:
            return history

        compacted: List[Message] = [history[0]]
        for round_no, user_idx in enumerate(user_idxs, start=1):
            compacted.append(history[user_idx])
            end = user_idxs[round_no] if round_no < len(user_idxs) else len(history)
            segment = history[user_idx + 1 : end]
            if not segment:
                continue
            summary = await self.summarize_segment(segment, round_no)
            compacted.append(Message.user(SUMMARY_PREFIX + summary))
        return compacted

    def needs_compaction(self, messages: Sequence[Message]) -> bool:
        """Whether any assistant/tool message is left to fold into a summary."""
        seen_user = False
        for msg in list(messages)[1:]:
            if msg.role == Role.USER:
                seen_user = True
            elif seen_user:
                return True
        return False

    def render_segment(self, segment: Sequence[Message], round_no: int) -> str:
        """Plain-text view of a segment: assistant text, tool names and result counts only."""
        lines = [f"Round {round_no} execution process:", ""]
        for msg in segment:
            if msg.role == Role.ASSISTANT:
                text = msg.text()
                if text:
                    lines.append(f"Assistant: {text}")
                names = [call.name for call in msg.tool_calls()]
                if names:
                    lines.append(f"  -> Called tools: {', '.join(names)}")
            elif msg.role == Role.TOOL:
                lines.append(f"  -> Tool returned: {len(msg.tool_results())} result(s)")
        return "\n".join(lines)

    def build_prompt(self, segment: Sequence[Message], round_no: int) -> List[Message]:
        body = self.render_segment(segment, round_no)
        prompt = (
            "Please provide a concise summary of the following Agent execution process:\n\n"
            f"{body}\n\n"
            "Requirements:\n"
            "1. Focus on what tasks were completed and which tools were called\n"
            "2. Keep key execution results and important findings\n"
            f"3. Be concise and clear, within {self.word_limit} words\n"
            "4. Use English\n"
            "5. Do not include user content, only summarize the Agent's execution process\n"
        )
        return [Message.system(SUMMARIZER_SYSTEM_PROMPT), Message.user(prompt)]

    async def summarize_segment(self, segment: Sequence[Message], round_no: int) -> str:
        try:
            response = await self.backend.complete(self.build_prompt(segment, round_no))
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Summarization of round %d failed: %s", round_no, exc)
            return ""
        return response.text or ""
