"""Main orchestration loop for agentloop."""

from __future__ import annotations

import logging
from collections import Counter
from pathlib import Path
from typing import (
    Any,
    Dict,
    Iterable,
    List,
    Optional,
)

from agentloop.agent.chat_backend import ChatBackend
from agentloop.agent.summarizer import HistorySummarizer
from agentloop.agent.tool_executor import (
    execute_tool,
    preview_arguments,
    preview_result,
    result_message,
)
from agentloop.core.observer import (
    AgentObserver,
    ConsoleObserver,
)
from agentloop.core.retry import RetryPolicy
from agentloop.core.run_log import AgentRunLog
from agentloop.core.schema import (
    ChatResponse,
    Message,
    ToolCall,
    ToolDescriptor,
    ToolResult,
)
from agentloop.core.tokens import (
    ApproxEstimator,
    TokenEstimator,
)
from agentloop.tools import (
    Tool,
    ToolRegistry,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_STEPS = 50
DEFAULT_TOKEN_LIMIT = 80_000
DEFAULT_COMPLETION_RESERVE = 2_048

STEP_LIMIT_MESSAGE = "Task couldn't be completed after {max_steps} steps."


class Agent:
    """
    One orchestration session: owns the history, the step counter and the token budget.

    Each :meth:`run` loops ``check budget -> request -> (final text | dispatch tools)`` until the model
    answers without tool calls or ``max_steps`` is reached.  Tool calls from one response run
    sequentially, in the order the model listed them.  Backend failures propagate to the caller;
    every other failure is fed back to the model as conversation content.
    """

    def __init__(
        self,
        backend: ChatBackend,
        system_prompt: str,
        tools: Iterable[Tool] = (),
        max_steps: int = DEFAULT_MAX_STEPS,
        token_limit: int = DEFAULT_TOKEN_LIMIT,
        completion_reserve: int = DEFAULT_COMPLETION_RESERVE,
        retry_policy: Optional[RetryPolicy] = None,
        observer: Optional[AgentObserver] = None,
        estimator: Optional[TokenEstimator] = None,
        run_log: Optional[AgentRunLog] = None,
        workspace: Optional[Path] = None,
        arg_preview_chars: int = 200,
        result_preview_chars: int = 300,
        summary_word_limit: int = 1000,
    ):
        self.backend = backend
        self.registry = ToolRegistry(tools)
        self.system_prompt = system_prompt
        self.messages: List[Message] = [Message.system(system_prompt)]
        self.max_steps = max_steps
        self.token_limit = token_limit
        self.completion_reserve = completion_reserve
        self.step_count = 0
        self.workspace = workspace
        self.estimator = estimator or ApproxEstimator()
        self.run_log = run_log or AgentRunLog(None)
        self.summarizer = HistorySummarizer(backend, word_limit=summary_word_limit)
        self.arg_preview_chars = arg_preview_chars
        self.result_preview_chars = result_preview_chars
        if retry_policy is not None:
            backend.set_retry_policy(retry_policy)
        self.observer: AgentObserver = observer or ConsoleObserver()
        backend.set_observer(self.observer)

    # ------------------------------------------------------------------
    # Session surface
    # ------------------------------------------------------------------
    @property
    def threshold(self) -> int:
        """Token count above which history is compacted."""
        return max(self.token_limit - self.completion_reserve, 0)

    def set_observer(self, observer: AgentObserver) -> None:
        self.observer = observer
        self.backend.set_observer(observer)

    def add_user_message(self, text: str) -> None:
        self.messages.append(Message.user(text))

    def estimate_tokens(self) -> int:
        return self.estimator.count_messages(self.messages)

    def tool_names(self) -> List[str]:
        return self.registry.names()

    def tool_schema(self, name: str) -> Optional[ToolDescriptor]:
        return self.registry.describe(name)

    async def call_tool_direct(self, name: str, args: Any = None) -> Optional[ToolResult]:
        """Invoke a tool outside the model loop.  ``None`` means no such tool."""
        tool = self.registry.get(name)
        if tool is None:
            return None
        return await tool.execute(args if args is not None else {})

    def reset(self) -> None:
        """Start over: only the system message is kept and the step counter is zeroed."""
        self.messages = [Message.system(self.system_prompt)]
        self.step_count = 0

    def stats(self) -> Dict[str, int]:
        counts = Counter(msg.role.value for msg in self.messages)
        return {"messages": len(self.messages), "tools": len(self.registry), **counts}

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------
    async def run(self) -> str:
        """Run the loop to termination and return the final text (or the step-ceiling notice)."""
        log_path = self.run_log.start_new_run()
        if log_path is not None:
            self.observer.on_log_file(log_path)

        while True:
            await self._check_budget()

            if self.step_count >= self.max_steps:
                logger.info("Step ceiling reached (%d)", self.max_steps)
                return STEP_LIMIT_MESSAGE.format(max_steps=self.max_steps)

            response = await self._request()
            self.messages.append(response.to_message())
            self._announce(response)

            if not response.has_tool_calls:
                return response.text or ""

            logger.info(
                "Model requested %d tool calls: %s",
                len(response.tool_calls),
                [call.name for call in response.tool_calls],
            )
            for call in response.tool_calls:
                await self._dispatch(call)

            self.step_count += 1

    async def _check_budget(self) -> None:
        before = self.estimate_tokens()
        if before <= self.threshold or not self.summarizer.needs_compaction(self.messages):
            return
        self.observer.on_summarize_start(before, self.threshold)
        self.messages = await self.summarizer.compact(self.messages)
        after = self.estimate_tokens()
        logger.info("History compacted from %d to %d tokens", before, after)
        self.observer.on_summarize_done(after)

    async def _request(self) -> ChatResponse:
        descriptors = self.registry.descriptors()
        self.run_log.log_request(
            {
                "messages": [
                    {"role": msg.role.value, "content": msg.text()} for msg in self.messages
                ],
                "tools": [tool.name for tool in descriptors],
            }
        )
        response = await self.backend.chat(self.messages, descriptors)
        self.run_log.log_response(
            {
                "content": response.text,
                "has_tool_calls": response.has_tool_calls,
                "finish_reason": response.finish_reason,
            }
        )
        return response

    def _announce(self, response: ChatResponse) -> None:
        for part in response.reasoning:
            if part.text:
                self.observer.on_thinking(part.text)
        if response.text:
            self.observer.on_assistant_text(response.text)

    async def _dispatch(self, call: ToolCall) -> None:
        self.observer.on_tool_call(call.name, preview_arguments(call.arguments, self.arg_preview_chars))

        result = await execute_tool(self.registry, call.name, call.arguments)

        self.run_log.log_tool_result(
            {
                "tool_name": call.name,
                "arguments": call.arguments,
                "success": result.success,
                "result": result.content if result.success else None,
                "error": result.error,
            }
        )
        self.observer.on_tool_result(
            call.name, result.success, preview_result(result, self.result_preview_chars)
        )
        self.messages.append(result_message(call, result))
