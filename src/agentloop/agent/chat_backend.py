"""
Chat backend interface for agentloop.

This module is the only place that *directly* calls an LLM.  Everything else (agent loop, tools,
summarizer) stays model-agnostic and talks to a :class:`ChatBackend`.

We support two back-ends out of the box:

1. **Anthropic** Messages API (tool_use / tool_result blocks, extended thinking).
2. **OpenAI** Chat Completions API, also used for any OpenAI-compatible endpoint via ``BASE_URL``.

Additional providers can be added by subclassing :class:`ChatBackend` and registering via
:func:`register_backend`.  Retries are the backend's job: :meth:`ChatBackend.chat` wraps every
request in :func:`~agentloop.core.retry.call_with_retry` with the configured policy and reports each
retry to the observer.
"""

import json
import logging
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Optional,
    Sequence,
    Type,
)

from agentloop.config import (
    Settings,
    settings as default_settings,
)
from agentloop.core.observer import AgentObserver
from agentloop.core.retry import (
    BackendError,
    RetryPolicy,
    call_with_retry,
)
from agentloop.core.schema import (
    ChatResponse,
    Message,
    ReasoningPart,
    Role,
    TextPart,
    ToolCall,
    ToolCallPart,
    ToolDescriptor,
)

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({408, 409, 429})


def is_retryable_status(status_code: Optional[int]) -> bool:
    """Transient HTTP statuses: timeouts, conflicts, rate limits and server errors."""
    if status_code is None:
        return True
    return status_code in RETRYABLE_STATUS_CODES or status_code >= 500


# ---------------------------------------------------------------------------
# Registry helpers
# ---------------------------------------------------------------------------
_BACKEND_REGISTRY: dict[str, Type["ChatBackend"]] = {}


def register_backend(*names: str) -> Callable:
    """Decorator to register a backend class under one or more provider *names*."""

    def wrapper(cls: Type["ChatBackend"]) -> Type["ChatBackend"]:
        for name in names:
            _BACKEND_REGISTRY[name] = cls
        return cls

    return wrapper


def load_backend(
    config: Settings | None = None, observer: AgentObserver | None = None
) -> "ChatBackend":
    """
    Factory that returns an instantiated backend for ``config.PROVIDER``.

    Raises
    ------
    ValueError
        If no backend is registered for the provider.
    ConfigError
        If the configuration lacks an API key or a required base URL.
    """
    config = config or default_settings
    provider = config.PROVIDER.lower()
    cls = _BACKEND_REGISTRY.get(provider)
    if cls is None:
        raise ValueError(f"Backend '{config.PROVIDER}' is not registered.")
    config.validate_llm()
    return cls(
        model=config.MODEL,
        api_key=config.resolve_api_key(),
        base_url=config.BASE_URL,
        max_tokens=config.MAX_TOKENS,
        retry=config.retry_policy(),
        observer=observer,
    )


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------
class ChatBackend(ABC):
    """Accepts ``(history, tools)`` and returns a normalized :class:`ChatResponse`."""

    def __init__(self, retry: RetryPolicy | None = None, observer: AgentObserver | None = None):
        self.retry = retry or RetryPolicy()
        self.observer = observer or AgentObserver()

    def set_observer(self, observer: AgentObserver) -> None:
        self.observer = observer

    def set_retry_policy(self, retry: RetryPolicy) -> None:
        self.retry = retry

    async def chat(
        self, messages: Sequence[Message], tools: Sequence[ToolDescriptor] = ()
    ) -> ChatResponse:
        """Send one request, retrying transient failures per :attr:`retry`."""
        return await call_with_retry(
            lambda: self._send(list(messages), list(tools)),
            self.retry,
            on_retry=self.observer.on_retry,
        )

    async def complete(self, messages: Sequence[Message]) -> ChatResponse:
        """Tool-less request, used for side-channel work such as summarization."""
        return await self.chat(messages, ())

    @abstractmethod
    async def _send(self, messages: List[Message], tools: List[ToolDescriptor]) -> ChatResponse:
        """Perform a single request.  Raise :class:`BackendError` on failure."""


def _parse_arguments(raw: Any, tool_name: str) -> Dict[str, Any]:
    """Decode a JSON argument string; undecodable payloads are kept for the tool to reject."""
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Failed to parse arguments for tool '%s': %s", tool_name, str(raw)[:200])
        return {"_raw_arguments": raw}
    if not isinstance(parsed, dict):
        return {"_raw_arguments": raw}
    return parsed


# ---------------------------------------------------------------------------
# Concrete backends
# ---------------------------------------------------------------------------
@register_backend("openai", "openai-compatible")
class OpenAIBackend(ChatBackend):
    """OpenAI Chat Completions backend (also serves OpenAI-compatible endpoints)."""

    def __init__(
        self,
        model: str,
        api_key: str,
        base_url: str | None = None,
        max_tokens: int = 8192,
        retry: RetryPolicy | None = None,
        observer: AgentObserver | None = None,
        client: Any = None,
    ):
        super().__init__(retry=retry, observer=observer)
        self.model = model
        self.max_tokens = max_tokens
        if client is None:
            import openai  # pylint: disable=import-outside-toplevel

            # SDK retries are disabled: the RetryPolicy is the single source of truth.
            client = openai.AsyncOpenAI(api_key=api_key, base_url=base_url, max_retries=0)
        self._client = client

    @staticmethod
    def convert_messages(messages: Sequence[Message]) -> List[Dict[str, Any]]:
        out: List[Dict[str, Any]] = []
        for message in messages:
            if message.role == Role.TOOL:
                for result in message.tool_results():
                    out.append(
                        {"role": "tool", "tool_call_id": result.call_id, "content": result.output}
                    )
                continue
            if message.role == Role.ASSISTANT:
                calls = [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {
                            "name": call.name,
                            "arguments": json.dumps(call.arguments, ensure_ascii=False),
                        },
                    }
                    for call in message.tool_calls()
                ]
                # null content is only accepted alongside tool_calls
                entry: Dict[str, Any] = {
                    "role": "assistant",
                    "content": message.text() or (None if calls else ""),
                }
                if calls:
                    entry["tool_calls"] = calls
                out.append(entry)
                continue
            out.append({"role": message.role.value, "content": message.text()})
        return out

    @staticmethod
    def convert_tools(tools: Sequence[ToolDescriptor]) -> List[Dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters,
                },
            }
            for tool in tools
        ]

    async def _send(self, messages: List[Message], tools: List[ToolDescriptor]) -> ChatResponse:
        import openai  # pylint: disable=import-outside-toplevel

        request: Dict[str, Any] = {
            "model": self.model,
            "messages": self.convert_messages(messages),
            "max_tokens": self.max_tokens,
        }
        if tools:
            request["tools"] = self.convert_tools(tools)

        try:
            resp = await self._client.chat.completions.create(**request)
        except openai.APIStatusError as exc:
            raise BackendError(
                f"OpenAI error {exc.status_code}: {exc.message}",
                status_code=exc.status_code,
                retryable=is_retryable_status(exc.status_code),
            ) from exc
        except openai.APIConnectionError as exc:
            raise BackendError(f"OpenAI connection error: {exc}") from exc

        if not resp.choices:
            raise BackendError("OpenAI returned no choices", retryable=False)
        choice = resp.choices[0]
        msg = choice.message
        logger.debug("OpenAI response: %s", msg)

        reasoning = getattr(msg, "reasoning_content", None)
        tool_calls = [
            ToolCall(
                id=call.id,
                name=call.function.name,
                arguments=_parse_arguments(call.function.arguments, call.function.name),
            )
            for call in msg.tool_calls or []
        ]
        return ChatResponse(
            text=msg.content,
            reasoning=[ReasoningPart(text=reasoning)] if reasoning else [],
            tool_calls=tool_calls,
            finish_reason=choice.finish_reason,
        )


@register_backend("anthropic")
class AnthropicBackend(ChatBackend):
    """Anthropic Messages API backend."""

    def __init__(
        self,
        model: str,
        api_key: str,
        base_url: str | None = None,
        max_tokens: int = 8192,
        retry: RetryPolicy | None = None,
        observer: AgentObserver | None = None,
        client: Any = None,
    ):
        super().__init__(retry=retry, observer=observer)
        self.model = model
        self.max_tokens = max_tokens
        if client is None:
            import anthropic  # pylint: disable=import-outside-toplevel

            client = anthropic.AsyncAnthropic(api_key=api_key, base_url=base_url, max_retries=0)
        self._client = client

    @staticmethod
    def _assistant_blocks(message: Message) -> List[Dict[str, Any]]:
        blocks: List[Dict[str, Any]] = []
        for part in message.parts:
            if isinstance(part, ReasoningPart):
                # Thinking can only be replayed with its signature.
                if part.signature:
                    blocks.append(
                        {"type": "thinking", "thinking": part.text, "signature": part.signature}
                    )
            elif isinstance(part, TextPart):
                if part.text:
                    blocks.append({"type": "text", "text": part.text})
            elif isinstance(part, ToolCallPart):
                blocks.append(
                    {"type": "tool_use", "id": part.call_id, "name": part.tool_name, "input": part.arguments}
                )
        return blocks

    @classmethod
    def convert_messages(cls, messages: Sequence[Message]) -> tuple[str, List[Dict[str, Any]]]:
        """Split out the system prompt and build the ``messages`` array."""
        system_parts: List[str] = []
        out: List[Dict[str, Any]] = []
        for message in messages:
            if message.role == Role.SYSTEM:
                system_parts.append(message.text())
            elif message.role == Role.TOOL:
                blocks = [
                    {
                        "type": "tool_result",
                        "tool_use_id": result.call_id,
                        "content": result.output,
                        "is_error": result.is_error,
                    }
                    for result in message.tool_results()
                ]
                # Results of one batch travel together in a single user turn.
                if out and out[-1]["role"] == "user" and isinstance(out[-1]["content"], list):
                    out[-1]["content"].extend(blocks)
                else:
                    out.append({"role": "user", "content": blocks})
            elif message.role == Role.ASSISTANT:
                blocks = cls._assistant_blocks(message)
                if blocks:
                    out.append({"role": "assistant", "content": blocks})
            else:
                out.append({"role": "user", "content": message.text()})
        return "\n\n".join(system_parts), out

    async def _send(self, messages: List[Message], tools: List[ToolDescriptor]) -> ChatResponse:
        import anthropic  # pylint: disable=import-outside-toplevel

        system, converted = self.convert_messages(messages)
        request: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": converted,
        }
        if system:
            request["system"] = system
        if tools:
            request["tools"] = [
                {"name": t.name, "description": t.description, "input_schema": t.parameters}
                for t in tools
            ]

        try:
            resp = await self._client.messages.create(**request)
        except anthropic.APIStatusError as exc:
            raise BackendError(
                f"Anthropic error {exc.status_code}: {exc.message}",
                status_code=exc.status_code,
                retryable=is_retryable_status(exc.status_code),
            ) from exc
        except anthropic.APIConnectionError as exc:
            raise BackendError(f"Anthropic connection error: {exc}") from exc

        texts: List[str] = []
        reasoning: List[ReasoningPart] = []
        tool_calls: List[ToolCall] = []
        for block in resp.content:
            if block.type == "text":
                texts.append(block.text)
            elif block.type == "thinking":
                reasoning.append(ReasoningPart(text=block.thinking, signature=block.signature))
            elif block.type == "tool_use":
                tool_calls.append(
                    ToolCall(id=block.id, name=block.name, arguments=_parse_arguments(block.input, block.name))
                )
        logger.debug("Anthropic response: %d text, %d tool_use blocks", len(texts), len(tool_calls))
        return ChatResponse(
            text="".join(texts) or None,
            reasoning=reasoning,
            tool_calls=tool_calls,
            finish_reason=resp.stop_reason,
        )
