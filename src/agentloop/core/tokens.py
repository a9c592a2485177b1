"""
Token estimation for conversation histories.

The estimate drives history compaction only; it is a policy knob, not a billing oracle.  Two
interchangeable strategies are provided:

* :class:`ApproxEstimator` - characters / 2.5, no dependencies.
* :class:`TiktokenEstimator` - exact subword counts with a ``tiktoken`` encoding.

Both walk the same message parts and add the same fixed per-message overhead, so swapping them only
changes the resulting counts.
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
    Iterable,
    Optional,
    Sequence,
    Type,
)

from agentloop.core.schema import (
    Message,
    ReasoningPart,
    TextPart,
    ToolCallPart,
    ToolResultPart,
)

logger = logging.getLogger(__name__)

MESSAGE_OVERHEAD = 4
"""Fixed token cost added for every message (role markers, separators)."""


def _message_segments(message: Message) -> Iterable[str]:
    """Yield every text payload of *message* that costs tokens."""
    if isinstance(message.content, str):
        yield message.content
        return
    for part in message.content:
        if isinstance(part, (TextPart, ReasoningPart)):
            yield part.text
        elif isinstance(part, ToolCallPart):
            yield json.dumps(part.arguments, ensure_ascii=False)
        elif isinstance(part, ToolResultPart):
            yield part.output


class TokenEstimator(ABC):
    """Maps a conversation to an approximate, non-negative token count."""

    @abstractmethod
    def count_text(self, text: str) -> int:
        """Token cost of a single string."""

    def count_messages(self, messages: Sequence[Message]) -> int:
        total = 0
        for message in messages:
            for segment in _message_segments(message):
                total += self.count_text(segment)
            total += MESSAGE_OVERHEAD
        return total


# ---------------------------------------------------------------------------
# Registry helpers
# ---------------------------------------------------------------------------
_ESTIMATOR_REGISTRY: Dict[str, Type[TokenEstimator]] = {}


def register_estimator(name: str) -> Callable:
    """Decorator to register an estimator class under *name*."""

    def wrapper(cls: Type[TokenEstimator]) -> Type[TokenEstimator]:
        _ESTIMATOR_REGISTRY[name] = cls
        return cls

    return wrapper


def load_estimator(name: str = "approx") -> TokenEstimator:
    """Instantiate the estimator registered under *name*."""
    cls = _ESTIMATOR_REGISTRY.get(name.lower())
    if cls is None:
        raise ValueError(f"Token estimator '{name}' is not registered.")
    return cls()


# ---------------------------------------------------------------------------
# Concrete estimators
# ---------------------------------------------------------------------------
@register_estimator("approx")
class ApproxEstimator(TokenEstimator):
    """Roughly 2.5 visible characters per token."""

    CHARS_PER_TOKEN = 2.5

    def count_text(self, text: str) -> int:
        return int(len(text) / self.CHARS_PER_TOKEN)


@register_estimator("tiktoken")
class TiktokenEstimator(TokenEstimator):
    """
    Exact counts using a tiktoken encoding (``cl100k_base`` by default).

    An already loaded *encoding* (anything with ``encode_ordinary``) may be passed instead of a name.
    """

    def __init__(self, encoding_name: str = "cl100k_base", encoding: Optional[Any] = None):
        if encoding is None:
            import tiktoken  # pylint: disable=import-outside-toplevel

            encoding = tiktoken.get_encoding(encoding_name)
            logger.debug("Using tiktoken encoding '%s'", encoding_name)
        self._encoding = encoding

    def count_text(self, text: str) -> int:
        return len(self._encoding.encode_ordinary(text))
