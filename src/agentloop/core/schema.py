"""
Schema definitions for agent <-> chat backend <-> tool messages.

These data models serve as the contract between the orchestration loop, the chat backends and
individual tools.  We keep them separate from runtime logic so they can be imported anywhere without
side-effects.

A :class:`Message` carries either plain text or a list of typed parts.  Parts are a tagged union
discriminated by their ``type`` field, so a serialized history round-trips through pydantic without
losing which segment was reasoning, visible text, a tool call or a tool result.
"""

from enum import Enum
from typing import (
    Annotated,
    Any,
    Dict,
    List,
    Literal,
    Optional,
    Union,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
)


class Role(str, Enum):
    """Author of a conversational turn."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


# ---------------------------------------------------------------------------
# Message parts
# ---------------------------------------------------------------------------
class TextPart(BaseModel):
    """Visible text segment."""

    model_config = ConfigDict(frozen=True)

    type: Literal["text"] = "text"
    text: str


class ReasoningPart(BaseModel):
    """Model reasoning / thinking segment, kept apart from visible text."""

    model_config = ConfigDict(frozen=True)

    type: Literal["reasoning"] = "reasoning"
    text: str
    signature: Optional[str] = None  # provider token needed to replay thinking blocks


class ToolCallPart(BaseModel):
    """A tool invocation requested by the model."""

    model_config = ConfigDict(frozen=True)

    type: Literal["tool_call"] = "tool_call"
    call_id: str
    tool_name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class ToolResultPart(BaseModel):
    """The outcome of one tool invocation, answering exactly one call id."""

    model_config = ConfigDict(frozen=True)

    type: Literal["tool_result"] = "tool_result"
    call_id: str
    tool_name: str
    output: str
    is_error: bool = False


Part = Annotated[
    Union[TextPart, ReasoningPart, ToolCallPart, ToolResultPart],
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------
class Message(BaseModel):
    """One conversational turn: plain text or a structured sequence of parts, never both."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: Union[str, List[Part]]

    @classmethod
    def system(cls, text: str) -> "Message":
        return cls(role=Role.SYSTEM, content=text)

    @classmethod
    def user(cls, text: str) -> "Message":
        return cls(role=Role.USER, content=text)

    @classmethod
    def assistant(cls, content: Union[str, List[Part]]) -> "Message":
        return cls(role=Role.ASSISTANT, content=content)

    @classmethod
    def tool_result(
        cls, call_id: str, tool_name: str, output: str, is_error: bool = False
    ) -> "Message":
        part = ToolResultPart(call_id=call_id, tool_name=tool_name, output=output, is_error=is_error)
        return cls(role=Role.TOOL, content=[part])

    @property
    def parts(self) -> List[Part]:
        """Structured parts; a plain-text message is viewed as a single text part."""
        if isinstance(self.content, str):
            return [TextPart(text=self.content)]
        return list(self.content)

    def text(self) -> str:
        """Visible text of the message (reasoning and tool parts excluded)."""
        if isinstance(self.content, str):
            return self.content
        return "".join(part.text for part in self.content if isinstance(part, TextPart))

    def reasoning(self) -> List[str]:
        return [part.text for part in self.parts if isinstance(part, ReasoningPart)]

    def tool_calls(self) -> List["ToolCall"]:
        return [
            ToolCall(id=part.call_id, name=part.tool_name, arguments=part.arguments)
            for part in self.parts
            if isinstance(part, ToolCallPart)
        ]

    def tool_results(self) -> List[ToolResultPart]:
        return [part for part in self.parts if isinstance(part, ToolResultPart)]


# ---------------------------------------------------------------------------
# Tool contract data
# ---------------------------------------------------------------------------
class ToolCall(BaseModel):
    """A call that the model wants the agent to execute."""

    id: str = Field(..., description="Correlation id echoed back in the tool result")
    name: str = Field(..., description="Registered tool name")
    arguments: Dict[str, Any] = Field(default_factory=dict, description="Arguments for the tool")


class ToolResult(BaseModel):
    """What a tool hands back to the loop.  Failures are data, not exceptions."""

    success: bool
    content: str = ""
    error: Optional[str] = None

    @classmethod
    def ok(cls, content: str) -> "ToolResult":
        return cls(success=True, content=content)

    @classmethod
    def fail(cls, error: str) -> "ToolResult":
        return cls(success=False, error=error)


class ToolDescriptor(BaseModel):
    """Name, description and JSON schema advertised to the model."""

    name: str
    description: str
    parameters: Dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )


# ---------------------------------------------------------------------------
# Backend response
# ---------------------------------------------------------------------------
class ChatResponse(BaseModel):
    """Normalized response of a chat backend."""

    text: Optional[str] = None
    reasoning: List[ReasoningPart] = Field(default_factory=list)
    tool_calls: List[ToolCall] = Field(default_factory=list)
    finish_reason: Optional[str] = None

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    def to_message(self) -> Message:
        """Build the assistant message that goes into history."""
        if not self.reasoning and not self.tool_calls:
            return Message.assistant(self.text or "")

        parts: List[Part] = list(self.reasoning)
        if self.text:
            parts.append(TextPart(text=self.text))
        for call in self.tool_calls:
            parts.append(ToolCallPart(call_id=call.id, tool_name=call.name, arguments=call.arguments))
        return Message.assistant(parts)
