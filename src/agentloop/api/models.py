"""
Pydantic models for agentloop API requests and responses.
This module defines the request and response schemas used by the agentloop API.
"""

from typing import (
    Any,
    Dict,
    List,
)

from pydantic import (
    BaseModel,
    Field,
)

from agentloop.core.schema import ToolDescriptor


# ---------------------------------------------------------------------------
# Pydantic request / response schema
# ---------------------------------------------------------------------------
class SessionResponse(BaseModel):
    """Response with session information."""

    session_id: str
    tools: List[str] = Field(default_factory=list)


class MessageRequest(BaseModel):
    """Incoming user message."""

    message: str = Field(..., min_length=1, description="User message for the agent")


class MessageResponse(BaseModel):
    """API response returned to the caller."""

    reply: str
    session_id: str
    steps: int = Field(..., description="Loop iterations taken by this session so far")
    messages: int = Field(..., description="Messages currently held in the session history")


class ToolListResponse(BaseModel):
    tools: List[ToolDescriptor]


class ToolCallRequest(BaseModel):
    """Arguments for a direct tool invocation."""

    arguments: Dict[str, Any] = Field(default_factory=dict)
