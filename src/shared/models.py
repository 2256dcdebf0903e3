"""Core data models for Function Control.

This module defines all shared data structures used across the HTTP and
real-time modes, ensuring type safety and validation throughout the system.
"""

from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class UsageExample(BaseModel):
    """Documentation-only example of when a function should fire."""
    model_config = ConfigDict(frozen=True)

    command: str
    trigger: str
    description: str


class ReturnSpec(BaseModel):
    """Declared return type of a function."""
    model_config = ConfigDict(frozen=True)

    type: str
    description: str


class FunctionSpec(BaseModel):
    """The provider-facing part of a function descriptor."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Unique function name")
    description: str = Field(..., description="Clear description for LLM usage")
    parameters: dict[str, Any] = Field(
        default_factory=dict,
        description="JSON Schema describing the arguments"
    )


class FunctionDescriptor(BaseModel):
    """
    Complete definition of a callable tool.

    Passed through unchanged as the provider's tool schema in HTTP mode and
    projected to the flat realtime tool shape for session configuration.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: Literal["function"] = "function"
    function: FunctionSpec
    strict: Optional[bool] = None
    returns: Optional[ReturnSpec] = Field(default=None, alias="return")
    usage_examples: Optional[list[UsageExample]] = Field(
        default=None, alias="usageExamples"
    )

    @property
    def name(self) -> str:
        return self.function.name

    @property
    def description(self) -> str:
        return self.function.description

    @property
    def parameters(self) -> dict[str, Any]:
        return self.function.parameters

    def to_provider_tool(self) -> dict[str, Any]:
        """Return the descriptor as a chat-completions tool entry."""
        return self.model_dump(by_alias=True, exclude_none=True)

    def to_realtime_tool(self) -> dict[str, Any]:
        """Return the flat tool entry used in realtime session updates."""
        return {
            "type": "function",
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }

    @classmethod
    def from_realtime_tool(cls, entry: dict[str, Any]) -> "FunctionDescriptor":
        """Rebuild a descriptor from a realtime tool entry."""
        return cls(
            function=FunctionSpec(
                name=entry["name"],
                description=entry.get("description", ""),
                parameters=entry.get("parameters") or {},
            )
        )


class ToolResultStatus(str, Enum):
    """Status of tool execution."""
    SUCCESS = "success"
    ERROR = "error"
    NOT_FOUND = "not_found"


class ToolResult(BaseModel):
    """
    Result of invoking a registered function.

    Failures are carried as data so a failing tool never aborts the
    exchange that requested it.
    """
    tool_name: str
    status: ToolResultStatus
    value: Optional[Any] = None
    error: Optional[str] = None
    execution_time_ms: float = 0

    @property
    def ok(self) -> bool:
        return self.status == ToolResultStatus.SUCCESS


class UnknownToolPolicy(str, Enum):
    """What to do with a tool call naming an unregistered function."""
    SKIP = "skip"
    REPORT = "report"


class FunctionCall(BaseModel):
    """Function name and JSON-encoded arguments requested by the provider."""
    name: str
    arguments: str = "{}"


class ToolCallRequest(BaseModel):
    """A single tool call requested by the provider."""
    id: str
    type: Literal["function"] = "function"
    function: FunctionCall


class ConversationMessage(BaseModel):
    """A single message in a conversation."""
    role: Literal["system", "user", "assistant", "tool"]
    content: Optional[str] = None
    tool_calls: Optional[list[ToolCallRequest]] = None
    tool_call_id: Optional[str] = None

    def to_provider(self) -> dict[str, Any]:
        """Serialize to the provider's message shape."""
        data: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            data["tool_calls"] = [tc.model_dump() for tc in self.tool_calls]
        if self.tool_call_id is not None:
            data["tool_call_id"] = self.tool_call_id
        return data


class CompletionResponse(BaseModel):
    """Response from a completion provider."""
    content: Optional[str] = None
    tool_calls: Optional[list[ToolCallRequest]] = None
    finish_reason: str = "stop"
    usage: dict[str, int] = Field(default_factory=dict)

    def to_message(self) -> ConversationMessage:
        """The assistant message that produced this response."""
        return ConversationMessage(
            role="assistant",
            content=self.content,
            tool_calls=self.tool_calls or None,
        )


class ProviderEndpoint(BaseModel):
    """Connection parameters for one completion provider."""
    model_config = ConfigDict(frozen=True)

    api_key: Optional[str] = None
    base_url: Optional[str] = None
    model: Optional[str] = None
    default_headers: dict[str, str] = Field(default_factory=dict)


class ProviderSlot(str, Enum):
    """Which provider endpoint the orchestrator is currently using."""
    PRIMARY = "primary"
    FALLBACK = "fallback"


class SessionState(str, Enum):
    """Lifecycle of a realtime session."""
    IDLE = "idle"
    CONNECTING = "connecting"
    AWAITING_CHANNEL_OPEN = "awaiting_channel_open"
    ACTIVE = "active"
    CLOSED = "closed"
