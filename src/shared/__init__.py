"""Shared utilities and base classes for Function Control."""

from shared.models import (
    ConversationMessage,
    CompletionResponse,
    FunctionDescriptor,
    ProviderEndpoint,
    ToolCallRequest,
    ToolResult,
)
from shared.errors import (
    ConfigurationError,
    FunctionControlError,
    ProtocolError,
    ProviderError,
    ValidationError,
)
from shared.config import Settings, get_settings
from shared.logging import get_logger, setup_logging

__all__ = [
    "ConversationMessage",
    "CompletionResponse",
    "FunctionDescriptor",
    "ProviderEndpoint",
    "ToolCallRequest",
    "ToolResult",
    "ConfigurationError",
    "FunctionControlError",
    "ProtocolError",
    "ProviderError",
    "ValidationError",
    "Settings",
    "get_settings",
    "get_logger",
    "setup_logging",
]
