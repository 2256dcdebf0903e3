"""Orchestrator - HTTP mode.

Manages conversation state, issues completion requests, executes the tool
calls the provider asks for, and fails over between providers.
"""

from orchestrator.llm import CompletionClient, create_completion_client
from orchestrator.conversation import ConversationState
from orchestrator.gateway import ConversationOrchestrator

__all__ = [
    "CompletionClient",
    "create_completion_client",
    "ConversationState",
    "ConversationOrchestrator",
]
