"""Conversation state for the orchestrator.

Holds the ordered message history of one logical conversation.
"""

from typing import Any

from shared.logging import get_logger
from shared.models import ConversationMessage

logger = get_logger(__name__)


class ConversationState:
    """
    Ordered message history that always starts with one system message.

    Only the orchestrator that owns an instance mutates it.
    """

    def __init__(self, instructions: str) -> None:
        self._instructions = instructions
        self._messages: list[ConversationMessage] = [self._system_message()]

    def _system_message(self) -> ConversationMessage:
        return ConversationMessage(role="system", content=self._instructions)

    @property
    def instructions(self) -> str:
        return self._instructions

    @property
    def messages(self) -> list[ConversationMessage]:
        """A copy of the current history."""
        return list(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def append(self, *messages: ConversationMessage) -> None:
        """Append messages to the history."""
        for message in messages:
            if message.role == "system":
                raise ValueError("Conversation already has a system message")
            self._messages.append(message)

    def with_messages(self, *messages: ConversationMessage) -> list[ConversationMessage]:
        """History plus extra messages, without mutating the state."""
        return [*self._messages, *messages]

    def reset_to_system_prompt(self) -> None:
        """Drop everything but the system message."""
        dropped = len(self._messages) - 1
        self._messages = [self._system_message()]
        logger.debug("Conversation reset to system prompt", dropped=dropped)

    def set_instructions(self, instructions: str) -> None:
        """Replace the system message, keeping the rest of the history."""
        self._instructions = instructions
        self._messages[0] = self._system_message()

    def to_provider(self) -> list[dict[str, Any]]:
        return [m.to_provider() for m in self._messages]
