"""Conversation Orchestrator - HTTP mode function dispatch.

The orchestrator coordinates:
- Conversation state
- Completion requests against the primary or fallback provider
- Local execution of requested tool calls via the FunctionRegistry
- Provider failover
"""

import json
from typing import Any, Awaitable, Callable, Mapping, Optional, TypeVar, Union

from functions.registry import (
    FunctionRegistry,
    encode_function_result,
    unknown_function_result,
)
from shared.config import DEFAULT_INSTRUCTIONS
from shared.errors import ConfigurationError, ProviderError
from shared.logging import get_logger
from shared.models import (
    CompletionResponse,
    ConversationMessage,
    FunctionDescriptor,
    ProviderEndpoint,
    ProviderSlot,
    ToolCallRequest,
    ToolResult,
    ToolResultStatus,
    UnknownToolPolicy,
)
from orchestrator.conversation import ConversationState
from orchestrator.llm import CompletionClient

logger = get_logger(__name__)

T = TypeVar("T")


class ConversationOrchestrator:
    """
    Drives one logical HTTP-mode conversation.

    Each external call makes at most two provider attempts: one against the
    primary endpoint and, if that fails, one against the fallback. The
    active endpoint always returns to primary afterwards.

    Instances are not safe for concurrent calls; use one orchestrator per
    concurrent conversation.
    """

    def __init__(
        self,
        registry: FunctionRegistry,
        completion_client: CompletionClient,
        primary: ProviderEndpoint,
        fallback: Optional[ProviderEndpoint] = None,
        instructions: Optional[str] = None,
        unknown_tool_policy: UnknownToolPolicy = UnknownToolPolicy.SKIP,
        reset_history_after_tools: bool = True
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            registry: Functions the provider may call
            completion_client: Client used to reach the providers
            primary: Primary provider endpoint
            fallback: Optional endpoint used when the primary fails
            instructions: System prompt for the conversation
            unknown_tool_policy: Skip or report calls to unregistered functions
            reset_history_after_tools: Truncate history after tool-augmented turns

        Raises:
            ConfigurationError: If the primary endpoint has no API key
        """
        if not primary.api_key:
            raise ConfigurationError("API key not provided")

        self.registry = registry
        self.client = completion_client
        self.primary = primary
        self.fallback = fallback
        self.unknown_tool_policy = unknown_tool_policy
        self.reset_history_after_tools = reset_history_after_tools

        self.conversation = ConversationState(instructions or DEFAULT_INSTRUCTIONS)
        self._active = ProviderSlot.PRIMARY

    @property
    def active(self) -> ProviderSlot:
        return self._active

    @property
    def endpoint(self) -> ProviderEndpoint:
        """The endpoint currently in use."""
        if self._active is ProviderSlot.FALLBACK and self.fallback is not None:
            return self.fallback
        return self.primary

    @property
    def history(self) -> list[ConversationMessage]:
        return self.conversation.messages

    def reset_history(self) -> None:
        self.conversation.reset_to_system_prompt()

    def add_function(
        self,
        descriptor: Union[FunctionDescriptor, Mapping[str, Any]],
        implementation: Callable[..., Any]
    ) -> FunctionDescriptor:
        """Register a function the provider may call."""
        return self.registry.register(descriptor, implementation)

    async def send_request(self, user_text: str) -> str:
        """
        Send a user message and return the final assistant reply.

        Tool calls requested by the provider are executed locally and their
        results sent back in a follow-up request before answering.

        Args:
            user_text: The user's message

        Returns:
            Final reply text

        Raises:
            ProviderError: If both primary and fallback attempts fail
            ConfigurationError: If failover is needed but the fallback is incomplete
        """
        return await self._with_failover(self._send_request, user_text)

    async def get_function_call_name(
        self,
        user_text: str
    ) -> Union[list[ToolCallRequest], str]:
        """
        Ask the provider which tools it would call, without executing them.

        Returns:
            The requested tool calls, else the direct reply, else an empty list
        """
        return await self._with_failover(self._get_function_call_name, user_text)

    async def _with_failover(
        self,
        operation: Callable[[str], Awaitable[T]],
        user_text: str
    ) -> T:
        try:
            return await operation(user_text)
        except ProviderError as primary_error:
            if self._active is ProviderSlot.FALLBACK:
                self._activate(ProviderSlot.PRIMARY)
                raise

            if self.fallback is None:
                logger.warning("Provider request failed, no fallback configured")
                raise

            self._activate_fallback(primary_error)
            logger.warning(
                "Provider request failed, switching to fallback",
                error=str(primary_error),
                model=self.endpoint.model
            )
            try:
                return await operation(user_text)
            except ProviderError as fallback_error:
                logger.error(
                    "Fallback request failed, switching back to primary",
                    error=str(fallback_error)
                )
                raise
            finally:
                self._activate(ProviderSlot.PRIMARY)

    def _activate(self, slot: ProviderSlot) -> None:
        self._active = slot

    def _activate_fallback(self, cause: ProviderError) -> None:
        fallback = self.fallback
        if not fallback.api_key or not fallback.base_url:
            raise ConfigurationError("Fallback API configuration not provided") from cause
        if not fallback.model:
            raise ConfigurationError("Fallback model not provided") from cause
        self._activate(ProviderSlot.FALLBACK)

    async def _complete(
        self,
        messages: list[ConversationMessage],
        tools: Optional[list[dict[str, Any]]] = None
    ) -> CompletionResponse:
        endpoint = self.endpoint
        logger.debug(
            "Requesting completion",
            provider=self._active.value,
            model=endpoint.model,
            messages=len(messages),
            tools=len(tools or [])
        )
        return await self.client.complete(
            endpoint,
            [m.to_provider() for m in messages],
            tools
        )

    async def _send_request(self, user_text: str) -> str:
        user_message = ConversationMessage(role="user", content=user_text)
        request_messages = self.conversation.with_messages(user_message)

        response = await self._complete(request_messages, self.registry.provider_tools())

        if not response.tool_calls:
            if response.content is None:
                raise ProviderError("Provider returned neither content nor tool calls")
            self.conversation.append(user_message, response.to_message())
            return response.content

        logger.info("Provider requested tool calls", count=len(response.tool_calls))

        assistant_message = response.to_message()
        tool_messages = await self._execute_tool_calls(response.tool_calls)

        final = await self._complete(
            [*request_messages, assistant_message, *tool_messages]
        )
        final_text = final.content or ""

        if self.reset_history_after_tools:
            self.conversation.reset_to_system_prompt()
        else:
            self.conversation.append(
                user_message, assistant_message, *tool_messages, final.to_message()
            )

        return final_text

    async def _get_function_call_name(
        self,
        user_text: str
    ) -> Union[list[ToolCallRequest], str]:
        user_message = ConversationMessage(role="user", content=user_text)
        response = await self._complete(
            self.conversation.with_messages(user_message),
            self.registry.provider_tools()
        )

        if response.tool_calls:
            return response.tool_calls
        if response.content:
            return response.content
        return []

    async def _execute_tool_calls(
        self,
        tool_calls: list[ToolCallRequest]
    ) -> list[ConversationMessage]:
        """Run tool calls in provider order, one tool message per executed call."""
        results = []

        for tool_call in tool_calls:
            name = tool_call.function.name

            if name not in self.registry:
                logger.warning("Unknown function requested", function=name)
                if self.unknown_tool_policy is UnknownToolPolicy.REPORT:
                    results.append(ConversationMessage(
                        role="tool",
                        content=unknown_function_result(name),
                        tool_call_id=tool_call.id
                    ))
                continue

            try:
                arguments = json.loads(tool_call.function.arguments or "{}")
            except json.JSONDecodeError as e:
                result = ToolResult(
                    tool_name=name,
                    status=ToolResultStatus.ERROR,
                    error=f"Invalid function arguments: {e}"
                )
            else:
                result = await self.registry.invoke(name, arguments)

            logger.info(
                "Function executed",
                function=name,
                status=result.status.value,
                execution_time_ms=result.execution_time_ms
            )

            results.append(ConversationMessage(
                role="tool",
                content=encode_function_result(result),
                tool_call_id=tool_call.id
            ))

        return results
