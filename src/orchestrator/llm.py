"""Completion client layer.

Issues chat-completion requests against a ProviderEndpoint. The orchestrator
selects the endpoint; the client only knows how to reach it.

Supports:
- OpenAI-compatible chat completions (OpenAI, or any base URL speaking the
  same API)
- A mock client for tests
"""

from abc import ABC, abstractmethod
from typing import Any, Optional, Union

from shared.errors import ProviderError
from shared.logging import get_logger
from shared.models import CompletionResponse, ProviderEndpoint, ToolCallRequest

logger = get_logger(__name__)


class CompletionClient(ABC):
    """
    Abstract base class for completion clients.

    Rules:
    - The client receives the full message list and tool list; it does not
      hold conversation state
    - Any transport or non-success failure surfaces as ProviderError, which
      drives failover in the orchestrator
    """

    @abstractmethod
    async def complete(
        self,
        endpoint: ProviderEndpoint,
        messages: list[dict[str, Any]],
        tools: Optional[list[dict[str, Any]]] = None
    ) -> CompletionResponse:
        """
        Generate a completion.

        Args:
            endpoint: Provider to send the request to
            messages: Conversation messages in provider format
            tools: Available tools in chat-completions format

        Returns:
            Response with content and/or tool calls

        Raises:
            ProviderError: If the provider call fails
        """
        pass

    async def close(self) -> None:
        """Release any underlying connections."""
        return None


class OpenAICompletionClient(CompletionClient):
    """Chat completions through the OpenAI SDK."""

    def __init__(self, timeout: float = 60.0) -> None:
        self.timeout = timeout
        self._clients: dict[tuple, Any] = {}

    def _get_client(self, endpoint: ProviderEndpoint):
        """Lazy initialization of one SDK client per endpoint."""
        key = (
            endpoint.api_key,
            endpoint.base_url,
            tuple(sorted(endpoint.default_headers.items())),
        )
        if key not in self._clients:
            from openai import AsyncOpenAI

            self._clients[key] = AsyncOpenAI(
                api_key=endpoint.api_key,
                base_url=endpoint.base_url,
                default_headers=endpoint.default_headers or None,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._clients[key]

    async def complete(
        self,
        endpoint: ProviderEndpoint,
        messages: list[dict[str, Any]],
        tools: Optional[list[dict[str, Any]]] = None
    ) -> CompletionResponse:
        """Generate completion using the OpenAI chat completions API."""
        import openai

        client = self._get_client(endpoint)
        request: dict[str, Any] = {"model": endpoint.model, "messages": messages}
        if tools:
            request["tools"] = tools

        try:
            completion = await client.chat.completions.create(**request)
        except openai.APIStatusError as e:
            logger.error("Completion failed", model=endpoint.model, status=e.status_code)
            raise ProviderError(
                f"Provider returned {e.status_code}: {e.message}",
                status_code=e.status_code,
                endpoint=endpoint.base_url
            ) from e
        except openai.APIError as e:
            logger.error("Completion failed", model=endpoint.model, error=str(e))
            raise ProviderError(str(e), endpoint=endpoint.base_url) from e

        if not completion.choices:
            raise ProviderError("Provider returned no choices", endpoint=endpoint.base_url)

        choice = completion.choices[0]
        message = choice.message

        tool_calls = None
        if message.tool_calls:
            tool_calls = [
                ToolCallRequest(
                    id=tc.id,
                    function={
                        "name": tc.function.name,
                        "arguments": tc.function.arguments,
                    }
                )
                for tc in message.tool_calls
            ]

        usage = {}
        if completion.usage is not None:
            usage = {
                "prompt_tokens": completion.usage.prompt_tokens,
                "completion_tokens": completion.usage.completion_tokens,
            }

        return CompletionResponse(
            content=message.content,
            tool_calls=tool_calls,
            finish_reason=choice.finish_reason or "stop",
            usage=usage
        )

    async def close(self) -> None:
        for client in self._clients.values():
            await client.close()
        self._clients.clear()


class MockCompletionClient(CompletionClient):
    """Mock completion client for testing without API calls."""

    def __init__(self) -> None:
        self.call_history: list[dict[str, Any]] = []
        self._queue: list[Union[CompletionResponse, Exception]] = []

    def set_next_response(self, response: Union[CompletionResponse, Exception]) -> None:
        """Queue a response (or an exception to raise) for the next call."""
        self._queue.append(response)

    async def complete(
        self,
        endpoint: ProviderEndpoint,
        messages: list[dict[str, Any]],
        tools: Optional[list[dict[str, Any]]] = None
    ) -> CompletionResponse:
        """Return the next queued response."""
        self.call_history.append({
            "endpoint": endpoint,
            "messages": messages,
            "tools": tools,
        })

        if self._queue:
            response = self._queue.pop(0)
            if isinstance(response, Exception):
                raise response
            return response

        return CompletionResponse(
            content="This is a mock response.",
            finish_reason="stop",
            usage={"prompt_tokens": 10, "completion_tokens": 5}
        )


def create_completion_client(provider: str = "openai", **kwargs: Any) -> CompletionClient:
    """
    Factory function to create a completion client.

    Supports:
    - openai: OpenAI-compatible chat completions
    - mock: Mock client for testing

    Raises:
        ValueError: If provider is not supported
    """
    clients = {
        "openai": OpenAICompletionClient,
        "mock": MockCompletionClient,
    }

    client_class = clients.get(provider)
    if not client_class:
        raise ValueError(
            f"Unsupported completion client: {provider}. "
            f"Supported: {list(clients.keys())}"
        )

    logger.info("Creating completion client", provider=provider)
    return client_class(**kwargs)
