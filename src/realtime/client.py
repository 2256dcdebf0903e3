"""Realtime negotiation client.

Fetches a short-lived credential from the local token service and exchanges
the session offer for an answer with the provider's realtime endpoint.
"""

from typing import Optional

import httpx

from shared.errors import ProviderError
from shared.logging import get_logger

logger = get_logger(__name__)


class RealtimeClient:
    """
    HTTP client for realtime session setup.

    Provides methods for:
    - Fetching an ephemeral key from the token service
    - Submitting the session offer and returning the answer
    """

    def __init__(
        self,
        token_url: str = "http://localhost:5001",
        negotiation_url: str = "https://api.openai.com/v1/realtime",
        model: str = "gpt-4o-realtime-preview-2024-12-17",
        timeout: float = 30.0
    ) -> None:
        """
        Initialize the realtime client.

        Args:
            token_url: Base URL of the local token service
            negotiation_url: Provider realtime negotiation URL
            model: Realtime model identifier
            timeout: Request timeout in seconds
        """
        self.token_url = token_url.rstrip("/")
        self.negotiation_url = negotiation_url
        self.model = model
        self.timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "RealtimeClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def fetch_ephemeral_key(self) -> str:
        """
        Request a short-lived credential from the token service.

        Returns:
            The client secret value

        Raises:
            ProviderError: If the service is unreachable or the reply is malformed
        """
        try:
            client = await self._get_client()
            response = await client.get(f"{self.token_url}/session")
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise ProviderError(
                f"Token service returned {e.response.status_code}",
                status_code=e.response.status_code,
                endpoint=self.token_url
            ) from e
        except httpx.HTTPError as e:
            raise ProviderError(
                f"Cannot reach token service: {e}", endpoint=self.token_url
            ) from e
        except ValueError as e:
            raise ProviderError("Token service returned invalid JSON") from e

        try:
            return data["client_secret"]["value"]
        except (KeyError, TypeError) as e:
            raise ProviderError("Token service reply has no client_secret.value") from e

    async def negotiate(self, offer: str, ephemeral_key: str) -> str:
        """
        Submit the local offer and return the provider's answer.

        Raises:
            ProviderError: On a non-success response or transport failure
        """
        logger.info("Sending session offer", model=self.model)

        try:
            client = await self._get_client()
            response = await client.post(
                self.negotiation_url,
                params={"model": self.model},
                content=offer,
                headers={
                    "Authorization": f"Bearer {ephemeral_key}",
                    "Content-Type": "application/sdp",
                }
            )
        except httpx.HTTPError as e:
            raise ProviderError(
                f"Cannot reach realtime endpoint: {e}", endpoint=self.negotiation_url
            ) from e

        if not response.is_success:
            raise ProviderError(
                f"Realtime API returned error: {response.text}",
                status_code=response.status_code,
                endpoint=self.negotiation_url
            )

        return response.text
