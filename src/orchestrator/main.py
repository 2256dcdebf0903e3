"""Function Control service - FastAPI Application.

Provides:
- Chat API driving the HTTP-mode orchestrator
- The /session token service used by realtime clients
- Health check
"""

import asyncio
import uuid
from contextlib import asynccontextmanager
from typing import Any, Optional

import httpx
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from functions.registry import FunctionRegistry
from shared.config import Settings, get_settings
from shared.errors import ConfigurationError, ProviderError
from shared.logging import bind_context, clear_context, get_logger, setup_logging
from orchestrator.gateway import ConversationOrchestrator
from orchestrator.llm import CompletionClient, create_completion_client

logger = get_logger(__name__)


# Request/Response Models
class ChatRequest(BaseModel):
    """Chat request from a client."""
    message: str = Field(..., description="User message")


class ChatResponse(BaseModel):
    """Chat response to a client."""
    response: str
    request_id: str


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    tool_count: int
    active_provider: Optional[str] = None


async def issue_session_token(settings: Settings) -> dict[str, Any]:
    """
    Mint an ephemeral realtime session at the provider.

    Raises:
        ConfigurationError: If no API key is configured
        ProviderError: If the provider rejects the request
    """
    if not settings.provider.api_key:
        raise ConfigurationError("API key not provided")

    async with httpx.AsyncClient(timeout=settings.realtime.timeout) as client:
        try:
            response = await client.post(
                settings.realtime.sessions_url,
                headers={"Authorization": f"Bearer {settings.provider.api_key}"},
                json={"model": settings.realtime.model, "voice": settings.realtime.voice}
            )
        except httpx.HTTPError as e:
            raise ProviderError(f"Cannot reach realtime sessions endpoint: {e}") from e

    if not response.is_success:
        raise ProviderError(
            f"Realtime sessions endpoint returned {response.status_code}",
            status_code=response.status_code,
            endpoint=settings.realtime.sessions_url
        )
    return response.json()


def create_app(
    settings: Optional[Settings] = None,
    registry: Optional[FunctionRegistry] = None,
    completion_client: Optional[CompletionClient] = None
) -> FastAPI:
    """
    Build the service application.

    Args:
        settings: Application settings; loaded from config when omitted
        registry: Functions exposed to the chat orchestrator
        completion_client: Client used to reach providers
    """
    settings = settings or get_settings()
    registry = registry if registry is not None else FunctionRegistry()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        logger.info("Starting Function Control service")
        setup_logging(settings.log_level, json_output=settings.environment == "production")

        client = completion_client or create_completion_client("openai")
        app.state.registry = registry
        app.state.chat_lock = asyncio.Lock()
        app.state.orchestrator = None

        try:
            app.state.orchestrator = ConversationOrchestrator(
                registry=registry,
                completion_client=client,
                primary=settings.primary_endpoint(),
                fallback=settings.fallback_endpoint(),
                instructions=settings.instructions,
                unknown_tool_policy=settings.unknown_tool_policy,
                reset_history_after_tools=settings.reset_history_after_tools
            )
        except ConfigurationError as e:
            logger.warning("Chat orchestrator disabled", error=str(e))

        yield

        logger.info("Shutting down Function Control service")
        await client.close()

    app = FastAPI(
        title="Function Control",
        description="Tool-calling orchestration for chat and realtime voice",
        version="0.1.0",
        lifespan=lifespan
    )

    if settings.dangerously_allow_browser:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.get("/health", response_model=HealthResponse, tags=["System"])
    async def health_check(request: Request):
        """Health check endpoint."""
        orchestrator = request.app.state.orchestrator
        return HealthResponse(
            status="healthy" if orchestrator is not None else "degraded",
            tool_count=len(request.app.state.registry),
            active_provider=orchestrator.active.value if orchestrator else None
        )

    @app.post("/chat", response_model=ChatResponse, tags=["Chat"])
    async def chat(body: ChatRequest, request: Request):
        """Send a message through the orchestrator."""
        orchestrator: Optional[ConversationOrchestrator] = request.app.state.orchestrator
        if orchestrator is None:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Chat orchestrator not configured"
            )

        request_id = str(uuid.uuid4())
        bind_context(request_id=request_id)
        try:
            async with request.app.state.chat_lock:
                reply = await orchestrator.send_request(body.message)
        except (ProviderError, ConfigurationError) as e:
            logger.error("Chat processing failed", error=str(e))
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail=f"Failed to process message: {e}"
            )
        finally:
            clear_context()

        return ChatResponse(response=reply, request_id=request_id)

    @app.get("/session", tags=["Realtime"])
    async def session():
        """Issue a short-lived realtime credential."""
        try:
            return await issue_session_token(settings)
        except ConfigurationError as e:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail=str(e)
            )
        except ProviderError as e:
            logger.error("Session token request failed", error=str(e))
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail="Failed to create realtime session"
            )

    return app


def main():
    """Run the Function Control service."""
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "orchestrator.main:create_app",
        factory=True,
        host=settings.realtime.token_host,
        port=settings.realtime.server_port,
        reload=settings.environment == "development"
    )


if __name__ == "__main__":
    main()
