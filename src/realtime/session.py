"""Realtime Session Controller.

Drives one voice conversation over a persistent transport: negotiates the
session, advertises instructions and tools once the data channel opens, and
demultiplexes inbound events to the transcription handler or the function
registry.
"""

import inspect
import json
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

from functions.registry import (
    FunctionRegistry,
    encode_function_result,
    unknown_function_result,
)
from shared.config import DEFAULT_INSTRUCTIONS
from shared.errors import ProtocolError
from shared.logging import get_logger
from shared.models import FunctionDescriptor, SessionState, UnknownToolPolicy
from realtime import events
from realtime.client import RealtimeClient
from realtime.transport import AudioTrack, DataChannel, RealtimeTransport, TransportFactory

logger = get_logger(__name__)

DATA_CHANNEL_LABEL = "oai-events"

EventHandler = Callable[[dict[str, Any]], Union[None, Awaitable[None]]]
TranscriptionHandler = Callable[[str], Union[None, Awaitable[None]]]


async def _call(handler: Callable[..., Any], *args: Any) -> None:
    result = handler(*args)
    if inspect.isawaitable(result):
        await result


def _stop_tracks(tracks: list[AudioTrack]) -> None:
    for track in tracks:
        try:
            track.stop()
        except Exception as e:
            logger.warning("Failed to stop audio track", error=str(e))


class RealtimeSessionController:
    """
    Lifecycle and event dispatch for a realtime session.

    States: idle -> connecting -> awaiting_channel_open -> active -> closed.
    At most one live session per controller; stop_session() must be called
    before a failed or finished session can be set up again.
    """

    def __init__(
        self,
        transport_factory: TransportFactory,
        registry: Optional[FunctionRegistry] = None,
        client: Optional[RealtimeClient] = None,
        instructions: Optional[str] = None,
        initial_context: str = "",
        server_port: int = 5001,
        unknown_tool_policy: UnknownToolPolicy = UnknownToolPolicy.SKIP
    ) -> None:
        """
        Initialize the controller.

        Args:
            transport_factory: Creates a fresh transport per session
            registry: Functions the provider may call
            client: Negotiation client; defaults to the local token service
            instructions: Session instructions
            initial_context: Context pushed as a system item when the channel opens
            server_port: Port of the local token service
            unknown_tool_policy: Skip or report calls to unregistered functions
        """
        self._transport_factory = transport_factory
        self.registry = registry if registry is not None else FunctionRegistry()
        self.client = client or RealtimeClient(token_url=f"http://localhost:{server_port}")
        self.instructions = instructions or DEFAULT_INSTRUCTIONS
        self.unknown_tool_policy = unknown_tool_policy

        self._context = initial_context
        self._state = SessionState.IDLE
        self._transport: Optional[RealtimeTransport] = None
        self._data_channel: Optional[DataChannel] = None
        self._audio_tracks: list[AudioTrack] = []
        self._transcription_handler: Optional[TranscriptionHandler] = None
        # Bumped by every setup and stop; a suspended setup compares against it
        self._generation = 0

        self._handlers: dict[str, EventHandler] = {
            events.TRANSCRIPT_DONE: self._handle_transcript,
            events.FUNCTION_CALL_ARGUMENTS_DONE: self._handle_function_call,
        }

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def context(self) -> str:
        return self._context

    def add_function(
        self,
        descriptor: Union[FunctionDescriptor, Mapping[str, Any]],
        implementation: Callable[..., Any]
    ) -> FunctionDescriptor:
        """Register a function the realtime model may call."""
        return self.registry.register(descriptor, implementation)

    def register_transcription_handler(self, handler: TranscriptionHandler) -> None:
        """Set the callback receiving completed response transcripts."""
        self._transcription_handler = handler

    def on(self, event_type: str, handler: EventHandler) -> None:
        """Route inbound events of a type to a handler, replacing any existing one."""
        self._handlers[event_type] = handler

    def set_context(self, text: str) -> None:
        """
        Set the application context for the model.

        When the session is active the context is pushed immediately as a
        system conversation item.
        """
        self._context = text
        if self._state is SessionState.ACTIVE:
            self._send(events.context_item(text))

    async def setup_session(self) -> None:
        """
        Negotiate a realtime session with the provider.

        A stop_session() call while setup is suspended aborts it: setup
        returns without activating and releases anything it created after
        the stop.

        Raises:
            ProviderError: If the token service or negotiation fails
        """
        if self._state not in (SessionState.IDLE, SessionState.CLOSED):
            logger.warning("Realtime session already initialized, skipping setup", state=self._state.value)
            return

        self._generation += 1
        generation = self._generation
        self._state = SessionState.CONNECTING
        logger.info("Setting up realtime session")

        try:
            ephemeral_key = await self.client.fetch_ephemeral_key()
            if self._setup_aborted(generation):
                return

            transport = self._transport_factory()
            self._transport = transport
            tracks = await transport.attach_audio()
            if self._setup_aborted(generation):
                # stop_session() already closed the transport; these tracks came after it
                _stop_tracks(tracks)
                return
            self._audio_tracks = list(tracks)

            self._data_channel = transport.create_data_channel(
                DATA_CHANNEL_LABEL,
                self._on_channel_open,
                self.handle_event
            )

            offer = await transport.create_offer()
            if self._setup_aborted(generation):
                return
            answer = await self.client.negotiate(offer, ephemeral_key)
            if self._setup_aborted(generation):
                return
            await transport.apply_answer(answer)
            if self._setup_aborted(generation):
                return
        except Exception as e:
            logger.error("Realtime session setup failed", error=str(e))
            raise

        if self._state is SessionState.CONNECTING:
            self._state = SessionState.AWAITING_CHANNEL_OPEN
        logger.info("Realtime session established")

    def _setup_aborted(self, generation: int) -> bool:
        if generation == self._generation:
            return False
        logger.info("Realtime session setup aborted", state=self._state.value)
        return True

    async def stop_session(self) -> None:
        """Release audio tracks, the data channel and the transport, in that order."""
        logger.info("Stopping realtime session", state=self._state.value)
        self._generation += 1

        _stop_tracks(self._audio_tracks)
        self._audio_tracks = []

        if self._data_channel is not None:
            try:
                self._data_channel.close()
            except Exception as e:
                logger.warning("Failed to close data channel", error=str(e))
            self._data_channel = None

        if self._transport is not None:
            try:
                await self._transport.close()
            except Exception as e:
                logger.warning("Failed to close transport", error=str(e))
            self._transport = None

        self._state = SessionState.CLOSED

    async def close(self) -> None:
        """Stop the session and close the negotiation client."""
        await self.stop_session()
        await self.client.close()

    def _on_channel_open(self) -> None:
        if self._state not in (SessionState.CONNECTING, SessionState.AWAITING_CHANNEL_OPEN):
            logger.warning("Unexpected data channel open", state=self._state.value)
            return

        self._state = SessionState.ACTIVE
        logger.info("Data channel is open", tools=len(self.registry))

        self._send(events.session_update(self.registry.realtime_tools(), self.instructions))
        self._send(events.context_item(self._context))

    def _send(self, event: dict[str, Any]) -> None:
        if self._data_channel is None:
            logger.error("Data channel is not initialized", event_type=event["type"])
            return
        self._data_channel.send(events.encode(event))

    async def handle_event(self, raw: str) -> None:
        """
        Process one inbound event from the data channel.

        Malformed events are logged and dropped; the session continues.
        """
        if self._state is not SessionState.ACTIVE:
            logger.debug("Dropping event outside an active session", state=self._state.value)
            return

        try:
            event = json.loads(raw)
            if not isinstance(event, dict):
                raise ProtocolError("Realtime event is not a JSON object")
            if not isinstance(event.get("type"), str):
                raise ProtocolError("Realtime event has no string type")
        except (json.JSONDecodeError, ProtocolError) as e:
            logger.warning("Dropped malformed realtime event", error=str(e))
            return

        handler = self._handlers.get(event.get("type"))
        if handler is None:
            return

        try:
            await _call(handler, event)
        except ProtocolError as e:
            logger.warning("Dropped realtime event", event_type=event.get("type"), error=str(e))

    async def _handle_transcript(self, event: dict[str, Any]) -> None:
        transcript = event.get("transcript")
        if not isinstance(transcript, str):
            raise ProtocolError("Transcript event has no transcript")

        logger.debug("Transcription received", length=len(transcript))

        if self._transcription_handler is None:
            logger.warning("No transcription handler registered")
            return
        await _call(self._transcription_handler, transcript)

    async def _handle_function_call(self, event: dict[str, Any]) -> None:
        name = event.get("name")
        call_id = event.get("call_id")
        raw_arguments = event.get("arguments")

        if not raw_arguments or not isinstance(raw_arguments, str):
            raise ProtocolError("Invalid function call arguments")
        if not isinstance(name, str) or not name:
            raise ProtocolError("Function call event has no function name")
        if not isinstance(call_id, str) or not call_id:
            raise ProtocolError("Function call event has no call_id")

        try:
            arguments = json.loads(raw_arguments)
        except json.JSONDecodeError as e:
            raise ProtocolError(f"Function call arguments are not valid JSON: {e}") from e

        if name not in self.registry:
            logger.warning("Unknown function requested", function=name)
            if self.unknown_tool_policy is UnknownToolPolicy.REPORT:
                self._send(events.function_call_output(call_id, unknown_function_result(name)))
            return

        result = await self.registry.invoke(name, arguments)
        logger.info(
            "Function executed",
            function=name,
            status=result.status.value,
            execution_time_ms=result.execution_time_ms
        )

        self._send(events.function_call_output(call_id, encode_function_result(result)))
