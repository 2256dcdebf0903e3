"""Transport abstractions for realtime sessions.

The session controller drives a peer connection through these interfaces
and never touches ICE, codecs or audio devices itself. Hosts plug in an
implementation backed by their WebRTC stack.
"""

from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Union

OpenHandler = Callable[[], Union[None, Awaitable[None]]]
MessageHandler = Callable[[str], Union[None, Awaitable[None]]]


class AudioTrack(ABC):
    """A local audio capture track attached to the transport."""

    @abstractmethod
    def stop(self) -> None:
        pass


class DataChannel(ABC):
    """The structured-event side channel of a realtime transport."""

    @abstractmethod
    def send(self, data: str) -> None:
        """Send one serialized event. Does not wait for acknowledgement."""
        pass

    @abstractmethod
    def close(self) -> None:
        pass


class RealtimeTransport(ABC):
    """
    A persistent media + data transport to the realtime provider.

    The controller calls, in order: attach_audio, create_data_channel,
    create_offer, apply_answer. close releases the connection.
    """

    @abstractmethod
    async def attach_audio(self) -> list[AudioTrack]:
        """Capture local audio and attach the tracks to the connection."""
        pass

    @abstractmethod
    def create_data_channel(
        self,
        label: str,
        on_open: OpenHandler,
        on_message: MessageHandler
    ) -> DataChannel:
        """Open a data channel; the callbacks fire on open and per message."""
        pass

    @abstractmethod
    async def create_offer(self) -> str:
        """Create and apply the local session description, returning it."""
        pass

    @abstractmethod
    async def apply_answer(self, answer: str) -> None:
        """Apply the remote answer to complete negotiation."""
        pass

    @abstractmethod
    async def close(self) -> None:
        pass


TransportFactory = Callable[[], RealtimeTransport]
