"""Realtime mode.

Negotiates a persistent audio + data session with the provider and
dispatches inbound tool calls to the function registry.
"""

from realtime.client import RealtimeClient
from realtime.session import RealtimeSessionController
from realtime.transport import AudioTrack, DataChannel, RealtimeTransport

__all__ = [
    "RealtimeClient",
    "RealtimeSessionController",
    "AudioTrack",
    "DataChannel",
    "RealtimeTransport",
]
