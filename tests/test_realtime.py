"""Tests for realtime session components."""

import json

import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock

from shared.errors import ProviderError
from shared.models import SessionState, UnknownToolPolicy
from realtime.client import RealtimeClient
from realtime.transport import AudioTrack, DataChannel, RealtimeTransport

ADD_DESCRIPTOR = {
    "type": "function",
    "function": {
        "name": "add",
        "description": "Add two numbers",
        "parameters": {
            "type": "object",
            "properties": {
                "a": {"type": "number", "description": "First operand"},
                "b": {"type": "number", "description": "Second operand"},
            },
        },
    },
}


class FakeTrack(AudioTrack):
    def __init__(self, log):
        self.log = log

    def stop(self):
        self.log.append("track")


class FakeChannel(DataChannel):
    def __init__(self, log, on_open, on_message):
        self.log = log
        self.on_open = on_open
        self.on_message = on_message
        self.sent = []

    def send(self, data):
        self.sent.append(json.loads(data))

    def close(self):
        self.log.append("channel")


class FakeTransport(RealtimeTransport):
    def __init__(self):
        self.log = []
        self.channel = None
        self.label = None
        self.answer = None

    async def attach_audio(self):
        return [FakeTrack(self.log)]

    def create_data_channel(self, label, on_open, on_message):
        self.label = label
        self.channel = FakeChannel(self.log, on_open, on_message)
        return self.channel

    async def create_offer(self):
        return "v=0 offer"

    async def apply_answer(self, answer):
        self.answer = answer

    async def close(self):
        self.log.append("transport")


def make_client():
    client = MagicMock(spec=RealtimeClient)
    client.fetch_ephemeral_key = AsyncMock(return_value="ek_test")
    client.negotiate = AsyncMock(return_value="v=0 answer")
    client.close = AsyncMock()
    return client


def make_controller(**kwargs):
    from realtime.session import RealtimeSessionController

    transports = []

    def factory():
        transport = FakeTransport()
        transports.append(transport)
        return transport

    client = make_client()
    controller = RealtimeSessionController(
        transport_factory=factory,
        client=client,
        instructions="Be brief.",
        initial_context="The user is on the settings page.",
        **kwargs
    )
    return controller, client, transports


async def open_session(controller, transports):
    await controller.setup_session()
    channel = transports[-1].channel
    channel.on_open()
    return channel


def function_call_event(name, arguments, call_id="call_1"):
    return json.dumps({
        "type": "response.function_call_arguments.done",
        "name": name,
        "arguments": arguments,
        "call_id": call_id,
    })


class TestSessionSetup:
    """Tests for session negotiation."""

    @pytest.mark.asyncio
    async def test_setup_negotiates_session(self):
        controller, client, transports = make_controller()

        await controller.setup_session()

        transport = transports[0]
        assert controller.state == SessionState.AWAITING_CHANNEL_OPEN
        assert transport.label == "oai-events"
        client.negotiate.assert_awaited_once_with("v=0 offer", "ek_test")
        assert transport.answer == "v=0 answer"

    @pytest.mark.asyncio
    async def test_channel_open_sends_configuration_then_context(self):
        """Test that exactly one config and one context event go out, in order."""
        controller, client, transports = make_controller()
        controller.add_function(ADD_DESCRIPTOR, lambda a, b: a + b)

        channel = await open_session(controller, transports)

        assert controller.state == SessionState.ACTIVE
        assert len(channel.sent) == 2

        config, context = channel.sent
        assert config["type"] == "session.update"
        assert config["session"]["modalities"] == ["text", "audio"]
        assert config["session"]["instructions"] == "Be brief."
        assert config["session"]["tools"] == [{
            "type": "function",
            "name": "add",
            "description": "Add two numbers",
            "parameters": ADD_DESCRIPTOR["function"]["parameters"],
        }]

        assert context == {
            "type": "conversation.item.create",
            "item": {
                "type": "message",
                "role": "system",
                "content": [{"type": "input_text", "text": "The user is on the settings page."}],
            },
        }

    @pytest.mark.asyncio
    async def test_repeated_setup_is_noop(self):
        controller, client, transports = make_controller()

        await open_session(controller, transports)
        await controller.setup_session()

        assert len(transports) == 1
        client.fetch_ephemeral_key.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_negotiation_failure_stays_failed(self):
        """Test that a failed setup is surfaced and not retried."""
        controller, client, transports = make_controller()
        client.negotiate.side_effect = ProviderError("Realtime API returned error: bad offer")

        with pytest.raises(ProviderError):
            await controller.setup_session()

        assert controller.state == SessionState.CONNECTING

        await controller.setup_session()
        assert client.negotiate.await_count == 1

        await controller.stop_session()
        client.negotiate.side_effect = None
        await controller.setup_session()

        assert controller.state == SessionState.AWAITING_CHANNEL_OPEN
        assert len(transports) == 2

    @pytest.mark.asyncio
    async def test_token_failure_creates_no_transport(self):
        controller, client, transports = make_controller()
        client.fetch_ephemeral_key.side_effect = ProviderError("Cannot reach token service")

        with pytest.raises(ProviderError):
            await controller.setup_session()

        assert transports == []

    @pytest.mark.asyncio
    async def test_stop_during_token_fetch_aborts_setup(self):
        """Test that stopping before the key arrives creates no transport."""
        controller, client, transports = make_controller()

        async def fetch_then_stop():
            await controller.stop_session()
            return "ek_test"

        client.fetch_ephemeral_key.side_effect = fetch_then_stop

        await controller.setup_session()

        assert controller.state == SessionState.CLOSED
        assert transports == []
        client.negotiate.assert_not_awaited()

        client.fetch_ephemeral_key.side_effect = None
        await controller.setup_session()

        assert controller.state == SessionState.AWAITING_CHANNEL_OPEN
        assert len(transports) == 1

    @pytest.mark.asyncio
    async def test_stop_during_negotiation_releases_session(self):
        """Test that stopping mid-negotiation leaves nothing live behind."""
        controller, client, transports = make_controller()

        async def negotiate_then_stop(offer, key):
            await controller.stop_session()
            return "v=0 answer"

        client.negotiate.side_effect = negotiate_then_stop

        await controller.setup_session()

        transport = transports[0]
        assert controller.state == SessionState.CLOSED
        assert transport.log == ["track", "channel", "transport"]
        assert transport.answer is None

        transport.channel.on_open()
        assert controller.state == SessionState.CLOSED
        assert transport.channel.sent == []

    @pytest.mark.asyncio
    async def test_stop_during_audio_attach_stops_new_tracks(self):
        from realtime.session import RealtimeSessionController

        controller = None
        created = []

        class SlowAudioTransport(FakeTransport):
            async def attach_audio(self):
                await controller.stop_session()
                return [FakeTrack(self.log)]

        def factory():
            transport = SlowAudioTransport()
            created.append(transport)
            return transport

        controller = RealtimeSessionController(transport_factory=factory, client=make_client())

        await controller.setup_session()

        transport = created[0]
        assert controller.state == SessionState.CLOSED
        assert transport.log == ["transport", "track"]
        assert transport.channel is None


class TestEventDispatch:
    """Tests for inbound event handling."""

    @pytest.mark.asyncio
    async def test_transcript_calls_handler(self):
        controller, client, transports = make_controller()
        handler = MagicMock()
        controller.register_transcription_handler(handler)
        await open_session(controller, transports)

        await controller.handle_event(json.dumps({
            "type": "response.audio_transcript.done",
            "transcript": "Hello there",
        }))

        handler.assert_called_once_with("Hello there")

    @pytest.mark.asyncio
    async def test_async_transcription_handler_awaited(self):
        controller, client, transports = make_controller()
        handler = AsyncMock()
        controller.register_transcription_handler(handler)
        await open_session(controller, transports)

        await controller.handle_event(json.dumps({
            "type": "response.audio_transcript.done",
            "transcript": "Hi",
        }))

        handler.assert_awaited_once_with("Hi")

    @pytest.mark.asyncio
    async def test_transcript_without_handler(self):
        controller, client, transports = make_controller()
        channel = await open_session(controller, transports)

        await controller.handle_event(json.dumps({
            "type": "response.audio_transcript.done",
            "transcript": "Hi",
        }))

        assert len(channel.sent) == 2

    @pytest.mark.asyncio
    async def test_function_call_sends_output(self):
        """Test that a registered function is invoked and its result sent back."""
        controller, client, transports = make_controller()
        add = MagicMock(return_value=3)
        controller.add_function(ADD_DESCRIPTOR, add)
        channel = await open_session(controller, transports)

        await controller.handle_event(function_call_event("add", '{"a": 1, "b": 2}', "call_42"))

        add.assert_called_once_with(1, 2)
        assert len(channel.sent) == 3
        output = channel.sent[-1]
        assert output["type"] == "conversation.item.create"
        assert output["item"]["type"] == "function_call_output"
        assert output["item"]["call_id"] == "call_42"
        assert json.loads(output["item"]["output"]) == {"functionResult": 3}

    @pytest.mark.asyncio
    async def test_unregistered_function_sends_nothing(self):
        controller, client, transports = make_controller()
        channel = await open_session(controller, transports)

        await controller.handle_event(function_call_event("missing", "{}"))

        assert len(channel.sent) == 2

    @pytest.mark.asyncio
    async def test_unregistered_function_reported(self):
        controller, client, transports = make_controller(
            unknown_tool_policy=UnknownToolPolicy.REPORT
        )
        channel = await open_session(controller, transports)

        await controller.handle_event(function_call_event("missing", "{}", "call_7"))

        assert channel.sent[-1]["item"]["call_id"] == "call_7"
        assert json.loads(channel.sent[-1]["item"]["output"])["functionResult"] is None

    @pytest.mark.asyncio
    async def test_failing_function_reports_error(self):
        controller, client, transports = make_controller()

        async def explode(a, b):
            raise RuntimeError("boom")

        controller.add_function(ADD_DESCRIPTOR, explode)
        channel = await open_session(controller, transports)

        await controller.handle_event(function_call_event("add", '{"a": 1, "b": 2}'))

        assert json.loads(channel.sent[-1]["item"]["output"]) == {
            "functionResult": None,
            "error": "boom",
        }
        assert controller.state == SessionState.ACTIVE

    @pytest.mark.asyncio
    async def test_malformed_arguments_dropped(self):
        controller, client, transports = make_controller()
        add = MagicMock()
        controller.add_function(ADD_DESCRIPTOR, add)
        channel = await open_session(controller, transports)

        await controller.handle_event(function_call_event("add", '{"a": 1,'))
        await controller.handle_event(function_call_event("add", ""))

        add.assert_not_called()
        assert len(channel.sent) == 2
        assert controller.state == SessionState.ACTIVE

    @pytest.mark.asyncio
    async def test_malformed_event_dropped(self):
        controller, client, transports = make_controller()
        channel = await open_session(controller, transports)

        await controller.handle_event("not json")
        await controller.handle_event("[1, 2]")

        assert len(channel.sent) == 2
        assert controller.state == SessionState.ACTIVE

    @pytest.mark.asyncio
    async def test_event_with_non_string_type_dropped(self):
        controller, client, transports = make_controller()
        add = MagicMock(return_value=3)
        controller.add_function(ADD_DESCRIPTOR, add)
        channel = await open_session(controller, transports)

        await controller.handle_event(json.dumps({"type": ["x"]}))
        await controller.handle_event(json.dumps({"type": {"a": 1}}))
        await controller.handle_event(json.dumps({"transcript": "no type"}))

        assert len(channel.sent) == 2
        assert controller.state == SessionState.ACTIVE

        await controller.handle_event(function_call_event("add", '{"a": 1, "b": 2}'))
        add.assert_called_once_with(1, 2)

    @pytest.mark.asyncio
    async def test_function_call_with_non_string_name_or_call_id_dropped(self):
        controller, client, transports = make_controller(
            unknown_tool_policy=UnknownToolPolicy.REPORT
        )
        add = MagicMock()
        controller.add_function(ADD_DESCRIPTOR, add)
        channel = await open_session(controller, transports)

        await controller.handle_event(json.dumps({
            "type": "response.function_call_arguments.done",
            "name": {"n": 1},
            "arguments": "{}",
            "call_id": "call_1",
        }))
        await controller.handle_event(json.dumps({
            "type": "response.function_call_arguments.done",
            "name": "add",
            "arguments": '{"a": 1, "b": 2}',
            "call_id": ["call_1"],
        }))

        add.assert_not_called()
        assert len(channel.sent) == 2
        assert controller.state == SessionState.ACTIVE

    @pytest.mark.asyncio
    async def test_events_before_active_ignored(self):
        controller, client, transports = make_controller()
        add = MagicMock()
        controller.add_function(ADD_DESCRIPTOR, add)
        await controller.setup_session()

        await controller.handle_event(function_call_event("add", '{"a": 1, "b": 2}'))

        add.assert_not_called()

    @pytest.mark.asyncio
    async def test_custom_event_handler(self):
        controller, client, transports = make_controller()
        handler = AsyncMock()
        controller.on("session.updated", handler)
        await open_session(controller, transports)

        await controller.handle_event(json.dumps({"type": "session.updated", "session": {}}))

        handler.assert_awaited_once_with({"type": "session.updated", "session": {}})


class TestContextAndShutdown:
    """Tests for context updates and session teardown."""

    @pytest.mark.asyncio
    async def test_set_context_while_active_pushes_item(self):
        controller, client, transports = make_controller()
        channel = await open_session(controller, transports)

        controller.set_context("The user opened the cart.")

        assert controller.context == "The user opened the cart."
        assert channel.sent[-1]["item"]["content"][0]["text"] == "The user opened the cart."
        assert len(channel.sent) == 3

    @pytest.mark.asyncio
    async def test_set_context_before_active_only_stores(self):
        controller, client, transports = make_controller()
        await controller.setup_session()

        controller.set_context("Updated")

        assert transports[0].channel.sent == []

        transports[0].channel.on_open()
        assert transports[0].channel.sent[1]["item"]["content"][0]["text"] == "Updated"

    @pytest.mark.asyncio
    async def test_stop_session_releases_in_order(self):
        controller, client, transports = make_controller()
        await open_session(controller, transports)

        await controller.stop_session()

        assert transports[0].log == ["track", "channel", "transport"]
        assert controller.state == SessionState.CLOSED

    @pytest.mark.asyncio
    async def test_stop_session_tolerates_failures(self):
        controller, client, transports = make_controller()
        await open_session(controller, transports)
        transports[0].channel.close = MagicMock(side_effect=RuntimeError("already closed"))

        await controller.stop_session()

        assert "transport" in transports[0].log
        assert controller.state == SessionState.CLOSED

    @pytest.mark.asyncio
    async def test_stop_session_when_idle(self):
        controller, client, transports = make_controller()

        await controller.stop_session()

        assert controller.state == SessionState.CLOSED

    @pytest.mark.asyncio
    async def test_close_closes_client(self):
        controller, client, transports = make_controller()

        await controller.close()

        client.close.assert_awaited_once()


class TestRealtimeClient:
    """Tests for the negotiation client."""

    @pytest.mark.asyncio
    async def test_fetch_ephemeral_key(self):
        def handler(request):
            assert request.url == "http://localhost:5001/session"
            return httpx.Response(200, json={"client_secret": {"value": "ek_abc"}})

        client = RealtimeClient()
        client._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))

        assert await client.fetch_ephemeral_key() == "ek_abc"
        await client.close()

    @pytest.mark.asyncio
    async def test_fetch_ephemeral_key_missing_secret(self):
        client = RealtimeClient()
        client._client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json={}))
        )

        with pytest.raises(ProviderError, match="client_secret"):
            await client.fetch_ephemeral_key()
        await client.close()

    @pytest.mark.asyncio
    async def test_fetch_ephemeral_key_error_status(self):
        client = RealtimeClient()
        client._client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(500))
        )

        with pytest.raises(ProviderError) as exc_info:
            await client.fetch_ephemeral_key()

        assert exc_info.value.status_code == 500
        await client.close()

    @pytest.mark.asyncio
    async def test_negotiate_posts_offer(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["type"] = request.headers["Content-Type"]
            seen["body"] = request.content.decode()
            return httpx.Response(201, text="v=0 answer")

        client = RealtimeClient(model="gpt-4o-realtime-preview-2024-12-17")
        client._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))

        answer = await client.negotiate("v=0 offer", "ek_abc")

        assert answer == "v=0 answer"
        assert seen["url"] == (
            "https://api.openai.com/v1/realtime?model=gpt-4o-realtime-preview-2024-12-17"
        )
        assert seen["auth"] == "Bearer ek_abc"
        assert seen["type"] == "application/sdp"
        assert seen["body"] == "v=0 offer"
        await client.close()

    @pytest.mark.asyncio
    async def test_negotiate_error_response(self):
        client = RealtimeClient()
        client._client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(400, text="bad offer"))
        )

        with pytest.raises(ProviderError, match="bad offer"):
            await client.negotiate("v=0 offer", "ek_abc")
        await client.close()
