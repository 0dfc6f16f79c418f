"""Tests for the voice relay listener."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from audio.archive import VoiceArchive
from audio.relay import VoiceRelay
from chat.exceptions import SignalingClosed
from chat.models import ChatMessage, ChatRole, StreamEvent
from conftest import envelope, stream_of


@pytest.fixture
def signaling():
    client = MagicMock()
    client.send_start = AsyncMock()
    client.send_data = AsyncMock()
    client.send_end = AsyncMock()
    client.archive = VoiceArchive()
    client.player.play = AsyncMock(return_value=True)
    return client


def content(text="", **payload):
    return StreamEvent(payload={"content": text, **payload})


@pytest.mark.asyncio
class TestVoiceRelay:
    """Test suite for VoiceRelay."""

    async def test_disabled_relay_sends_nothing(self, signaling):
        """Test nothing is forwarded while voice output is off."""
        relay = VoiceRelay(signaling)

        await relay.on_stream_event(content(status="START", messageId="m1"))
        await relay.on_stream_event(content("Hi"))

        signaling.send_start.assert_not_called()
        signaling.send_data.assert_not_called()

    async def test_forwards_start_content_and_end(self, signaling):
        """Test START opens the message and content follows it."""
        relay = VoiceRelay(signaling, enabled=True)
        message = ChatMessage(role=ChatRole.ASSISTANT)

        await relay.on_stream_event(content(status="START", messageId="m1"))
        await relay.on_stream_event(content("Hi"))
        await relay.on_stream_end(message)

        signaling.send_start.assert_awaited_once_with("m1")
        signaling.send_data.assert_awaited_once_with("m1", "Hi")
        signaling.send_end.assert_awaited_once_with("m1")
        assert message.session_ref == "m1"

    async def test_side_channel_events_not_forwarded(self, signaling):
        """Test thought events never reach the speech renderer."""
        relay = VoiceRelay(signaling, enabled=True)
        await relay.on_stream_event(content(status="START", messageId="m1"))

        await relay.on_stream_event(StreamEvent(kind="thinking", payload={"content": "hmm"}))

        signaling.send_data.assert_not_called()

    async def test_send_failure_is_logged_not_raised(self, signaling):
        """Test a closed socket does not break the chat turn."""
        signaling.send_start.side_effect = SignalingClosed("closed")
        relay = VoiceRelay(signaling, enabled=True)

        await relay.on_stream_event(content(status="START", messageId="m1"))

    async def test_speak_replays_archived_audio(self, signaling):
        """Test an answer with archived audio is replayed."""
        signaling.archive.append("m1", "QQ==")
        relay = VoiceRelay(signaling, enabled=True)
        message = ChatMessage(role=ChatRole.ASSISTANT, content="Hi", session_ref="m1")

        assert await relay.speak(message) is True

        signaling.player.play.assert_awaited_once_with("m1")
        signaling.send_start.assert_not_called()

    async def test_speak_requests_synthesis(self, signaling):
        """Test an answer without audio is sent for synthesis under its own id."""
        relay = VoiceRelay(signaling)
        message = ChatMessage(role=ChatRole.ASSISTANT, content="Hi there")

        assert await relay.speak(message) is False

        signaling.send_start.assert_awaited_once_with(message.id)
        signaling.send_data.assert_awaited_once_with(message.id, "Hi there")
        signaling.send_end.assert_awaited_once_with(message.id)
        assert message.session_ref == message.id

    async def test_relay_as_session_listener(self, signaling, make_session):
        """Test a chat turn is narrated end to end."""
        relay = VoiceRelay(signaling, enabled=True)
        session = make_session(
            stream_of(
                envelope(status="START", messageId="m1"),
                envelope(content="Hi"),
                envelope(content=" there"),
            ),
            listeners=[relay],
        )

        await session.submit("hello")

        assert [call.args for call in signaling.send_data.await_args_list] == [
            ("m1", "Hi"),
            ("m1", " there"),
        ]
        signaling.send_end.assert_awaited_once_with("m1")
