"""Tests for the chat API connector."""

import json

import httpx
import pytest

from chat.exceptions import AudioPermissionDenied, ChatApiError
from chat.models import ChatMessage, ChatRole
from chat.session import ChatSession
from connectors.chat_api import ChatApiConnector
from conftest import envelope


def make_connector(handler, **kwargs):
    kwargs.setdefault("bot_id", "42")
    return ChatApiConnector(
        base_url="http://bot.local", transport=httpx.MockTransport(handler), **kwargs
    )


def ok(data):
    return httpx.Response(200, json={"code": 0, "message": "success", "data": data})


class TestChatApiConnector:
    """Test suite for ChatApiConnector."""

    def test_token_sets_bearer_header(self):
        """Test the token becomes an Authorization header and can be cleared."""
        connector = make_connector(lambda request: ok(None), token="tok")

        assert connector.client.headers["Authorization"] == "Bearer tok"

        connector.token = None
        assert "Authorization" not in connector.client.headers

    def test_defaults_from_env(self, monkeypatch):
        """Test the base URL and bot id fall back to the environment."""
        monkeypatch.setenv("STREAMCHAT_API_URL", "http://env.local")
        monkeypatch.setenv("STREAMCHAT_BOT_ID", "7")

        connector = ChatApiConnector()

        assert connector.base_url == "http://env.local"
        assert connector.bot_id == "7"

    @pytest.mark.asyncio
    async def test_context_manager(self):
        """Test the HTTP client is closed on exit."""
        async with make_connector(lambda request: ok(None)) as connector:
            pass

        assert connector.client.is_closed


@pytest.mark.asyncio
class TestStreamChat:
    """Test suite for streaming chat requests."""

    async def test_posts_latest_question(self):
        """Test the request body carries the bot, conversation and question."""
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, content=envelope(content="Hi"))

        connector = make_connector(handler, token="tok", conversation_id="c1")
        history = [
            ChatMessage(role=ChatRole.USER, content="first"),
            ChatMessage(role=ChatRole.ASSISTANT, content="ok"),
            ChatMessage(role=ChatRole.USER, content="second", files=["img.png"]),
        ]

        chunks = [chunk async for chunk in connector.stream_chat(history)]

        assert b"".join(chunks) == envelope(content="Hi")
        assert seen["path"] == "/api/v1/bot/chat"
        assert seen["auth"] == "Bearer tok"
        assert seen["body"] == {
            "botId": "42",
            "conversationId": "c1",
            "message": "second",
            "stream": True,
            "image": "img.png",
        }

    async def test_http_error_propagates(self):
        """Test a failing status is raised from the stream."""
        connector = make_connector(lambda request: httpx.Response(401))

        with pytest.raises(httpx.HTTPStatusError):
            async for _ in connector.stream_chat([ChatMessage(role=ChatRole.USER, content="x")]):
                pass

    async def test_drives_chat_session(self):
        """Test the connector works as a session's request collaborator."""
        body = envelope(content="Hi") + envelope(content=" there")
        connector = make_connector(lambda request: httpx.Response(200, content=body))
        session = ChatSession(connector.request, tick_interval=0.001, reassemble=True)

        answer = await session.submit("hello")

        assert answer.content == "Hi there"


@pytest.mark.asyncio
class TestApiCalls:
    """Test suite for the JSON endpoints."""

    async def test_login_stores_token(self):
        """Test a successful login keeps the token for later calls."""

        def handler(request):
            assert json.loads(request.content) == {"account": "ann", "password": "pw"}
            return ok({"token": "tok", "nickname": "Ann", "avatar": None})

        connector = make_connector(handler)

        data = await connector.login("ann", "pw")

        assert data["nickname"] == "Ann"
        assert connector.token == "tok"
        assert connector.client.headers["Authorization"] == "Bearer tok"

    async def test_error_envelope_raises(self):
        """Test a non-zero code is reported with the server message."""
        connector = make_connector(
            lambda request: httpx.Response(200, json={"code": 400, "message": "bad password"})
        )

        with pytest.raises(ChatApiError) as exc_info:
            await connector.login("ann", "nope")

        assert exc_info.value.code == 400
        assert exc_info.value.message == "bad password"
        assert connector.token is None

    async def test_generate_conversation_id(self):
        """Test a new conversation id becomes current."""
        connector = make_connector(lambda request: ok({"conversationId": "99"}))

        assert await connector.generate_conversation_id() == "99"
        assert connector.conversation_id == "99"

    async def test_voice_input_uploads_audio_field(self):
        """Test the recording is sent as the multipart audio field."""
        seen = {}

        def handler(request):
            seen["body"] = request.read()
            return ok("recognized text")

        connector = make_connector(handler)

        text = await connector.voice_input(b"RIFF", "clip.wav")

        assert text == "recognized text"
        assert b'name="audio"' in seen["body"]
        assert b'filename="clip.wav"' in seen["body"]

    async def test_unreadable_recording(self, tmp_path):
        """Test a missing recording raises AudioPermissionDenied."""
        connector = make_connector(lambda request: ok(""))

        with pytest.raises(AudioPermissionDenied):
            await connector.voice_input_file(tmp_path / "missing.wav")
