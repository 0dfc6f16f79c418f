"""HTTP connector for the streaming chat bot API.

This module wraps the bot endpoints with an httpx ``AsyncClient``:
- Streaming chat responses, yielded as raw body reads
- Login and conversation id generation
- Voice input upload for speech recognition
- OpenTelemetry spans around every call
"""

import os
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import httpx
import structlog
from opentelemetry import trace

from chat.exceptions import AudioPermissionDenied, ChatApiError
from chat.models import ChatMessage, ChatRole

tracer = trace.get_tracer(__name__)
logger = structlog.get_logger(__name__)

CHAT_PATH = "/api/v1/bot/chat"
CONVERSATION_PATH = "/api/v1/bot/generateConversationId"
VOICE_INPUT_PATH = "/api/v1/bot/voiceInput"
LOGIN_PATH = "/api/v1/auth/login"


class ChatApiConnector:
    """Client for the bot chat API.

    Example:
        >>> async with ChatApiConnector(token="...", bot_id="42") as api:
        ...     session = ChatSession(api.request)
        ...     await session.submit("hello")
    """

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        bot_id: str | None = None,
        conversation_id: str | None = None,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the connector.

        Args:
            base_url: API root (falls back to STREAMCHAT_API_URL)
            token: Bearer token for authenticated calls
            bot_id: Bot to chat with (falls back to STREAMCHAT_BOT_ID)
            conversation_id: Conversation the chat calls belong to
            timeout: Request timeout in seconds
            transport: Optional transport, e.g. for tests
        """
        self.base_url = base_url or os.getenv("STREAMCHAT_API_URL", "http://localhost:8080")
        self.bot_id = bot_id or os.getenv("STREAMCHAT_BOT_ID", "")
        self.conversation_id = conversation_id
        self.client = httpx.AsyncClient(
            base_url=self.base_url, timeout=timeout, transport=transport
        )
        self.token = token

    @property
    def token(self) -> str | None:
        return self._token

    @token.setter
    def token(self, value: str | None) -> None:
        self._token = value
        if value:
            self.client.headers["Authorization"] = f"Bearer {value}"
        else:
            self.client.headers.pop("Authorization", None)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        """Close the underlying HTTP client."""
        await self.client.aclose()

    def request(self, history: list[ChatMessage]) -> AsyncIterator[bytes]:
        """Request collaborator for ChatSession."""
        return self.stream_chat(history, self.conversation_id)

    async def stream_chat(
        self,
        messages: list[ChatMessage],
        conversation_id: str | None = None,
    ) -> AsyncIterator[bytes]:
        """Post the latest user message and yield raw body reads.

        Args:
            messages: Transcript up to and including the new user message
            conversation_id: Server-side conversation the message belongs to

        Yields:
            Body bytes as they arrive
        """
        question = next((m for m in reversed(messages) if m.role == ChatRole.USER), None)
        if question is None:
            raise ValueError("No user message to send")

        payload: dict[str, Any] = {
            "botId": self.bot_id,
            "conversationId": conversation_id or self.conversation_id,
            "message": question.content,
            "stream": True,
        }
        if question.files:
            payload["image"] = question.files[0]

        span = tracer.start_span("chat_api.stream_chat")
        span.set_attribute("chat_api.bot_id", self.bot_id)
        span.set_attribute("chat_api.message_count", len(messages))
        received = 0
        try:
            async with self.client.stream("POST", CHAT_PATH, json=payload) as response:
                response.raise_for_status()
                async for chunk in response.aiter_bytes():
                    received += len(chunk)
                    yield chunk
        except Exception as e:
            span.record_exception(e)
            raise
        finally:
            span.set_attribute("chat_api.bytes_received", received)
            span.end()

    @tracer.start_as_current_span("chat_api.login")
    async def login(self, account: str, password: str) -> dict[str, Any]:
        """Log in and keep the returned token for later calls.

        Returns:
            Login data with ``token``, ``nickname`` and ``avatar``
        """
        data = await self._call("POST", LOGIN_PATH, json={"account": account, "password": password})
        self.token = data["token"]
        logger.info("chat_api_logged_in", account=account)
        return data

    @tracer.start_as_current_span("chat_api.generate_conversation_id")
    async def generate_conversation_id(self) -> str:
        """Ask the server for a fresh conversation id and make it current."""
        data = await self._call("GET", CONVERSATION_PATH)
        self.conversation_id = str(data["conversationId"])
        return self.conversation_id

    @tracer.start_as_current_span("chat_api.voice_input")
    async def voice_input(self, audio: bytes, filename: str = "recording.wav") -> str:
        """Upload a recording and return the recognized text."""
        span = trace.get_current_span()
        span.set_attribute("chat_api.audio_size", len(audio))
        files = {"audio": (filename, audio, "application/octet-stream")}
        data = await self._call("POST", VOICE_INPUT_PATH, files=files)
        return data if isinstance(data, str) else str(data or "")

    async def voice_input_file(self, path: Path | str) -> str:
        """Upload a recording from disk.

        Raises:
            AudioPermissionDenied: If the recording cannot be read
        """
        path = Path(path)
        try:
            audio = path.read_bytes()
        except OSError as e:
            raise AudioPermissionDenied(f"Cannot access recording {path}: {e}") from e
        return await self.voice_input(audio, path.name)

    async def _call(self, method: str, url: str, **kwargs: Any) -> Any:
        response = await self.client.request(method, url, **kwargs)
        response.raise_for_status()
        body = response.json()
        if body.get("code", 0) != 0:
            raise ChatApiError(body["code"], body.get("message", ""))
        return body.get("data")
