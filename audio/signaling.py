"""Duplex audio signaling socket.

Outbound frames carry answer text to a remote text-to-speech renderer;
inbound frames carry base64 audio chunks keyed by message id.

Example usage:
    async with AudioSignalingClient(session_id, token, player, archive) as client:
        await client.send_start(message_id)
        await client.send_data(message_id, "Hello")
        await client.send_end(message_id)
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any
from urllib.parse import urlencode

import structlog
import websockets
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from websockets.exceptions import ConnectionClosed, WebSocketException

from chat.exceptions import SignalingClosed, SignalingError
from chat.observability import get_chat_metrics

from .archive import VoiceArchive
from .playback import StreamPlayer

logger = structlog.get_logger(__name__)

AUDIO_PATH = "/api/v1/aiBot/ws/audio"


class FrameType(str, Enum):
    START = "_start_"
    DATA = "_data_"
    END = "_end_"
    ERROR = "_error_"


class SignalingFrame(BaseModel):
    """One JSON frame on the audio socket: ``{type, messageId, content?}``."""

    model_config = ConfigDict(populate_by_name=True)

    type: FrameType
    message_id: str | None = Field(default=None, alias="messageId")
    content: str | None = None

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class ClientState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"


class AudioSignalingClient:
    """One persistent audio socket per conversation session.

    A lost connection is not re-established; the current turn simply
    receives no more audio.
    """

    def __init__(
        self,
        session_id: str,
        token: str,
        player: StreamPlayer,
        archive: VoiceArchive,
        url: str | None = None,
        connect: Callable[[str], Awaitable[Any]] | None = None,
    ):
        base = (url or os.getenv("STREAMCHAT_WS_URL", "ws://localhost:8080")).rstrip("/")
        if not base.endswith(AUDIO_PATH):
            base += AUDIO_PATH
        self.url = f"{base}?{urlencode({'sessionId': session_id, 'token': token})}"
        self.session_id = session_id
        self.player = player
        self.archive = archive
        self._connect = connect or websockets.connect

        self._state = ClientState.DISCONNECTED
        self._websocket: Any = None
        self._receive_task: asyncio.Task | None = None
        self._pending: set[asyncio.Task] = set()
        self._metrics = get_chat_metrics()

    @property
    def state(self) -> ClientState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == ClientState.CONNECTED and self._websocket is not None

    async def connect(self) -> None:
        """Open the socket and start receiving.

        Raises:
            SignalingError: If the connection cannot be established
        """
        if self._state in (ClientState.CONNECTING, ClientState.CONNECTED):
            raise SignalingError(f"Cannot connect in state {self._state.value}")

        self._state = ClientState.CONNECTING
        try:
            self._websocket = await self._connect(self.url)
        except (OSError, WebSocketException) as e:
            self._state = ClientState.DISCONNECTED
            logger.error("audio_signaling_connect_failed", session_id=self.session_id, error=str(e))
            raise SignalingError(f"Failed to connect audio socket: {e}") from e

        self._state = ClientState.CONNECTED
        self._receive_task = asyncio.create_task(self._receive_loop())
        logger.info("audio_signaling_connected", session_id=self.session_id)

    async def close(self) -> None:
        """Close the socket. Safe to call multiple times or in any state."""
        if self._state == ClientState.CLOSED:
            return
        self._state = ClientState.CLOSED

        if self._receive_task is not None:
            self._receive_task.cancel()
            try:
                await self._receive_task
            except asyncio.CancelledError:
                pass
            self._receive_task = None

        for task in list(self._pending):
            task.cancel()
        self._pending.clear()

        if self._websocket is not None:
            try:
                await self._websocket.close()
            except Exception as e:
                logger.warning("audio_signaling_close_failed", error=str(e))
            self._websocket = None

        logger.info("audio_signaling_closed", session_id=self.session_id)

    async def __aenter__(self) -> AudioSignalingClient:
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def send_frame(self, frame: SignalingFrame) -> None:
        """Send one frame.

        Raises:
            SignalingClosed: If the socket is not open
            SignalingError: If the send fails
        """
        if not self.is_open:
            raise SignalingClosed(f"Audio socket is {self._state.value}")
        try:
            await self._websocket.send(frame.to_json())
        except ConnectionClosed as e:
            self._state = ClientState.DISCONNECTED
            raise SignalingClosed(f"Audio socket closed: {e}") from e
        logger.debug("audio_frame_sent", type=frame.type.value, message_id=frame.message_id)

    async def send_start(self, message_id: str) -> None:
        await self.send_frame(SignalingFrame(type=FrameType.START, message_id=message_id))

    async def send_data(self, message_id: str, content: str) -> None:
        await self.send_frame(
            SignalingFrame(type=FrameType.DATA, message_id=message_id, content=content)
        )

    async def send_end(self, message_id: str) -> None:
        await self.send_frame(SignalingFrame(type=FrameType.END, message_id=message_id))

    async def handle_message(self, raw: str | bytes) -> None:
        """Apply one inbound frame to the archive and the player."""
        try:
            frame = SignalingFrame.model_validate_json(raw)
        except ValidationError as e:
            logger.warning("audio_frame_invalid", error=str(e))
            return

        message_id = frame.message_id
        if frame.type == FrameType.ERROR:
            logger.error("audio_server_error", message_id=message_id, content=frame.content)
            return
        if not message_id:
            logger.warning("audio_frame_missing_message_id", type=frame.type.value)
            return

        if frame.type == FrameType.START:
            self.archive.open(message_id)
            self.player.start_stream(message_id)
        elif frame.type == FrameType.DATA:
            content = frame.content or ""
            self.archive.append(message_id, content)
            self._metrics.audio_chunks.add(1)
            if self.player.current_id == message_id:
                self.player.append_audio_data(content)
        elif frame.type == FrameType.END:
            if self.player.current_id == message_id:
                task = asyncio.create_task(self.player.finish_stream(message_id))
                self._pending.add(task)
                task.add_done_callback(self._pending.discard)
            logger.debug(
                "audio_message_received",
                message_id=message_id,
                chunks=len(self.archive.get(message_id)),
            )

    async def _receive_loop(self) -> None:
        try:
            async for message in self._websocket:
                try:
                    await self.handle_message(message)
                except Exception as e:
                    logger.exception("audio_frame_failed", session_id=self.session_id, error=str(e))
        except ConnectionClosed as e:
            logger.warning("audio_signaling_lost", session_id=self.session_id, error=str(e))
        if self._state == ClientState.CONNECTED:
            self._state = ClientState.DISCONNECTED
