"""Forward streamed answer text to the speech renderer."""

from __future__ import annotations

import structlog

from chat.exceptions import SignalingError
from chat.models import ChatMessage, StreamEvent
from chat.session import SessionListener

from .signaling import AudioSignalingClient

logger = structlog.get_logger(__name__)

START_STATUS = "START"


class VoiceRelay(SessionListener):
    """Session listener that narrates plain answer content while voice is on."""

    def __init__(self, client: AudioSignalingClient, enabled: bool = False):
        self.client = client
        self.enabled = enabled
        self.message_id: str | None = None

    async def on_stream_event(self, event: StreamEvent) -> None:
        if not self.enabled or not event.is_content:
            return

        if event.status == START_STATUS and event.message_id:
            self.message_id = event.message_id
            await self._send(self.client.send_start, self.message_id)
        elif event.content and self.message_id:
            await self._send(self.client.send_data, self.message_id, event.content)

    async def on_stream_end(self, message: ChatMessage) -> None:
        message_id, self.message_id = self.message_id, None
        if message_id is None:
            return
        if message.session_ref is None:
            message.session_ref = message_id
        await self._send(self.client.send_end, message_id)

    async def speak(self, message: ChatMessage) -> bool:
        """Play a finished answer, synthesizing it first if it was never voiced.

        Returns:
            True if archived audio was replayed, False if synthesis was requested
        """
        voice_id = message.session_ref
        if voice_id and voice_id in self.client.archive:
            return await self.client.player.play(voice_id)

        voice_id = message.id
        message.session_ref = voice_id
        await self._send(self.client.send_start, voice_id)
        await self._send(self.client.send_data, voice_id, message.content)
        await self._send(self.client.send_end, voice_id)
        return False

    async def _send(self, send, *args) -> None:
        try:
            await send(*args)
        except SignalingError as e:
            logger.warning("voice_relay_send_failed", error=str(e))
