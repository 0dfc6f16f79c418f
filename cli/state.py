"""Objects shared by the CLI command handlers."""

from dataclasses import dataclass

import structlog

from audio import AudioSignalingClient, StreamPlayer, VoiceArchive, VoiceRelay
from chat import ChatMessage, ChatSession
from connectors.chat_api import ChatApiConnector

logger = structlog.get_logger(__name__)


@dataclass
class ChatContext:
    """Everything a REPL command may touch."""

    api: ChatApiConnector
    session: ChatSession
    archive: VoiceArchive
    player: StreamPlayer
    signaling: AudioSignalingClient | None = None
    relay: VoiceRelay | None = None
    recording: bool = False

    @property
    def logged_in(self) -> bool:
        return bool(self.api.token)

    @property
    def messages(self) -> list[ChatMessage]:
        return self.session.messages

    def pick_assistant(self, arg: str = "") -> tuple[int, ChatMessage] | None:
        """Resolve an optional transcript index to an assistant message.

        Without an index the latest assistant message is used.
        """
        if arg:
            try:
                index = int(arg)
            except ValueError:
                print(f"Error: '{arg}' is not a message number.\n")
                return None
            if not 0 <= index < len(self.messages) or not self.messages[index].is_assistant:
                print(f"Error: Message {index} is not an assistant answer. See /history.\n")
                return None
            return index, self.messages[index]

        for index in range(len(self.messages) - 1, -1, -1):
            if self.messages[index].is_assistant:
                return index, self.messages[index]
        print("Error: No assistant answer yet.\n")
        return None

    async def open_voice(self) -> VoiceRelay:
        """Connect the audio socket for the current conversation.

        Raises:
            SignalingError: If the socket cannot be opened
        """
        await self.close_voice()
        client = AudioSignalingClient(
            session_id=self.api.conversation_id,
            token=self.api.token,
            player=self.player,
            archive=self.archive,
        )
        await client.connect()

        self.signaling = client
        self.relay = VoiceRelay(client)
        self.session.add_listener(self.relay)
        return self.relay

    async def close_voice(self):
        """Disconnect the audio socket and stop playback."""
        self.player.stop()
        if self.relay is not None:
            self.relay.enabled = False
            if self.relay in self.session.listeners:
                self.session.listeners.remove(self.relay)
            self.relay = None
        if self.signaling is not None:
            await self.signaling.close()
            self.signaling = None

    async def close(self):
        await self.close_voice()
        await self.api.close()
        logger.debug("cli_context_closed")
