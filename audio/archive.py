"""Per-message archive of received audio chunks."""

from __future__ import annotations

import os
from collections import OrderedDict

import structlog

logger = structlog.get_logger(__name__)


class VoiceArchive:
    """Ordered map of message id to its base64 audio chunks.

    Unbounded unless ``max_messages`` is set, in which case the least
    recently opened message is evicted first. The message most recently
    opened is never evicted.
    """

    def __init__(self, max_messages: int | None = None):
        if max_messages is None:
            env_limit = os.getenv("AUDIO_ARCHIVE_MAX_MESSAGES")
            max_messages = int(env_limit) if env_limit else None
        self.max_messages = max_messages
        self._chunks: OrderedDict[str, list[str]] = OrderedDict()

    def open(self, message_id: str) -> None:
        """Start an empty archive for ``message_id``, replacing any earlier one."""
        self._chunks.pop(message_id, None)
        self._chunks[message_id] = []
        self._evict()

    def append(self, message_id: str, chunk: str) -> None:
        """Archive one base64 chunk, opening the message if needed."""
        if message_id not in self._chunks:
            logger.debug("audio_archive_implicit_open", message_id=message_id)
            self.open(message_id)
        self._chunks[message_id].append(chunk)

    def get(self, message_id: str) -> list[str]:
        """Return a copy of the archived chunks, empty if unknown."""
        return list(self._chunks.get(message_id, ()))

    def discard(self, message_id: str) -> None:
        self._chunks.pop(message_id, None)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._chunks

    def __len__(self) -> int:
        return len(self._chunks)

    def _evict(self) -> None:
        if not self.max_messages:
            return
        while len(self._chunks) > max(self.max_messages, 1):
            evicted, _ = self._chunks.popitem(last=False)
            logger.info("audio_archive_evicted", message_id=evicted)
