"""Local on-disk mirror of the transcript for unauthenticated sessions."""

from __future__ import annotations

import os
from pathlib import Path

import structlog
from pydantic import TypeAdapter, ValidationError

from .models import ChatMessage

logger = structlog.get_logger(__name__)

_transcript = TypeAdapter(list[ChatMessage])

DEFAULT_PATH = Path.home() / ".streamchat" / "local_chats.json"


class LocalTranscriptMirror:
    """Persist the whole transcript as JSON after every change."""

    def __init__(self, path: Path | str | None = None):
        self.path = Path(path or os.getenv("STREAMCHAT_LOCAL_CHATS") or DEFAULT_PATH)

    def save(self, messages: list[ChatMessage]) -> None:
        """Overwrite the mirror with the current transcript."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_bytes(_transcript.dump_json(messages, by_alias=True, indent=2))

    def load(self) -> list[ChatMessage]:
        """Load the mirrored transcript, or an empty one if unavailable."""
        if not self.path.exists():
            return []
        try:
            return _transcript.validate_json(self.path.read_bytes())
        except (OSError, ValidationError) as e:
            logger.warning("local_transcript_unreadable", path=str(self.path), error=str(e))
            return []

    def clear(self) -> None:
        """Delete the mirror file."""
        if self.path.exists():
            self.path.unlink()
