"""Per-message thought chain bookkeeping."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any

import structlog

from .models import ChatMessage, ThoughtChainItem, ThoughtStatus

logger = structlog.get_logger(__name__)


class ThoughtChainStore:
    """Upsert thought chain entries on the latest assistant message.

    Entries are keyed by the server-issued event id. A repeated id updates
    the existing entry in place; a new id appends.
    """

    def __init__(
        self,
        messages: list[ChatMessage],
        on_change: Callable[[ChatMessage], None] | None = None,
    ):
        self.messages = messages
        self.on_change = on_change

    def last_assistant(self) -> ChatMessage | None:
        """Return the most recent assistant message, if any."""
        for message in reversed(self.messages):
            if message.is_assistant:
                return message
        return None

    def upsert(self, kind: str, data: dict[str, Any]) -> ThoughtChainItem | None:
        """Record progress of a side-channel event.

        Args:
            kind: Event kind (thinking, thought, toolCalling, callResult)
            data: Event payload with ``metadataMap`` and ``accumulatedContent``

        Returns:
            The created or updated item, or None when the event was dropped
        """
        metadata = data.get("metadataMap") or {}
        event_id = data.get("id") or metadata.get("id")
        if not event_id:
            logger.warning("thought_event_missing_id", kind=kind)
            return None

        message = self.last_assistant()
        if message is None:
            logger.warning("thought_event_without_assistant", kind=kind, event_id=event_id)
            return None

        key = str(event_id)
        title = metadata.get("chainTitle")
        content = data.get("accumulatedContent") or data.get("content") or ""

        item = self._find(message, key)
        if item is None:
            item = ThoughtChainItem(key=key, title=title, content=content)
            message.thought_chain.append(item)
            logger.debug("thought_item_added", kind=kind, key=key)
        else:
            item.title = title if title is not None else item.title
            item.content = content
            item.status = ThoughtStatus.PENDING

        message.touch()
        if self.on_change:
            self.on_change(message)
        return item

    def mark_done(self, keys: Iterable[str]) -> int:
        """Mark entries of the latest assistant message as done.

        Returns:
            Number of entries whose status changed
        """
        message = self.last_assistant()
        if message is None:
            return 0

        wanted = set(keys)
        changed = 0
        for item in message.thought_chain:
            if item.key in wanted and item.status != ThoughtStatus.DONE:
                item.status = ThoughtStatus.DONE
                changed += 1

        if changed:
            message.touch()
            if self.on_change:
                self.on_change(message)
        return changed

    @staticmethod
    def _find(message: ChatMessage, key: str) -> ThoughtChainItem | None:
        for item in message.thought_chain:
            if item.key == key:
                return item
        return None
