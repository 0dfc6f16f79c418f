"""Event accumulation across chunk boundaries.

The accumulator tracks which logical event kind is currently open and the
text collected for it. Every chunk of an open kind fires a progress
transition; a kind switch or the end of the stream fires exactly one
completion transition for the kind being closed.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from typing import Any

import structlog

from .exceptions import CustomHandlerFailure
from .models import CONTENT_KIND, THOUGHT_KINDS, ChatMessage, HandlerResult, StreamEvent
from .thought_chain import ThoughtChainStore

logger = structlog.get_logger(__name__)


@dataclass
class AccumulationState:
    """Which event kind is open and what has been collected for it."""

    active_kind: str | None = None
    buffer: str = ""
    keys: list[str] = field(default_factory=list)

    def swap(self, kind: str | None) -> tuple[str | None, str, list[str]]:
        """Close the open kind and open ``kind`` with an empty buffer.

        Returns:
            The closed kind, its buffer and the thought keys touched while it was open
        """
        closed = (self.active_kind, self.buffer, self.keys)
        self.active_kind = kind
        self.buffer = ""
        self.keys = []
        return closed

    def reset(self) -> None:
        self.swap(None)


@dataclass
class SessionView:
    """What a pluggable handler may see of the running session."""

    messages: list[ChatMessage]
    thought_chain: ThoughtChainStore

    def last_assistant(self) -> ChatMessage | None:
        return self.thought_chain.last_assistant()


class EventHandler:
    """Strategy for intercepting side-channel events.

    Subclasses override either hook and return ``HandlerResult(handled=True)``
    to skip the default processing. Hooks may be plain or async methods.
    """

    def on_progress(self, kind: str, data: dict[str, Any], view: SessionView):
        return HandlerResult()

    def on_complete(self, kind: str, data: dict[str, Any], view: SessionView):
        return HandlerResult()


class EventAccumulator:
    """Drive begin/progress/complete transitions for streamed events."""

    def __init__(
        self,
        store: ThoughtChainStore,
        handler: EventHandler | None = None,
        state: AccumulationState | None = None,
    ):
        self.store = store
        self.handler = handler
        self.state = state or AccumulationState()
        self.failures: list[CustomHandlerFailure] = []

    @property
    def view(self) -> SessionView:
        return SessionView(messages=self.store.messages, thought_chain=self.store)

    def reset(self) -> None:
        """Forget the open kind at the start of a response."""
        self.state.reset()

    async def accept(self, event: StreamEvent) -> bool:
        """Feed one event through the state machine.

        Returns:
            True if the event was consumed as a side-channel event, False if it
            carries answer text for the typewriter
        """
        kind = event.kind
        if self.state.active_kind is not None and self.state.active_kind != kind:
            closed_kind, buffer, keys = self.state.swap(kind)
            await self._complete(closed_kind, buffer, keys)
        else:
            self.state.active_kind = kind

        if kind == CONTENT_KIND:
            return False

        self.state.buffer += event.content
        data = {
            **event.payload,
            "metadataMap": event.metadata,
            "accumulatedContent": self.state.buffer,
            "isComplete": False,
        }
        if await self._intercept("progress", kind, data):
            return True

        if kind in THOUGHT_KINDS:
            item = self.store.upsert(kind, data)
            if item is not None and item.key not in self.state.keys:
                self.state.keys.append(item.key)
        else:
            logger.debug("side_channel_event_ignored", kind=kind)
        return True

    async def finish(self) -> None:
        """Close the open kind at end of stream."""
        if self.state.active_kind is None:
            return
        closed_kind, buffer, keys = self.state.swap(None)
        await self._complete(closed_kind, buffer, keys)

    async def _complete(self, kind: str, buffer: str, keys: list[str]) -> None:
        data = {"content": buffer, "accumulatedContent": buffer, "isComplete": True}
        logger.debug("event_complete", kind=kind, length=len(buffer))
        if await self._intercept("complete", kind, data):
            return
        if kind in THOUGHT_KINDS and keys:
            self.store.mark_done(keys)

    async def _intercept(self, phase: str, kind: str, data: dict[str, Any]) -> bool:
        if self.handler is None:
            return False

        hook = self.handler.on_progress if phase == "progress" else self.handler.on_complete
        try:
            result = hook(kind, data, self.view)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            failure = CustomHandlerFailure(kind, phase, e)
            self.failures.append(failure)
            logger.error("custom_event_handler_failed", kind=kind, phase=phase, error=str(e))
            return False

        return bool(result and result.handled)
