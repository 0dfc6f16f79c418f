"""One request/response cycle of the streaming chat client."""

from __future__ import annotations

import inspect
import re
import time
from collections.abc import AsyncIterable, Awaitable, Callable
from enum import Enum
from typing import Any, Protocol

import structlog

from .accumulator import EventAccumulator, EventHandler, SessionView
from .decoder import ChunkDecoder
from .exceptions import MalformedChunk, StreamReadFailure
from .models import ChatMessage, ChatRole, StreamEvent
from .observability import get_chat_metrics, get_tracer
from .thought_chain import ThoughtChainStore
from .typewriter import ScrollAnchor, TypewriterScheduler

logger = structlog.get_logger(__name__)
tracer = get_tracer(__name__)

FINAL_ANSWER_PREFIX = re.compile(r"^Final Answer:\s*", re.IGNORECASE)

ByteStream = AsyncIterable[bytes] | AsyncIterable[str]
RequestFn = Callable[[list[ChatMessage]], ByteStream | Awaitable[ByteStream | None] | None]


class TranscriptMirror(Protocol):
    def save(self, messages: list[ChatMessage]) -> None: ...


class MalformedChunkPolicy(str, Enum):
    """What to do with a chunk that is not a valid envelope."""

    DROP = "drop"
    LITERAL = "literal"


class SessionListener:
    """Observer of a chat session. Override the hooks you need."""

    async def on_stream_event(self, event: StreamEvent) -> None:
        """Called for every decoded event, before it is accumulated."""

    def on_message_updated(self, message: ChatMessage) -> None:
        """Called whenever the revealed answer text changes."""

    async def on_stream_end(self, message: ChatMessage) -> None:
        """Called once the response stream is exhausted."""

    async def on_turn_complete(self, message: ChatMessage) -> None:
        """Called after the assistant message has been finalized."""


def strip_final_answer(content: str) -> str:
    """Remove a leading ``Final Answer:`` artifact (any case)."""
    return FINAL_ANSWER_PREFIX.sub("", content, count=1)


class ChatSession:
    """Orchestrate submit and regenerate against a streaming request function.

    The session owns the transcript, the accumulation state and the
    typewriter of the running turn. Callers must not start a second turn
    while ``sending`` is true.
    """

    def __init__(
        self,
        request: RequestFn,
        messages: list[ChatMessage] | None = None,
        *,
        handler: EventHandler | None = None,
        mirror: TranscriptMirror | None = None,
        listeners: list[SessionListener] | None = None,
        scroll: ScrollAnchor | None = None,
        tick_interval: float | None = None,
        tick_step: int | None = None,
        reassemble: bool | None = None,
        submit_policy: MalformedChunkPolicy = MalformedChunkPolicy.DROP,
        regenerate_policy: MalformedChunkPolicy = MalformedChunkPolicy.LITERAL,
    ):
        self.request = request
        self.messages: list[ChatMessage] = messages if messages is not None else []
        self.mirror = mirror
        self.listeners: list[SessionListener] = list(listeners or [])
        self.scroll = scroll
        self.tick_interval = tick_interval
        self.tick_step = tick_step
        self.reassemble = reassemble
        self.submit_policy = submit_policy
        self.regenerate_policy = regenerate_policy

        self.thought_chain = ThoughtChainStore(self.messages, on_change=self._on_thought_change)
        self.accumulator = EventAccumulator(self.thought_chain, handler=handler)
        self.sending = False
        self.streaming = False
        self._typewriter: TypewriterScheduler | None = None
        self._metrics = get_chat_metrics()

    @property
    def view(self) -> SessionView:
        return SessionView(messages=self.messages, thought_chain=self.thought_chain)

    def add_listener(self, listener: SessionListener) -> None:
        self.listeners.append(listener)

    async def submit(self, text: str, files: list[str] | None = None) -> ChatMessage:
        """Send a new user message and stream the answer.

        Returns:
            The finalized assistant message

        Raises:
            StreamReadFailure: If the response stream breaks off
        """
        user_message = ChatMessage(role=ChatRole.USER, content=text.strip(), files=list(files or []))
        return await self._run_turn(user_message, self.submit_policy)

    async def regenerate(self, index: int) -> ChatMessage:
        """Ask again for the answer at ``index``.

        The user message preceding it is re-issued as a new transcript entry;
        the earlier attempt stays in the history.
        """
        if not 0 < index < len(self.messages):
            raise ValueError(f"No message to regenerate at index {index}")
        answer, question = self.messages[index], self.messages[index - 1]
        if answer.role != ChatRole.ASSISTANT or question.role != ChatRole.USER:
            raise ValueError(f"Message {index} is not an answer to a user message")

        user_message = ChatMessage(
            role=ChatRole.USER, content=question.content, files=list(question.files)
        )
        return await self._run_turn(user_message, self.regenerate_policy)

    async def _run_turn(self, user_message: ChatMessage, policy: MalformedChunkPolicy) -> ChatMessage:
        if self.sending:
            logger.warning("concurrent_submission", message_count=len(self.messages))

        history = [*self.messages, user_message]
        assistant = ChatMessage(role=ChatRole.ASSISTANT, loading=True)
        self.messages.extend([user_message, assistant])
        self._persist()

        if self._typewriter is not None:
            await self._typewriter.stop()
        typewriter = TypewriterScheduler(
            on_reveal=lambda text: self._reveal(assistant, text),
            interval=self.tick_interval,
            step=self.tick_step,
            scroll=self.scroll,
        )
        self._typewriter = typewriter
        decoder = ChunkDecoder(reassemble=self.reassemble)
        self.accumulator.reset()

        self.sending = True
        self.streaming = True
        started = time.perf_counter()
        outcome = "aborted"

        with tracer.start_as_current_span("chat.turn") as span:
            span.set_attribute("chat.history_length", len(history))
            span.set_attribute("chat.malformed_policy", policy.value)
            logger.info("chat_turn_started", message_id=assistant.id, history_length=len(history))

            try:
                stream = await self._open_stream(history)
                typewriter.start()

                if stream is None:
                    logger.warning("chat_response_empty", message_id=assistant.id)
                else:
                    await self._pump(stream, decoder, assistant, typewriter, policy)

                await self._flush(decoder, assistant, typewriter, policy)
                await self.accumulator.finish()
                await self._notify_end(assistant)

                typewriter.finish()
                await typewriter.when_caught_up()

                assistant.content = strip_final_answer(assistant.content)
                assistant.loading = False
                assistant.touch()
                outcome = "completed"
                span.set_attribute("chat.answer_length", len(assistant.content))
                logger.info(
                    "chat_turn_completed",
                    message_id=assistant.id,
                    answer_length=len(assistant.content),
                    thought_items=len(assistant.thought_chain),
                )
            except Exception as e:
                span.record_exception(e)
                logger.error("chat_turn_failed", message_id=assistant.id, error=str(e))
                raise
            finally:
                await typewriter.stop()
                if self._typewriter is typewriter:
                    self._typewriter = None
                assistant.loading = False
                self.sending = False
                self.streaming = False
                self._persist()
                self._metrics.turns.add(1, {"outcome": outcome})
                self._metrics.turn_duration.record((time.perf_counter() - started) * 1000)

        for listener in self.listeners:
            try:
                await listener.on_turn_complete(assistant)
            except Exception as e:
                logger.error("session_listener_failed", hook="on_turn_complete", error=str(e))
        return assistant

    async def _open_stream(self, history: list[ChatMessage]) -> Any:
        try:
            stream = self.request(history)
            if inspect.isawaitable(stream):
                stream = await stream
        except Exception as e:
            raise StreamReadFailure(f"Request failed: {e}") from e
        return stream

    async def _pump(
        self,
        stream: Any,
        decoder: ChunkDecoder,
        assistant: ChatMessage,
        typewriter: TypewriterScheduler,
        policy: MalformedChunkPolicy,
    ) -> None:
        iterator = aiter(stream)
        while True:
            try:
                raw = await anext(iterator)
            except StopAsyncIteration:
                return
            except Exception as e:
                raise StreamReadFailure(f"Stream read failed: {e}") from e

            try:
                for event in decoder.feed(raw):
                    await self._dispatch(event, assistant, typewriter)
            except MalformedChunk as e:
                self._on_malformed(e, typewriter, policy)

    async def _flush(
        self,
        decoder: ChunkDecoder,
        assistant: ChatMessage,
        typewriter: TypewriterScheduler,
        policy: MalformedChunkPolicy,
    ) -> None:
        try:
            for event in decoder.flush():
                await self._dispatch(event, assistant, typewriter)
        except MalformedChunk as e:
            self._on_malformed(e, typewriter, policy)

    async def _dispatch(
        self, event: StreamEvent, assistant: ChatMessage, typewriter: TypewriterScheduler
    ) -> None:
        for listener in self.listeners:
            try:
                await listener.on_stream_event(event)
            except Exception as e:
                logger.error("session_listener_failed", hook="on_stream_event", error=str(e))

        session_ref = event.metadata.get("messageSessionId")
        if session_ref and assistant.session_ref is None:
            assistant.session_ref = str(session_ref)

        if await self.accumulator.accept(event):
            return
        if event.content and not typewriter.push(event.content):
            self._metrics.duplicate_deltas.add(1)

    def _on_malformed(
        self, error: MalformedChunk, typewriter: TypewriterScheduler, policy: MalformedChunkPolicy
    ) -> None:
        self._metrics.malformed_chunks.add(1, {"policy": policy.value})
        if policy == MalformedChunkPolicy.LITERAL:
            logger.info("malformed_chunk_as_text", reason=error.reason, length=len(error.raw))
            typewriter.append_raw(error.raw)
        else:
            logger.warning("malformed_chunk_dropped", reason=error.reason, length=len(error.raw))

    async def _notify_end(self, assistant: ChatMessage) -> None:
        for listener in self.listeners:
            try:
                await listener.on_stream_end(assistant)
            except Exception as e:
                logger.error("session_listener_failed", hook="on_stream_end", error=str(e))

    def _reveal(self, assistant: ChatMessage, text: str) -> None:
        assistant.content = text
        assistant.touch()
        for listener in self.listeners:
            try:
                listener.on_message_updated(assistant)
            except Exception as e:
                logger.error("session_listener_failed", hook="on_message_updated", error=str(e))

    def _on_thought_change(self, message: ChatMessage) -> None:
        self._persist()

    def _persist(self) -> None:
        if self.mirror is not None:
            self.mirror.save(self.messages)
