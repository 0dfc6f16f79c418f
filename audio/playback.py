"""Buffered streaming playback of synthesized speech.

A ``MediaSink`` accepts one append at a time. ``AudioBufferQueue`` serializes
appends onto the sink, and ``StreamPlayer`` manages the sink for the message
currently selected for playback.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import os
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Callable

import structlog

from chat.exceptions import AudioAppendFailure, SinkNotReady, SinkStateError
from chat.observability import get_chat_metrics

from .archive import VoiceArchive

logger = structlog.get_logger(__name__)


class MediaSink(ABC):
    """A streaming media buffer that forbids concurrent appends.

    ``ready`` is set once the sink has been opened. Sinks may report ready
    before they accept writes, so callers also check ``is_open`` and
    ``updating``.
    """

    def __init__(self):
        self.ready = asyncio.Event()

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """True while the sink accepts appends."""

    @property
    @abstractmethod
    def updating(self) -> bool:
        """True while an append is in flight."""

    @abstractmethod
    async def open(self) -> None: ...

    @abstractmethod
    async def append(self, data: bytes) -> None:
        """Append one chunk. Raises AudioAppendFailure if the sink rejects it."""

    @abstractmethod
    def abort(self) -> None:
        """Discard buffered media. Raises SinkStateError if not abortable."""

    @abstractmethod
    async def end_of_stream(self) -> None: ...

    @abstractmethod
    async def play(self) -> None: ...

    @abstractmethod
    def pause(self) -> None: ...


class AudioBufferQueue:
    """FIFO of binary chunks fed to a sink strictly one at a time.

    A sink that closes while chunks are pending takes them with it: the queue
    is cleared so ``join`` does not wait on audio that can no longer play.
    """

    def __init__(self, sink: MediaSink | None = None):
        self._queue: deque[bytes] = deque()
        self._sink = sink
        self._processing = False
        self._generation = 0
        self._idle = asyncio.Event()
        self._idle.set()
        self._tasks: set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def processing(self) -> bool:
        return self._processing

    def attach(self, sink: MediaSink | None) -> None:
        """Point the queue at ``sink`` and drain anything already queued."""
        self._sink = sink
        self.drain()

    def enqueue(self, chunk: bytes) -> None:
        self._queue.append(chunk)
        self._idle.clear()
        self.drain()

    def drain(self) -> None:
        """Hand the next chunk to the sink unless an append is in flight."""
        if self._processing or not self._queue:
            return
        sink = self._sink
        if sink is None or sink.updating:
            return
        if not sink.is_open:
            logger.warning("audio_sink_closed", dropped=len(self._queue))
            self.clear()
            return

        chunk = self._queue.popleft()
        self._processing = True
        task = asyncio.create_task(self._append(sink, chunk, self._generation))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def clear(self) -> None:
        """Drop queued chunks and forget any append in flight."""
        self._queue.clear()
        self._generation += 1
        self._processing = False
        self._idle.set()

    async def join(self) -> None:
        """Wait until every queued chunk has been appended or dropped."""
        await self._idle.wait()

    async def _append(self, sink: MediaSink, chunk: bytes, generation: int) -> None:
        try:
            await sink.append(chunk)
        except AudioAppendFailure as e:
            get_chat_metrics().append_failures.add(1)
            logger.error("audio_append_failed", size=len(chunk), error=str(e))
        except Exception as e:
            get_chat_metrics().append_failures.add(1)
            logger.exception("audio_append_crashed", size=len(chunk), error=str(e))
        finally:
            if generation == self._generation:
                self._processing = False
                self.drain()
                if not self._queue and not self._processing:
                    self._idle.set()


class StreamPlayer:
    """Play the live stream of one message, or replay an archived one."""

    def __init__(
        self,
        sink_factory: Callable[[], MediaSink],
        archive: VoiceArchive,
        ready_timeout: float | None = None,
        poll_interval: float = 0.01,
        on_state_change: Callable[[bool], None] | None = None,
    ):
        self.sink_factory = sink_factory
        self.archive = archive
        self.ready_timeout = (
            ready_timeout
            if ready_timeout is not None
            else float(os.getenv("AUDIO_READY_TIMEOUT", "5"))
        )
        self.poll_interval = poll_interval
        self.on_state_change = on_state_change

        self.queue = AudioBufferQueue()
        self.sink: MediaSink | None = None
        self.current_id: str | None = None
        self.playing = False
        self._opening: asyncio.Task | None = None
        self._releasing: set[asyncio.Task] = set()

    def start_stream(self, message_id: str) -> asyncio.Task:
        """Select ``message_id`` for live playback on a fresh sink.

        Chunks appended before the sink is ready wait in the queue.

        Returns:
            The task opening the sink; it resolves to False if the sink never
            became ready
        """
        self.stop()
        self.current_id = message_id
        sink = self.sink_factory()
        self.sink = sink
        self._opening = asyncio.create_task(self._open_live(sink, message_id))
        logger.info("audio_stream_started", message_id=message_id)
        return self._opening

    def append_audio_data(self, chunk: str) -> bool:
        """Queue one base64 chunk of the live stream.

        Returns:
            True if the chunk was queued
        """
        if self.current_id is None:
            return False
        data = _decode_chunk(chunk)
        if data is None:
            return False
        self.queue.enqueue(data)
        return True

    async def finish_stream(self, message_id: str) -> None:
        """Finalize the live sink once every queued chunk has been appended."""
        if message_id != self.current_id or self.sink is None:
            return
        sink = self.sink
        if self._opening is not None and not await self._opening:
            return

        await self.queue.join()
        if self.sink is not sink or not sink.is_open:
            return
        try:
            await sink.end_of_stream()
        except SinkStateError as e:
            logger.warning("audio_end_of_stream_failed", message_id=message_id, error=str(e))
            return
        logger.info("audio_stream_finished", message_id=message_id)

    async def play(self, message_id: str) -> bool:
        """Replay an archived message from its concatenated chunks.

        Returns:
            True if playback started
        """
        chunks = self.archive.get(message_id)
        if not chunks:
            logger.warning("audio_archive_empty", message_id=message_id)
            return False
        data = b"".join(part for part in map(_decode_chunk, chunks) if part is not None)

        self.stop()
        self.current_id = message_id
        sink = self.sink_factory()
        self.sink = sink
        if not await self._open(sink):
            return False
        if self.sink is not sink:
            return False

        try:
            await sink.append(data)
            await sink.end_of_stream()
            await sink.play()
        except (AudioAppendFailure, SinkStateError) as e:
            get_chat_metrics().append_failures.add(1)
            logger.error("audio_replay_failed", message_id=message_id, error=str(e))
            return False

        self._set_playing(True)
        logger.info("audio_replay_started", message_id=message_id, size=len(data))
        return True

    def stop(self) -> None:
        """Halt playback and release the sink. Safe in any state."""
        sink, self.sink = self.sink, None
        self.queue.clear()
        self.queue.attach(None)
        if self._opening is not None and not self._opening.done():
            self._opening.cancel()
        self._opening = None

        if sink is not None:
            self._release(sink)

        self.current_id = None
        self._set_playing(False)

    def _release(self, sink: MediaSink) -> None:
        try:
            sink.pause()
        except Exception as e:
            logger.warning("audio_pause_failed", error=str(e))
        if not sink.is_open:
            return
        if sink.updating:
            # Aborting mid-append is not allowed; abort once the append settles.
            task = asyncio.create_task(self._abort_when_idle(sink))
            self._releasing.add(task)
            task.add_done_callback(self._releasing.discard)
            return
        self._abort(sink)

    async def _abort_when_idle(self, sink: MediaSink) -> None:
        try:
            async with asyncio.timeout(self.ready_timeout):
                while sink.updating:
                    await asyncio.sleep(self.poll_interval)
        except TimeoutError:
            logger.warning("audio_abort_timed_out", timeout=self.ready_timeout)
            return
        if sink.is_open:
            self._abort(sink)

    @staticmethod
    def _abort(sink: MediaSink) -> None:
        try:
            sink.abort()
        except Exception as e:
            logger.warning("audio_abort_failed", error=str(e))

    async def _open_live(self, sink: MediaSink, message_id: str) -> bool:
        if not await self._open(sink):
            return False
        if self.sink is not sink:
            return False
        self.queue.attach(sink)
        await sink.play()
        self._set_playing(True)
        logger.debug("audio_sink_ready", message_id=message_id, queued=len(self.queue))
        return True

    async def _open(self, sink: MediaSink) -> bool:
        try:
            await sink.open()
        except SinkStateError as e:
            logger.error("audio_sink_open_failed", message_id=self.current_id, error=str(e))
            return False
        return await self._wait_ready(sink)

    async def _wait_ready(self, sink: MediaSink) -> bool:
        try:
            async with asyncio.timeout(self.ready_timeout):
                await sink.ready.wait()
                while not sink.is_open or sink.updating:
                    await asyncio.sleep(self.poll_interval)
        except TimeoutError:
            error = SinkNotReady(f"media sink not ready after {self.ready_timeout}s")
            logger.error("audio_sink_not_ready", message_id=self.current_id, error=str(error))
            return False
        return True

    def _set_playing(self, playing: bool) -> None:
        if playing == self.playing:
            return
        self.playing = playing
        if self.on_state_change:
            self.on_state_change(playing)


def _decode_chunk(chunk: str) -> bytes | None:
    try:
        return base64.b64decode(chunk, validate=True)
    except (binascii.Error, ValueError) as e:
        logger.warning("audio_chunk_undecodable", length=len(chunk), error=str(e))
        return None
