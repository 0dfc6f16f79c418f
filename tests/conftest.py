"""Pytest configuration and shared fixtures."""

import asyncio
import json

import pytest

from audio.playback import MediaSink
from chat.exceptions import AudioAppendFailure, SinkStateError
from chat.models import ChatMessage, ChatRole
from chat.session import ChatSession


def envelope(event: str | None = None, **data) -> bytes:
    """Encode one response envelope the way the server writes it."""
    body = {"data": json.dumps(data, ensure_ascii=False)}
    if event is not None:
        body["event"] = event
    return json.dumps(body, ensure_ascii=False).encode()


def stream_of(*chunks):
    """Request function whose response yields ``chunks`` in order."""

    async def request(history):
        request.history = history
        for chunk in chunks:
            await asyncio.sleep(0)
            yield chunk

    request.history = None
    return request


class FakeSink(MediaSink):
    """In-memory sink that records appends and flags overlapping ones."""

    def __init__(self, append_delay: float = 0, fail_on: bytes | None = None, ready: bool = True):
        super().__init__()
        self.append_delay = append_delay
        self.fail_on = fail_on
        self.auto_ready = ready
        self.appended: list[bytes] = []
        self.overlaps = 0
        self.opened = False
        self.ended = False
        self.playing = False
        self.aborted = False
        self._open = False
        self._updating = False

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def updating(self) -> bool:
        return self._updating

    async def open(self) -> None:
        self.opened = True
        if self.auto_ready:
            self.make_ready()

    def make_ready(self) -> None:
        self._open = True
        self.ready.set()

    async def append(self, data: bytes) -> None:
        if self._updating:
            self.overlaps += 1
        self._updating = True
        try:
            await asyncio.sleep(self.append_delay)
            if data == self.fail_on:
                raise AudioAppendFailure("rejected")
            self.appended.append(data)
        finally:
            self._updating = False

    def abort(self) -> None:
        if not self._open:
            raise SinkStateError("not open")
        self.aborted = True
        self._open = False

    async def end_of_stream(self) -> None:
        if not self._open:
            raise SinkStateError("not open")
        self.ended = True
        self._open = False

    async def play(self) -> None:
        self.playing = True

    def pause(self) -> None:
        self.playing = False


@pytest.fixture
def fake_sink():
    """A single fake sink, also usable as its own factory."""
    return FakeSink()


@pytest.fixture
def sink_factory():
    """Factory that records every sink it creates."""
    created: list[FakeSink] = []

    def factory():
        sink = FakeSink()
        created.append(sink)
        return sink

    factory.created = created
    return factory


@pytest.fixture
def make_session():
    """Build a ChatSession with a fast typewriter."""

    def build(request, messages=None, **kwargs):
        kwargs.setdefault("tick_interval", 0.001)
        kwargs.setdefault("tick_step", 2)
        return ChatSession(request, messages, **kwargs)

    return build


@pytest.fixture
def sample_transcript():
    """A finished two-message exchange."""
    return [
        ChatMessage(role=ChatRole.USER, content="hello"),
        ChatMessage(role=ChatRole.ASSISTANT, content="Hi there"),
    ]
