"""Concrete media sinks for terminal playback."""

from __future__ import annotations

import asyncio
import os
import shlex
from pathlib import Path

import structlog

from chat.exceptions import AudioAppendFailure, SinkStateError

from .playback import MediaSink

logger = structlog.get_logger(__name__)

DEFAULT_PLAYER_COMMAND = "ffplay -nodisp -autoexit -loglevel quiet -"


class PipeSink(MediaSink):
    """Stream audio into the stdin of an external player process.

    A pipe cannot be resumed, so ``pause`` stops the player for good.
    """

    def __init__(self, command: str | None = None):
        super().__init__()
        self.command = shlex.split(command or os.getenv("AUDIO_PLAYER_COMMAND", DEFAULT_PLAYER_COMMAND))
        self._process: asyncio.subprocess.Process | None = None
        self._updating = False
        self._ended = False

    @property
    def is_open(self) -> bool:
        return (
            self._process is not None
            and self._process.returncode is None
            and not self._ended
        )

    @property
    def updating(self) -> bool:
        return self._updating

    async def open(self) -> None:
        try:
            self._process = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            raise SinkStateError(f"Cannot start player {self.command[0]!r}: {e}") from e
        logger.debug("audio_player_started", command=self.command[0], pid=self._process.pid)
        self.ready.set()

    async def append(self, data: bytes) -> None:
        if not self.is_open:
            raise AudioAppendFailure("player is not accepting audio")
        self._updating = True
        try:
            self._process.stdin.write(data)
            await self._process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise AudioAppendFailure(f"player closed its input: {e}") from e
        finally:
            self._updating = False

    def abort(self) -> None:
        if not self.is_open or self._updating:
            raise SinkStateError("player cannot be aborted in its current state")
        self._terminate()

    async def end_of_stream(self) -> None:
        if not self.is_open:
            raise SinkStateError("player input already closed")
        self._ended = True
        self._process.stdin.close()
        await self._process.stdin.wait_closed()

    async def play(self) -> None:
        """The player starts on its own as soon as input arrives."""

    def pause(self) -> None:
        if self._process is not None and self._process.returncode is None:
            self._terminate()

    def _terminate(self) -> None:
        try:
            self._process.terminate()
        except ProcessLookupError:
            logger.debug("audio_player_already_exited", pid=self._process.pid)
        self._ended = True


class FileSink(MediaSink):
    """Write the audio stream to a file instead of playing it."""

    def __init__(self, path: Path | str):
        super().__init__()
        self.path = Path(path)
        self._handle = None
        self._updating = False

    @property
    def is_open(self) -> bool:
        return self._handle is not None

    @property
    def updating(self) -> bool:
        return self._updating

    async def open(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._handle = await asyncio.to_thread(self.path.open, "wb")
        except OSError as e:
            raise SinkStateError(f"Cannot open {self.path}: {e}") from e
        self.ready.set()

    async def append(self, data: bytes) -> None:
        if self._handle is None:
            raise AudioAppendFailure(f"{self.path} is not open")
        self._updating = True
        try:
            await asyncio.to_thread(self._handle.write, data)
        except OSError as e:
            raise AudioAppendFailure(f"Cannot write {self.path}: {e}") from e
        finally:
            self._updating = False

    def abort(self) -> None:
        if self._handle is None or self._updating:
            raise SinkStateError(f"{self.path} cannot be aborted in its current state")
        self._handle.close()
        self._handle = None
        self.path.unlink(missing_ok=True)

    async def end_of_stream(self) -> None:
        if self._handle is None:
            raise SinkStateError(f"{self.path} is not open")
        handle, self._handle = self._handle, None
        await asyncio.to_thread(handle.close)
        logger.info("audio_saved", path=str(self.path))

    async def play(self) -> None:
        pass

    def pause(self) -> None:
        pass
