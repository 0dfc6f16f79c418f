"""Smooth character-by-character reveal of streamed answer text."""

from __future__ import annotations

import asyncio
import contextlib
import os
from collections.abc import Callable

import structlog

logger = structlog.get_logger(__name__)


class ScrollAnchor:
    """Follow the bottom of the transcript unless the reader scrolled away."""

    def __init__(self, scroll_to_bottom: Callable[[], None] | None = None, tolerance: int = 5):
        self.scroll_to_bottom = scroll_to_bottom
        self.tolerance = tolerance
        self.pinned = True

    def on_user_scroll(self, scroll_top: int, scroll_height: int, client_height: int) -> None:
        """Re-evaluate pinning after the reader scrolled."""
        self.pinned = scroll_height - scroll_top <= client_height + self.tolerance

    def follow(self) -> None:
        if self.pinned and self.scroll_to_bottom:
            self.scroll_to_bottom()


class TypewriterScheduler:
    """Reveal accumulated text at a fixed rate, independent of arrival rate.

    ``target`` is everything received so far, ``revealed`` is what has been
    shown. A recurring tick moves ``revealed`` toward ``target`` by ``step``
    characters, or all the way once the stream has finished.
    """

    def __init__(
        self,
        on_reveal: Callable[[str], None],
        interval: float | None = None,
        step: int | None = None,
        scroll: ScrollAnchor | None = None,
    ):
        self.on_reveal = on_reveal
        self.interval = (
            interval
            if interval is not None
            else int(os.getenv("TYPEWRITER_INTERVAL_MS", "50")) / 1000
        )
        self.step = step or int(os.getenv("TYPEWRITER_STEP", "2"))
        self.scroll = scroll

        self.target = ""
        self.revealed = ""
        self.finished = False
        self.duplicates = 0
        self._caught_up = asyncio.Event()
        self._caught_up.set()
        self._task: asyncio.Task | None = None

    def push(self, delta: str) -> bool:
        """Accept a content delta.

        A delta the target already ends with is a retransmitted tail and is
        discarded.

        Returns:
            True if the delta was appended
        """
        if not delta:
            return False
        if self.target.endswith(delta):
            self.duplicates += 1
            logger.warning("duplicate_delta_discarded", length=len(delta))
            return False
        self._grow(delta)
        return True

    def append_raw(self, text: str) -> None:
        """Append literal text without the duplicate check."""
        if text:
            self._grow(text)

    def _grow(self, text: str) -> None:
        self.target += text
        self._caught_up.clear()

    def tick(self) -> bool:
        """Advance the reveal by one step.

        Returns:
            True if the revealed text changed
        """
        changed = False
        if len(self.revealed) < len(self.target):
            if self.finished:
                self.revealed = self.target
            else:
                self.revealed = self.target[: len(self.revealed) + self.step]
            changed = True
            self.on_reveal(self.revealed)
            if self.scroll:
                self.scroll.follow()

        if self.revealed == self.target:
            self._caught_up.set()
        return changed

    def start(self) -> None:
        """Start ticking, replacing any tick task already running."""
        self.cancel()
        self._task = asyncio.create_task(self._run())

    def finish(self) -> None:
        """Mark the stream finished so the next tick reveals everything."""
        self.finished = True

    async def when_caught_up(self) -> None:
        """Wait until everything received so far has been revealed."""
        await self._caught_up.wait()

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def stop(self) -> None:
        """Stop ticking and wait for the tick task to exit."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.tick()
