"""Terminal rendering of a streaming chat turn."""

import sys
from typing import Any, TextIO

from chat.accumulator import EventHandler, SessionView
from chat.models import THOUGHT_KINDS, ChatMessage, HandlerResult
from chat.session import SessionListener, strip_final_answer

DIM = "\033[2m"
RESET = "\033[0m"
FINAL_ANSWER_MARKER = "final answer:"


class TerminalRenderer(SessionListener):
    """Print the revealed answer as it grows.

    Text that may still turn into a leading ``Final Answer:`` marker is held
    back, so the terminal shows the same answer the transcript keeps.
    """

    def __init__(self, out: TextIO | None = None):
        self.out = out or sys.stdout
        self._message_id: str | None = None
        self._shown = 0

    def on_message_updated(self, message: ChatMessage) -> None:
        if message.id != self._message_id:
            self._message_id = message.id
            self._shown = 0
            self.out.write("Assistant: ")
        self._write(_visible(message.content))

    async def on_turn_complete(self, message: ChatMessage) -> None:
        if self._message_id != message.id:
            self._shown = 0
            self.out.write("Assistant: ")
        self._write(message.content)
        self.out.write("\n\n")
        self.out.flush()
        self._message_id = None
        self._shown = 0

    def _write(self, text: str) -> None:
        if len(text) > self._shown:
            self.out.write(text[self._shown :])
            self.out.flush()
            self._shown = len(text)


def _visible(content: str) -> str:
    if FINAL_ANSWER_MARKER.startswith(content.lower()):
        return ""
    return strip_final_answer(content)


class ThoughtPanel(EventHandler):
    """Print each finished reasoning or tool step above the answer."""

    def __init__(self, out: TextIO | None = None):
        self.out = out or sys.stdout

    def on_complete(self, kind: str, data: dict[str, Any], view: SessionView):
        content = data.get("content", "").strip()
        if kind in THOUGHT_KINDS and content:
            self.out.write(f"{DIM}[{kind}] {content}{RESET}\n")
            self.out.flush()
        return HandlerResult()


def print_history(messages: list[ChatMessage]):
    """Print the transcript with its thought chains."""
    if not messages:
        print("\nNo messages in this conversation yet.\n")
        return

    print("\n=== Conversation History ===")
    for i, msg in enumerate(messages):
        timestamp = msg.created.isoformat()[:19]
        print(f"\n[{i}] [{timestamp}] {msg.role.value.capitalize()}:")
        for item in msg.thought_chain:
            title = item.title or item.key
            print(f"  {DIM}({item.status.value}) {title}: {item.content}{RESET}")
        print(msg.content)
    print()
