"""Tests for terminal rendering."""

import io

import pytest

from chat.models import ChatMessage, ChatRole
from cli.display import TerminalRenderer
from conftest import envelope, stream_of


@pytest.fixture
def out():
    return io.StringIO()


class TestTerminalRenderer:
    """Test suite for TerminalRenderer."""

    def test_prints_only_new_text(self, out):
        """Test each update prints the revealed suffix once."""
        renderer = TerminalRenderer(out)
        message = ChatMessage(role=ChatRole.ASSISTANT)

        for text in ("Hi", "Hi th", "Hi there"):
            message.content = text
            renderer.on_message_updated(message)

        assert out.getvalue() == "Assistant: Hi there"

    def test_holds_back_possible_marker(self, out):
        """Test a prefix of the marker is shown once it turns out to be text."""
        renderer = TerminalRenderer(out)
        message = ChatMessage(role=ChatRole.ASSISTANT)

        message.content = "Fin"
        renderer.on_message_updated(message)
        assert out.getvalue() == "Assistant: "

        message.content = "Finland"
        renderer.on_message_updated(message)
        assert out.getvalue() == "Assistant: Finland"

    @pytest.mark.asyncio
    async def test_short_answer_is_flushed_on_completion(self, out):
        """Test an answer that never grew past a marker prefix is still printed."""
        renderer = TerminalRenderer(out)
        message = ChatMessage(role=ChatRole.ASSISTANT, content="Fi")

        renderer.on_message_updated(message)
        await renderer.on_turn_complete(message)

        assert out.getvalue() == "Assistant: Fi\n\n"

    @pytest.mark.asyncio
    async def test_final_answer_marker_never_printed(self, out, make_session):
        """Test the terminal shows the same answer the transcript keeps."""
        session = make_session(
            stream_of(envelope(content="Final Answer: "), envelope(content="Hi there")),
            listeners=[TerminalRenderer(out)],
        )

        answer = await session.submit("hello")

        assert answer.content == "Hi there"
        assert out.getvalue() == "Assistant: Hi there\n\n"
