"""Tests for the chat session orchestration."""

import asyncio
from unittest.mock import MagicMock

import pytest

from chat.exceptions import StreamReadFailure
from chat.models import ChatMessage, ChatRole, ThoughtStatus
from chat.session import MalformedChunkPolicy, SessionListener, strip_final_answer
from conftest import envelope, stream_of


class RecordingListener(SessionListener):
    def __init__(self):
        self.events = []
        self.updates = []
        self.ended = []
        self.completed = []

    async def on_stream_event(self, event):
        self.events.append(event)

    def on_message_updated(self, message):
        self.updates.append(message.content)

    async def on_stream_end(self, message):
        self.ended.append(message.id)

    async def on_turn_complete(self, message):
        self.completed.append(message.content)


@pytest.mark.asyncio
class TestSubmit:
    """Test suite for ChatSession.submit."""

    async def test_hello_hi_there(self, make_session):
        """Test two content chunks produce the concatenated answer."""
        session = make_session(stream_of(envelope(content="Hi"), envelope(content=" there")))

        answer = await session.submit("hello")

        assert answer.content == "Hi there"
        assert answer.loading is False
        assert [m.role for m in session.messages] == [ChatRole.USER, ChatRole.ASSISTANT]
        assert session.messages[0].content == "hello"
        assert session.sending is False
        assert session.streaming is False

    async def test_history_includes_new_user_message(self, make_session, sample_transcript):
        """Test the request sees prior messages plus the new question."""
        request = stream_of(envelope(content="ok"))
        session = make_session(request, sample_transcript)

        await session.submit("  next  ")

        assert [m.content for m in request.history] == ["hello", "Hi there", "next"]

    async def test_duplicate_delta_is_not_repeated(self, make_session):
        """Test a retransmitted tail is shown only once."""
        session = make_session(
            stream_of(envelope(content="Hi"), envelope(content="Hi"), envelope(content="!"))
        )

        answer = await session.submit("hello")

        assert answer.content == "Hi!"

    @pytest.mark.parametrize("prefix", ["Final Answer: ", "final answer:", "FINAL ANSWER:\n"])
    async def test_final_answer_prefix_stripped(self, make_session, prefix):
        """Test a leading Final Answer marker is removed in any case."""
        session = make_session(stream_of(envelope(content=prefix), envelope(content="42")))

        answer = await session.submit("question")

        assert answer.content == "42"

    async def test_thought_events_build_one_item(self, make_session):
        """Test two t1 events produce a single finished thought item."""
        session = make_session(
            stream_of(
                envelope("thinking", content="step1", metadataMap={"id": "t1"}),
                envelope("thinking", content="-done", metadataMap={"id": "t1"}),
                envelope(content="Answer"),
            )
        )

        answer = await session.submit("think")

        assert len(answer.thought_chain) == 1
        item = answer.thought_chain[0]
        assert item.key == "t1"
        assert item.content == "step1-done"
        assert item.status == ThoughtStatus.DONE
        assert answer.content == "Answer"

    async def test_malformed_chunk_dropped_on_submit(self, make_session):
        """Test undecodable reads are skipped when submitting."""
        session = make_session(stream_of(envelope(content="Hi"), b"garbage"))

        answer = await session.submit("hello")

        assert answer.content == "Hi"

    async def test_session_ref_taken_from_metadata(self, make_session):
        """Test the server's message session id is recorded once."""
        session = make_session(
            stream_of(
                envelope(content="a", metadataMap={"messageSessionId": "s1"}),
                envelope(content="b", metadataMap={"messageSessionId": "s2"}),
            )
        )

        answer = await session.submit("hello")

        assert answer.session_ref == "s1"

    async def test_listeners_see_whole_turn(self, make_session):
        """Test listeners get events, reveals, end and completion."""
        listener = RecordingListener()
        session = make_session(
            stream_of(envelope(content="Hi"), envelope(content=" there")), listeners=[listener]
        )

        answer = await session.submit("hello")

        assert [e.content for e in listener.events] == ["Hi", " there"]
        assert listener.updates[-1] == "Hi there"
        assert listener.ended == [answer.id]
        assert listener.completed == ["Hi there"]

    async def test_failing_listener_does_not_break_turn(self, make_session):
        """Test a raising listener is isolated from the turn."""

        class Broken(SessionListener):
            async def on_stream_event(self, event):
                raise RuntimeError("boom")

        session = make_session(stream_of(envelope(content="Hi")), listeners=[Broken()])

        answer = await session.submit("hello")

        assert answer.content == "Hi"

    async def test_read_failure_clears_flags_and_keeps_partial(self, make_session):
        """Test a broken stream aborts with its partial content retained."""

        async def request(history):
            yield envelope(content="partial")
            await asyncio.sleep(0.01)
            raise ConnectionError("reset by peer")

        session = make_session(request)

        with pytest.raises(StreamReadFailure):
            await session.submit("hello")

        answer = session.messages[-1]
        assert answer.loading is False
        assert session.sending is False
        assert session.streaming is False
        assert "partial".startswith(answer.content)

    async def test_request_error_is_read_failure(self, make_session):
        """Test a request that cannot be opened is reported the same way."""

        async def request(history):
            raise ConnectionError("refused")

        session = make_session(request)

        with pytest.raises(StreamReadFailure):
            await session.submit("hello")
        assert session.messages[-1].loading is False

    async def test_empty_response_finalizes(self, make_session):
        """Test a request returning no stream still completes the turn."""

        async def request(history):
            return None

        session = make_session(request)

        answer = await session.submit("hello")

        assert answer.content == ""
        assert answer.loading is False

    async def test_mirror_written_on_commit(self, make_session):
        """Test the transcript mirror is saved during and after the turn."""
        mirror = MagicMock()
        session = make_session(stream_of(envelope(content="Hi")), mirror=mirror)

        await session.submit("hello")

        assert mirror.save.call_count >= 2
        saved = mirror.save.call_args.args[0]
        assert saved[-1].content == "Hi"


@pytest.mark.asyncio
class TestRegenerate:
    """Test suite for ChatSession.regenerate."""

    async def test_regenerate_reissues_question(self, make_session, sample_transcript):
        """Test regeneration appends a new exchange for the same question."""
        request = stream_of(envelope(content="Hello again"))
        session = make_session(request, sample_transcript)

        answer = await session.regenerate(1)

        assert len(session.messages) == 4
        assert session.messages[2].content == "hello"
        assert session.messages[1].content == "Hi there"
        assert answer.content == "Hello again"
        assert request.history[-1].content == "hello"

    async def test_malformed_chunk_appended_verbatim(self, make_session, sample_transcript):
        """Test undecodable text is shown literally when regenerating."""
        session = make_session(
            stream_of(envelope(content="Hi "), b"plain text"), sample_transcript
        )

        answer = await session.regenerate(1)

        assert answer.content == "Hi plain text"

    async def test_policy_is_configurable(self, make_session, sample_transcript):
        """Test both paths can share one malformed-chunk policy."""
        session = make_session(
            stream_of(envelope(content="Hi"), b"plain"),
            sample_transcript,
            regenerate_policy=MalformedChunkPolicy.DROP,
        )

        answer = await session.regenerate(1)

        assert answer.content == "Hi"

    @pytest.mark.parametrize("index", [0, 2, -1])
    async def test_invalid_index(self, make_session, sample_transcript, index):
        """Test indices that are not an answer are rejected."""
        session = make_session(stream_of(), sample_transcript)

        with pytest.raises(ValueError):
            await session.regenerate(index)


class TestStripFinalAnswer:
    """Test suite for strip_final_answer."""

    def test_only_leading_marker_removed(self):
        """Test the marker is stripped only at the start."""
        assert strip_final_answer("Final Answer: x") == "x"
        assert strip_final_answer("x Final Answer: y") == "x Final Answer: y"

    def test_user_messages_untouched(self):
        """Test plain text passes through."""
        assert strip_final_answer(ChatMessage(role=ChatRole.USER, content="hi").content) == "hi"
