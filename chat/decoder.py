"""Decoding of raw response reads into typed stream events."""

from __future__ import annotations

import codecs
import json
import os
from collections.abc import Iterator

import structlog
from pydantic import ValidationError

from .exceptions import MalformedChunk
from .models import CONTENT_KIND, StreamEvent, WireEnvelope, WirePayload

logger = structlog.get_logger(__name__)

_json_decoder = json.JSONDecoder()


class ChunkDecoder:
    """Turn response reads into ``StreamEvent`` records.

    Each read is expected to hold exactly one JSON envelope
    ``{"event"?: str, "data": "<json string>"}``. With ``reassemble`` enabled
    the decoder instead buffers text until complete envelopes can be parsed,
    which tolerates transports that split or coalesce envelopes.
    """

    def __init__(self, reassemble: bool | None = None):
        if reassemble is None:
            reassemble = os.getenv("CHAT_REASSEMBLE_CHUNKS", "false").lower() == "true"
        self.reassemble = reassemble
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def reset(self) -> None:
        """Drop any buffered text and decoder state."""
        self._utf8.reset()
        self._buffer = ""

    def decode(self, chunk: str) -> StreamEvent | None:
        """Decode one complete envelope.

        Args:
            chunk: Text of a single transport read

        Returns:
            The decoded event, or None for a blank read

        Raises:
            MalformedChunk: If the text is not a valid envelope
        """
        if not chunk.strip():
            return None
        try:
            envelope = WireEnvelope.model_validate_json(chunk)
        except ValidationError as e:
            raise MalformedChunk(chunk, reason=f"invalid envelope: {e.error_count()} errors") from e
        return self._to_event(envelope, chunk)

    def feed(self, chunk: bytes | str) -> Iterator[StreamEvent]:
        """Yield every event contained in one transport read.

        Events decoded before a malformed section are yielded first, then
        MalformedChunk is raised for the remainder.
        """
        text = self._utf8.decode(chunk) if isinstance(chunk, bytes) else chunk

        if not self.reassemble:
            event = self.decode(text)
            if event is not None:
                yield event
            return

        self._buffer += text
        while True:
            self._buffer = self._buffer.lstrip()
            if not self._buffer:
                return
            if not self._buffer.startswith("{"):
                raw, self._buffer = self._buffer, ""
                raise MalformedChunk(raw, reason="text outside of an envelope")
            try:
                obj, end = _json_decoder.raw_decode(self._buffer)
            except json.JSONDecodeError as e:
                if _is_incomplete(e, self._buffer):
                    return
                raw, self._buffer = self._buffer, ""
                raise MalformedChunk(raw, reason=e.msg) from e

            raw, self._buffer = self._buffer[:end], self._buffer[end:]
            try:
                envelope = WireEnvelope.model_validate(obj)
            except ValidationError as e:
                raise MalformedChunk(raw, reason="invalid envelope") from e
            yield self._to_event(envelope, raw)

    def flush(self) -> Iterator[StreamEvent]:
        """Flush decoder state at end of stream."""
        tail = self._utf8.decode(b"", final=True)
        if tail:
            yield from self.feed(tail)
        if self.reassemble and self._buffer.strip():
            raw, self._buffer = self._buffer, ""
            raise MalformedChunk(raw, reason="truncated envelope at end of stream")

    @staticmethod
    def _to_event(envelope: WireEnvelope, raw: str) -> StreamEvent:
        try:
            payload = WirePayload.model_validate_json(envelope.data)
        except ValidationError as e:
            raise MalformedChunk(raw, reason="invalid data payload") from e

        data = payload.model_dump(by_alias=True, exclude_none=True)
        metadata = data.pop("metadataMap", None) or {}
        return StreamEvent(kind=envelope.event or CONTENT_KIND, payload=data, metadata=metadata)


def _is_incomplete(error: json.JSONDecodeError, text: str) -> bool:
    """Tell a truncated document apart from an invalid one."""
    return error.pos >= len(text) or error.msg.startswith("Unterminated string")
