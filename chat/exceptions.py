"""Exception hierarchy shared by the chat and audio layers."""

from __future__ import annotations


class StreamChatError(Exception):
    """Base exception for streamchat errors."""


class MalformedChunk(StreamChatError):
    """Raised when a transport chunk is not a valid stream envelope.

    Attributes:
        raw: The undecodable text, kept so callers can fall back to showing it.
    """

    def __init__(self, raw: str, reason: str = "") -> None:
        super().__init__(reason or "malformed stream chunk")
        self.raw = raw
        self.reason = reason


class CustomHandlerFailure(StreamChatError):
    """Records a pluggable event handler that raised."""

    def __init__(self, kind: str, phase: str, error: BaseException) -> None:
        super().__init__(f"{phase} handler for {kind!r} failed: {error}")
        self.kind = kind
        self.phase = phase
        self.error = error


class StreamReadFailure(StreamChatError):
    """Raised when the response byte stream cannot be read to the end."""


class AudioPermissionDenied(StreamChatError):
    """Raised when a voice recording cannot be accessed."""


class AudioAppendFailure(StreamChatError):
    """Raised when a media sink rejects an appended chunk."""


class SinkStateError(StreamChatError):
    """Raised when a media sink operation is not valid in its current state."""


class SinkNotReady(StreamChatError):
    """Raised when a media sink does not become writable in time."""


class SignalingError(StreamChatError):
    """Raised when the audio signaling socket fails."""


class SignalingClosed(SignalingError):
    """Raised when sending on a signaling socket that is not open."""


class ChatApiError(StreamChatError):
    """Raised when the chat API answers with a non-zero envelope code."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(f"[{code}] {message}")
        self.code = code
        self.message = message
