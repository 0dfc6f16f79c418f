"""Streaming chat client core: decoding, accumulation and reveal."""

from .accumulator import AccumulationState, EventAccumulator, EventHandler, SessionView
from .decoder import ChunkDecoder
from .exceptions import (
    AudioAppendFailure,
    AudioPermissionDenied,
    ChatApiError,
    CustomHandlerFailure,
    MalformedChunk,
    SignalingClosed,
    SignalingError,
    SinkNotReady,
    SinkStateError,
    StreamChatError,
    StreamReadFailure,
)
from .mirror import LocalTranscriptMirror
from .models import (
    ChatMessage,
    ChatRole,
    HandlerResult,
    StreamEvent,
    ThoughtChainItem,
    ThoughtStatus,
)
from .session import ChatSession, MalformedChunkPolicy, SessionListener
from .thought_chain import ThoughtChainStore
from .typewriter import ScrollAnchor, TypewriterScheduler

__all__ = [
    # State machine
    "AccumulationState",
    "AudioAppendFailure",
    "AudioPermissionDenied",
    "ChatApiError",
    "ChatMessage",
    "ChatRole",
    # Session
    "ChatSession",
    "ChunkDecoder",
    "CustomHandlerFailure",
    "EventAccumulator",
    "EventHandler",
    "HandlerResult",
    "LocalTranscriptMirror",
    # Errors
    "MalformedChunk",
    "MalformedChunkPolicy",
    "ScrollAnchor",
    "SessionListener",
    "SessionView",
    "SignalingClosed",
    "SignalingError",
    "SinkNotReady",
    "SinkStateError",
    "StreamChatError",
    "StreamEvent",
    "StreamReadFailure",
    "ThoughtChainItem",
    "ThoughtChainStore",
    "ThoughtStatus",
    "TypewriterScheduler",
]
