"""Voice output: audio signaling, archiving and streaming playback."""

from .archive import VoiceArchive
from .playback import AudioBufferQueue, MediaSink, StreamPlayer
from .relay import VoiceRelay
from .signaling import AudioSignalingClient, FrameType, SignalingFrame
from .sinks import FileSink, PipeSink

__all__ = [
    "AudioBufferQueue",
    "AudioSignalingClient",
    "FileSink",
    "FrameType",
    "MediaSink",
    "PipeSink",
    "SignalingFrame",
    "StreamPlayer",
    "VoiceArchive",
    "VoiceRelay",
]
