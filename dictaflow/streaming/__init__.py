"""Live streaming transcription."""

from .live_controller import (
    LiveStreamingController,
    StreamOutput,
    TextUpdate,
    UtteranceEnded,
    SpeechResumed,
    AutoEndRequested,
    StreamFailed,
    SessionClosed,
    diff_from_end,
)

__all__ = [
    "LiveStreamingController",
    "StreamOutput",
    "TextUpdate",
    "UtteranceEnded",
    "SpeechResumed",
    "AutoEndRequested",
    "StreamFailed",
    "SessionClosed",
    "diff_from_end",
]
