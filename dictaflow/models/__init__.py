"""Data models for the DictaFlow application."""

from .transcription import TranscriptionResult, StreamingSessionConfig
from .audio import AudioStats, AudioFrameBatch, AudioChunk, BufferSnapshot
from .session import Session, RecordingState, StopReason, ProviderMode
from .events import (
    SpeechEvent,
    SpeechEventKind,
    VADResult,
    StreamEvent,
    Interim,
    FinalResult,
    UtteranceEnd,
    SpeechStarted,
    Metadata,
    StreamError,
    Closed,
)

__all__ = [
    "TranscriptionResult",
    "StreamingSessionConfig",
    "AudioStats",
    "AudioFrameBatch",
    "AudioChunk",
    "BufferSnapshot",
    "Session",
    "RecordingState",
    "StopReason",
    "ProviderMode",
    # Speech detection
    "SpeechEvent",
    "SpeechEventKind",
    "VADResult",
    # Streaming events
    "StreamEvent",
    "Interim",
    "FinalResult",
    "UtteranceEnd",
    "SpeechStarted",
    "Metadata",
    "StreamError",
    "Closed",
]
