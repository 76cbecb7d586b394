"""Event models for speech detection and streaming transcription."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from .transcription import TranscriptionResult


class SpeechEventKind(Enum):
    STARTED = "started"
    ENDED = "ended"


@dataclass(frozen=True)
class SpeechEvent:
    """A speech boundary reported by the VAD."""
    kind: SpeechEventKind
    at: float  # seconds; stream offset or clock time depending on the producer

    @classmethod
    def started(cls, at: float) -> "SpeechEvent":
        return cls(SpeechEventKind.STARTED, at)

    @classmethod
    def ended(cls, at: float) -> "SpeechEvent":
        return cls(SpeechEventKind.ENDED, at)

    @property
    def is_start(self) -> bool:
        return self.kind is SpeechEventKind.STARTED


@dataclass(frozen=True)
class VADResult:
    """Outcome of running the VAD over one frame batch."""
    probability: float
    is_speaking: bool
    event: Optional[SpeechEvent] = None
    processing_time_ms: float = 0.0


# Events delivered by a streaming transcription session.

@dataclass(frozen=True)
class Interim:
    result: TranscriptionResult


@dataclass(frozen=True)
class FinalResult:
    result: TranscriptionResult


@dataclass(frozen=True)
class UtteranceEnd:
    last_word_end: float = 0.0


@dataclass(frozen=True)
class SpeechStarted:
    timestamp: float = 0.0


@dataclass(frozen=True)
class Metadata:
    request_id: str = ""


@dataclass(frozen=True)
class StreamError:
    error: Exception


@dataclass(frozen=True)
class Closed:
    pass


StreamEvent = Union[Interim, FinalResult, UtteranceEnd, SpeechStarted, Metadata, StreamError, Closed]
