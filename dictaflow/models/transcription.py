"""Transcription-related data models."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class TranscriptionResult:
    """Result of a transcription operation.

    Chunked backends always return ``is_final=True``. Streaming backends send
    interim results first and mark the last one per segment final;
    ``speech_final`` is set when the backend also thinks the speaker paused.
    """
    transcript: str
    is_final: bool = True
    speech_final: Optional[bool] = None
    confidence: float = 0.0
    start: float = 0.0
    duration: float = 0.0
    processing_time: float = 0.0
    service: str = ""
    language: str = "en-US"
    chunk_id: Optional[str] = None
    timestamp: Optional[datetime] = None

    @property
    def text(self) -> str:
        return self.transcript

    @property
    def is_empty(self) -> bool:
        return not self.transcript.strip()


@dataclass
class StreamingSessionConfig:
    """Parameters for opening a streaming transcription session."""
    language: str = "en-US"
    sample_rate: int = 16000
    encoding: str = "linear16"
    channels: int = 1
    interim_results: bool = True
    smart_format: bool = True
    endpointing_ms: int = 300
    model: Optional[str] = None
