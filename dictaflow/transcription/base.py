"""Abstract base classes for transcription backends."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator
import logging

from ..models.audio import AudioChunk
from ..models.events import StreamEvent
from ..models.session import ProviderMode
from ..models.transcription import TranscriptionResult, StreamingSessionConfig

logger = logging.getLogger(__name__)

# Audio at or below this many bytes gets the base timeout (~15s of 16kHz PCM16)
BASE_TIMEOUT_DATA_SIZE = 480_000


def timeout_for_data_size(size_bytes: int, base_timeout: float = 10.0, max_timeout: float = 30.0) -> float:
    """Request timeout that grows linearly with payload size, capped at ``max_timeout``."""
    if size_bytes <= BASE_TIMEOUT_DATA_SIZE:
        return base_timeout
    scaled = base_timeout * size_bytes / BASE_TIMEOUT_DATA_SIZE
    return min(scaled, max_timeout)


class TranscriptionProvider(ABC):
    """Describes a backend: identity, capability and whether it can be used now."""

    provider_id: str = ""
    display_name: str = ""
    mode: ProviderMode = ProviderMode.BATCH

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        """True when credentials and settings are in place."""

    @property
    def provider_display_name(self) -> str:
        label = "Streaming" if self.mode is ProviderMode.STREAMING else "Batch"
        return f"{self.display_name} ({label})"

    def get_stats(self) -> Dict[str, Any]:
        return {"provider": self.provider_id, "mode": self.mode.value}


class AbstractTranscriptionBackend(TranscriptionProvider):
    """Chunked backend: one request per audio chunk."""

    mode = ProviderMode.BATCH

    def __init__(self, language: str = "en-US"):
        """Initialize backend with language preference."""
        self.language = language

    @abstractmethod
    def transcribe_chunk(self, chunk_id: str, chunk: AudioChunk) -> TranscriptionResult:
        """Transcribe an audio chunk and return result.

        Args:
            chunk_id: Identifier used in logs and on the result
            chunk: Audio to transcribe

        Returns:
            TranscriptionResult with transcription and metadata

        Raises:
            TranscriptionError: on any transport failure
        """
        pass

    @abstractmethod
    def initialize(self) -> bool:
        """Initialize backend resources and verify configuration.

        Returns:
            True if initialization successful, False otherwise
        """
        pass

    @abstractmethod
    def cleanup(self) -> None:
        """Clean up backend resources."""
        pass


class StreamingSession(ABC):
    """An open streaming connection.

    Audio goes in through ``send_audio``; results come out of ``events()``,
    which blocks and ends after a ``Closed`` event.
    """

    @abstractmethod
    def send_audio(self, audio_data: bytes) -> None:
        pass

    @abstractmethod
    def finalize(self) -> None:
        """Ask the backend to flush results for audio sent so far."""

    @abstractmethod
    def close(self) -> None:
        pass

    def keep_alive(self) -> None:
        pass

    @abstractmethod
    def events(self) -> Iterator[StreamEvent]:
        pass


class StreamingTranscriptionBackend(TranscriptionProvider):
    """Backend that transcribes a live audio stream."""

    mode = ProviderMode.STREAMING

    @abstractmethod
    def start_session(self, config: StreamingSessionConfig) -> StreamingSession:
        """Open a streaming session.

        Raises:
            TranscriptionError: when the connection cannot be established
        """
        pass

    def build_session_config(self) -> StreamingSessionConfig:
        return StreamingSessionConfig()

    def cleanup(self) -> None:
        pass
