"""Transcription module for DictaFlow."""

from .base import (
    TranscriptionProvider,
    AbstractTranscriptionBackend,
    StreamingSession,
    StreamingTranscriptionBackend,
    timeout_for_data_size,
)
from .errors import (
    TranscriptionError,
    ConnectionFailed,
    AuthenticationFailed,
    HTTPError,
    RateLimited,
    InvalidResponse,
    AudioTooLarge,
    TranscriptionCancelled,
    ProviderNotConfigured,
)
from .queue_bridge import TranscriptionQueueBridge
from .rate_limiter import RateLimiter
from .dispatcher import ChunkDispatcher
from .providers import ProviderRegistry
from ..models.transcription import TranscriptionResult

__all__ = [
    "TranscriptionProvider",
    "AbstractTranscriptionBackend",
    "StreamingSession",
    "StreamingTranscriptionBackend",
    "timeout_for_data_size",
    "TranscriptionError",
    "ConnectionFailed",
    "AuthenticationFailed",
    "HTTPError",
    "RateLimited",
    "InvalidResponse",
    "AudioTooLarge",
    "TranscriptionCancelled",
    "ProviderNotConfigured",
    "TranscriptionQueueBridge",
    "RateLimiter",
    "ChunkDispatcher",
    "ProviderRegistry",
    "TranscriptionResult",
]
