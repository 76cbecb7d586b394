"""Transport-level transcription errors."""

from typing import Optional


class TranscriptionError(Exception):
    """Base class for failures talking to a transcription backend."""

    is_retryable = False


class ConnectionFailed(TranscriptionError):
    is_retryable = True

    def __init__(self, underlying: Exception):
        super().__init__(f"Network error: {underlying}")
        self.underlying = underlying


class AuthenticationFailed(TranscriptionError):
    def __init__(self, reason: str):
        super().__init__(f"Authentication failed: {reason}")
        self.reason = reason


class HTTPError(TranscriptionError):
    def __init__(self, status_code: int, body: Optional[str] = None):
        super().__init__(f"HTTP {status_code}: {body or 'Unknown error'}")
        self.status_code = status_code
        self.body = body

    @property
    def is_retryable(self) -> bool:
        return self.status_code >= 500


class RateLimited(TranscriptionError):
    is_retryable = True

    def __init__(self, retry_after: Optional[float] = None):
        message = f"Rate limited, retry after {retry_after}s" if retry_after else "Rate limited"
        super().__init__(message)
        self.retry_after = retry_after


class InvalidResponse(TranscriptionError):
    def __init__(self, detail: str = "Invalid response from server"):
        super().__init__(detail)


class AudioTooLarge(TranscriptionError):
    def __init__(self, size: int, max_size: int):
        super().__init__(f"Audio too large ({size / 1_000_000:.1f}MB > {max_size / 1_000_000:.0f}MB limit)")
        self.size = size
        self.max_size = max_size


class TranscriptionCancelled(TranscriptionError):
    def __init__(self):
        super().__init__("Request cancelled")


class ProviderNotConfigured(TranscriptionError):
    def __init__(self, provider_id: Optional[str] = None):
        detail = f" '{provider_id}'" if provider_id else ""
        super().__init__(f"Transcription provider{detail} is not configured")
        self.provider_id = provider_id
