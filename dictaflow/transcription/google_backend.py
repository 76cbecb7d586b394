"""Google Speech-to-Text transcription backends (chunked and streaming)."""

import time
import queue
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional, Dict, Any, Iterator

from .base import (
    AbstractTranscriptionBackend,
    StreamingSession,
    StreamingTranscriptionBackend,
    timeout_for_data_size,
)
from .errors import (
    TranscriptionError,
    AuthenticationFailed,
    ConnectionFailed,
    HTTPError,
    RateLimited,
    InvalidResponse,
)
from ..models.audio import AudioChunk
from ..models.events import StreamEvent, Interim, FinalResult, StreamError, Closed
from ..models.transcription import TranscriptionResult, StreamingSessionConfig

from google.cloud import speech
from google.api_core import exceptions as gax_exceptions
from google.oauth2 import service_account

logger = logging.getLogger(__name__)

SERVICE_NAME = "Google Speech-to-Text"


def map_google_error(error: Exception) -> TranscriptionError:
    """Translate google.api_core exceptions into the transcription error taxonomy."""
    if isinstance(error, TranscriptionError):
        return error
    if isinstance(error, (gax_exceptions.Unauthenticated, gax_exceptions.PermissionDenied)):
        return AuthenticationFailed(str(error))
    if isinstance(error, gax_exceptions.ResourceExhausted):
        return RateLimited()
    if isinstance(error, (gax_exceptions.DeadlineExceeded, gax_exceptions.ServiceUnavailable)):
        return ConnectionFailed(error)
    if isinstance(error, gax_exceptions.GoogleAPICallError):
        return HTTPError(error.code or 500, error.message)
    return ConnectionFailed(error)


def _load_credentials(credentials_path: str):
    logger.info(f"Loading Google credentials from: {credentials_path}")
    try:
        return service_account.Credentials.from_service_account_file(credentials_path)
    except (OSError, ValueError) as e:
        raise AuthenticationFailed(f"Cannot load credentials from {credentials_path}: {e}") from e


class GoogleSpeechBackend(AbstractTranscriptionBackend):
    """Google Speech-to-Text ``recognize`` API, one request per chunk."""

    provider_id = "google"
    display_name = "Google Speech"

    def __init__(self,
                 credentials_path: Optional[str] = None,
                 sample_rate: int = 16000,
                 language: str = "en-US",
                 use_enhanced: bool = True,
                 enable_automatic_punctuation: bool = True,
                 base_timeout: float = 10.0,
                 max_timeout: float = 30.0):
        """Initialize Google Speech backend.

        Args:
            credentials_path: Path to Google Cloud service account JSON file
            sample_rate: Sample rate of the audio that will be sent
            language: Language code (e.g., 'en-US', 'es-ES')
            use_enhanced: Whether to use enhanced model (costs more but better quality)
            enable_automatic_punctuation: Enable automatic punctuation
            base_timeout: Request timeout for short chunks, in seconds
            max_timeout: Upper bound for the size-scaled timeout
        """
        super().__init__(language)
        self.credentials_path = credentials_path
        self.sample_rate = sample_rate
        self.use_enhanced = use_enhanced
        self.enable_automatic_punctuation = enable_automatic_punctuation
        self.base_timeout = base_timeout
        self.max_timeout = max_timeout
        self.client = None
        self.project_id = None
        self.config = speech.RecognitionConfig(
            encoding=speech.RecognitionConfig.AudioEncoding.LINEAR16,
            sample_rate_hertz=sample_rate,
            language_code=self.language,
            use_enhanced=self.use_enhanced,
            enable_automatic_punctuation=self.enable_automatic_punctuation,
            enable_word_confidence=True,
            model="latest_short",
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.credentials_path) and Path(self.credentials_path).exists()

    def initialize(self) -> bool:
        """Initialize Google Speech client and verify credentials."""
        if self.client is not None:
            return True
        if not self.is_configured:
            logger.error("Google credentials are not configured")
            return False

        credentials = _load_credentials(self.credentials_path)
        self.client = speech.SpeechClient(credentials=credentials)
        self.project_id = credentials.project_id
        logger.info(f"Using Google Cloud project: {self.project_id}")
        logger.info("Google Speech-to-Text backend initialized successfully")
        return True

    def transcribe_chunk(self, chunk_id: str, chunk: AudioChunk) -> TranscriptionResult:
        """Transcribe audio chunk using Google Speech-to-Text."""
        if self.client is None and not self.initialize():
            raise AuthenticationFailed("Google Speech backend is not configured")

        audio_bytes = chunk.to_pcm16()
        timeout = timeout_for_data_size(len(audio_bytes), self.base_timeout, self.max_timeout)
        logger.debug(f"Chunk ID: {chunk_id}; {len(audio_bytes)} bytes; timeout {timeout:.1f}s; "
                     f"language {self.language}")

        start_time = time.time()
        audio = speech.RecognitionAudio(content=audio_bytes)
        try:
            response = self.client.recognize(config=self.config, audio=audio, timeout=timeout)
        except gax_exceptions.GoogleAPICallError as e:
            logger.error(f"Google STT call failed for chunk {chunk_id}: {e}")
            raise map_google_error(e) from e
        processing_time = time.time() - start_time

        if not response.results:
            logger.debug(f"No speech detected in chunk {chunk_id}")
            return TranscriptionResult(
                transcript="",
                confidence=0.0,
                processing_time=processing_time,
                timestamp=datetime.now(),
                service=SERVICE_NAME,
                language=self.language,
                chunk_id=chunk_id,
                duration=chunk.duration_seconds,
            )

        return self.__extract_transcription_result(response, processing_time, chunk_id, chunk)

    def __extract_transcription_result(self, response, processing_time: float, chunk_id: str,
                                       chunk: AudioChunk) -> TranscriptionResult:
        # Long chunks come back as several consecutive results
        parts = []
        confidences = []
        for recognition_result in response.results:
            if not recognition_result.alternatives:
                continue
            alternative = recognition_result.alternatives[0]
            parts.append(alternative.transcript.strip())
            confidences.append(alternative.confidence)

        if not parts and response.results:
            raise InvalidResponse(f"Recognition results without alternatives for chunk {chunk_id}")

        transcript = " ".join(p for p in parts if p)
        confidence = sum(confidences) / len(confidences) if confidences else 0.0
        logger.debug(f"Transcription success: '{transcript}' (confidence: {confidence:.2f}, "
                     f"processing_time: {processing_time:.3f}s)")
        return TranscriptionResult(
            transcript=transcript,
            confidence=confidence,
            processing_time=processing_time,
            timestamp=datetime.now(),
            service=SERVICE_NAME,
            language=self.language,
            chunk_id=chunk_id,
            duration=chunk.duration_seconds,
        )

    def cleanup(self) -> None:
        self.client = None

    def get_stats(self) -> Dict[str, Any]:
        stats = super().get_stats()
        stats.update({
            "service": SERVICE_NAME,
            "language": self.language,
            "use_enhanced": self.use_enhanced,
            "enable_punctuation": self.enable_automatic_punctuation,
        })
        return stats


class GoogleStreamingSession(StreamingSession):
    """One ``streaming_recognize`` call.

    Audio is fed through a request generator; responses are read on a
    background thread and turned into stream events.
    """

    def __init__(self, client, streaming_config):
        self.client = client
        self.streaming_config = streaming_config
        self._audio_queue: "queue.Queue[Optional[bytes]]" = queue.Queue()
        self._events: "queue.Queue[StreamEvent]" = queue.Queue()
        self._closed = threading.Event()
        self._half_closed = False
        self._responses = None

        self._reader = threading.Thread(target=self._read_responses, daemon=True)
        self._reader.name = "GoogleStreamingReader"
        self._reader.start()

    def _requests(self):
        while True:
            data = self._audio_queue.get()
            if data is None:
                return
            yield speech.StreamingRecognizeRequest(audio_content=data)

    def _read_responses(self) -> None:
        try:
            self._responses = self.client.streaming_recognize(self.streaming_config, self._requests())
            for response in self._responses:
                if self._closed.is_set():
                    break
                for result in response.results:
                    if not result.alternatives:
                        continue
                    alternative = result.alternatives[0]
                    transcription = TranscriptionResult(
                        transcript=alternative.transcript.strip(),
                        is_final=result.is_final,
                        speech_final=result.is_final,
                        confidence=alternative.confidence,
                        service=SERVICE_NAME,
                        language=result.language_code or self.streaming_config.config.language_code,
                        timestamp=datetime.now(),
                    )
                    self._events.put(FinalResult(transcription) if result.is_final else Interim(transcription))
        except Exception as e:
            if not self._closed.is_set():
                logger.error(f"Google streaming session failed: {e}")
                self._events.put(StreamError(map_google_error(e)))
        finally:
            self._events.put(Closed())

    def send_audio(self, audio_data: bytes) -> None:
        if self._closed.is_set() or self._half_closed:
            return
        self._audio_queue.put(audio_data)

    def finalize(self) -> None:
        """Half-close the request stream; Google answers with the final results."""
        if not self._half_closed:
            self._half_closed = True
            self._audio_queue.put(None)

    def close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        self.finalize()
        if self._responses is not None and hasattr(self._responses, "cancel"):
            self._responses.cancel()

    def events(self) -> Iterator[StreamEvent]:
        while True:
            event = self._events.get()
            yield event
            if isinstance(event, Closed):
                return


class GoogleStreamingBackend(StreamingTranscriptionBackend):
    """Google Speech-to-Text ``streaming_recognize`` with interim results."""

    provider_id = "google-streaming"
    display_name = "Google Speech"

    def __init__(self, credentials_path: Optional[str] = None, language: str = "en-US"):
        self.credentials_path = credentials_path
        self.language = language
        self.client = None

    @property
    def is_configured(self) -> bool:
        return bool(self.credentials_path) and Path(self.credentials_path).exists()

    def build_session_config(self) -> StreamingSessionConfig:
        return StreamingSessionConfig(language=self.language)

    def start_session(self, config: StreamingSessionConfig) -> StreamingSession:
        if not self.is_configured:
            raise AuthenticationFailed("Google credentials are not configured")
        if self.client is None:
            self.client = speech.SpeechClient(credentials=_load_credentials(self.credentials_path))

        recognition_config = speech.RecognitionConfig(
            encoding=speech.RecognitionConfig.AudioEncoding.LINEAR16,
            sample_rate_hertz=config.sample_rate,
            audio_channel_count=config.channels,
            language_code=config.language,
            enable_automatic_punctuation=config.smart_format,
            model=config.model or "latest_long",
        )
        streaming_config = speech.StreamingRecognitionConfig(
            config=recognition_config,
            interim_results=config.interim_results,
        )
        logger.info(f"Opening Google streaming session: {config.language}, {config.sample_rate}Hz")
        return GoogleStreamingSession(self.client, streaming_config)

    def cleanup(self) -> None:
        self.client = None
