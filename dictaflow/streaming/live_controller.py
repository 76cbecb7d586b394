"""Drives one streaming transcription session and reports what to type."""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple, Union

from ..models.audio import float_to_pcm16
from ..models.events import (
    StreamEvent,
    Interim,
    FinalResult,
    UtteranceEnd,
    SpeechStarted,
    Metadata,
    StreamError,
    Closed,
)
from ..models.transcription import StreamingSessionConfig
from ..transcription.base import StreamingSession, StreamingTranscriptionBackend

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TextUpdate:
    """Delete ``replacing_chars`` characters, then type ``text_to_type``.

    ``full_text`` is the whole current segment.
    """
    text_to_type: str
    replacing_chars: int
    is_final: bool
    full_text: str


@dataclass(frozen=True)
class UtteranceEnded:
    pass


@dataclass(frozen=True)
class SpeechResumed:
    pass


@dataclass(frozen=True)
class AutoEndRequested:
    silence_seconds: float


@dataclass(frozen=True)
class StreamFailed:
    error: Exception


@dataclass(frozen=True)
class SessionClosed:
    pass


StreamOutput = Union[TextUpdate, UtteranceEnded, SpeechResumed, AutoEndRequested, StreamFailed, SessionClosed]


def diff_from_end(old: str, new: str) -> Tuple[int, str]:
    """How to turn ``old`` into ``new`` by editing only the tail.

    Returns (characters to delete from the end of old, suffix to type).
    "Helo world" -> "Hello world" gives (7, "lo world").
    """
    common = 0
    for a, b in zip(old, new):
        if a != b:
            break
        common += 1
    return len(old) - common, new[common:]


class LiveStreamingController:
    """Turns streaming backend events into a single channel of outputs.

    Every output goes to ``sink``. On a stream error the session is closed,
    ``StreamFailed`` is emitted and ``on_error`` is called once; later events
    are ignored. After ``cancel()`` nothing is emitted at all.
    """

    def __init__(self,
                 sink: Callable[[StreamOutput], None],
                 auto_end_silence: float = 0.0,
                 finalize_grace_seconds: float = 2.0):
        self.sink = sink
        self.on_error: Optional[Callable[[Exception], None]] = None
        self.auto_end_silence = auto_end_silence
        self.finalize_grace_seconds = finalize_grace_seconds

        self.lock = threading.RLock()
        self.session: Optional[StreamingSession] = None
        self.is_active = False
        self._reader: Optional[threading.Thread] = None
        self._closed_event = threading.Event()
        self._silence_timer: Optional[threading.Timer] = None
        self._reset_session_state()

    def _reset_session_state(self) -> None:
        self._cancelled = False
        self._failed = False
        self._stopping = False
        self._has_speech = False
        self._last_interim_text = ""
        self._segments: List[str] = []

    @property
    def transcript(self) -> str:
        with self.lock:
            return " ".join(s for s in self._segments if s)

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def start(self, backend: StreamingTranscriptionBackend,
              config: Optional[StreamingSessionConfig] = None) -> bool:
        """Open a session on ``backend``. Returns False (after reporting the error) if it cannot."""
        with self.lock:
            if self.is_active:
                logger.warning("Already streaming")
                return False
            self._reset_session_state()
            self._closed_event.clear()

        config = config or backend.build_session_config()
        logger.info(f"Connecting to {backend.provider_display_name}...")
        try:
            session = backend.start_session(config)
        except Exception as e:
            logger.error(f"Failed to start streaming: {e}")
            self._report_error(e)
            return False

        with self.lock:
            self.session = session
            self.is_active = True
            self._reader = threading.Thread(target=self._read_events, args=(session,), daemon=True)
            self._reader.name = "LiveStreamingReader"
            self._reader.start()

        logger.info(f"Live streaming started: {backend.provider_display_name}, "
                    f"{config.sample_rate}Hz, {config.encoding}")
        return True

    def _read_events(self, session: StreamingSession) -> None:
        try:
            for event in session.events():
                self.handle_event(event)
                if self._cancelled or self._failed or isinstance(event, Closed):
                    break
        except Exception as e:
            logger.error(f"Streaming event reader failed: {e}", exc_info=True)
            self.handle_event(StreamError(e))
        finally:
            self._closed_event.set()

    def send_audio(self, samples) -> None:
        with self.lock:
            session = self.session if self.is_active else None
        if session is None:
            return
        try:
            session.send_audio(float_to_pcm16(samples))
        except Exception as e:
            logger.error(f"Failed to send audio: {e}")
            self.handle_event(StreamError(e))

    def handle_event(self, event: StreamEvent) -> None:
        """React to one backend event."""
        outputs: List[StreamOutput] = []
        error: Optional[Exception] = None
        session_to_close: Optional[StreamingSession] = None

        with self.lock:
            if self._cancelled or self._failed:
                return

            if isinstance(event, Interim):
                new_text = event.result.transcript
                if not new_text:
                    return
                self._has_speech = True
                self._cancel_silence_timer()
                to_delete, suffix = diff_from_end(self._last_interim_text, new_text)
                self._last_interim_text = new_text
                if to_delete or suffix:
                    outputs.append(TextUpdate(suffix, to_delete, False, new_text))

            elif isinstance(event, FinalResult):
                new_text = event.result.transcript
                previous_interim = self._last_interim_text
                if new_text:
                    self._has_speech = True
                    self._cancel_silence_timer()
                to_delete, suffix = diff_from_end(previous_interim, new_text)
                self._last_interim_text = ""
                if new_text:
                    self._segments.append(new_text)
                    outputs.append(TextUpdate(suffix, to_delete, True, new_text))
                elif previous_interim:
                    outputs.append(TextUpdate("", len(previous_interim), True, ""))
                if event.result.speech_final:
                    logger.info("speech_final detected, user stopped speaking")
                    outputs.append(UtteranceEnded())
                    self._start_silence_timer()

            elif isinstance(event, UtteranceEnd):
                logger.info("Utterance end, user stopped speaking")
                outputs.append(UtteranceEnded())
                self._start_silence_timer()

            elif isinstance(event, SpeechStarted):
                self._has_speech = True
                self._cancel_silence_timer()
                outputs.append(SpeechResumed())

            elif isinstance(event, StreamError):
                logger.error(f"Provider error: {event.error}")
                self._failed = True
                self.is_active = False
                self._cancel_silence_timer()
                session_to_close = self.session
                self.session = None
                error = event.error
                outputs.append(StreamFailed(event.error))

            elif isinstance(event, Closed):
                logger.info("Provider session closed")
                self._cancel_silence_timer()
                self._closed_event.set()
                if self.is_active and not self._stopping:
                    self.is_active = False
                    self.session = None
                    outputs.append(SessionClosed())

            elif isinstance(event, Metadata):
                logger.debug(f"Stream metadata: request_id={event.request_id}")

        if session_to_close is not None:
            self._close_quietly(session_to_close)
        for output in outputs:
            self._emit(output)
        if error is not None and self.on_error:
            self.on_error(error)

    def _emit(self, output: StreamOutput) -> None:
        if self._cancelled:
            return
        try:
            self.sink(output)
        except Exception as e:
            logger.error(f"Stream output sink failed on {type(output).__name__}: {e}", exc_info=True)

    def _report_error(self, error: Exception) -> None:
        with self.lock:
            self._failed = True
        self._emit(StreamFailed(error))
        if self.on_error:
            self.on_error(error)

    def _start_silence_timer(self) -> None:
        # Caller holds the lock.
        if self.auto_end_silence <= 0 or not self._has_speech:
            return
        self._cancel_silence_timer()
        timer = threading.Timer(self.auto_end_silence, self._on_silence_timeout)
        timer.daemon = True
        self._silence_timer = timer
        timer.start()

    def _cancel_silence_timer(self) -> None:
        if self._silence_timer is not None:
            self._silence_timer.cancel()
            self._silence_timer = None

    def _on_silence_timeout(self) -> None:
        with self.lock:
            if not self.is_active or self._cancelled or self._failed or self._silence_timer is None:
                return
            self._silence_timer = None
        logger.info(f"Silence auto-end: {self.auto_end_silence}s of silence after speech")
        self._emit(AutoEndRequested(self.auto_end_silence))

    def stop(self) -> str:
        """Finalize, give the backend a moment to send its last results, then close.

        Returns the committed transcript.
        """
        with self.lock:
            session = self.session
            if session is None or self._cancelled:
                return " ".join(self._segments)
            self.is_active = False
            self._stopping = True
            self._cancel_silence_timer()
            reader = self._reader

        logger.info("Stopping live streaming...")
        try:
            session.finalize()
        except Exception as e:
            logger.warning(f"Finalize failed: {e}")

        self._closed_event.wait(self.finalize_grace_seconds)
        self._close_quietly(session)
        if reader is not None and reader is not threading.current_thread():
            reader.join(timeout=1.0)

        with self.lock:
            self.session = None
            self._last_interim_text = ""
            transcript = " ".join(self._segments)
        logger.info("Live streaming stopped")
        return transcript

    def cancel(self) -> None:
        """Close immediately; nothing more is processed or emitted."""
        with self.lock:
            if self._cancelled:
                return
            self._cancelled = True
            self.is_active = False
            self._cancel_silence_timer()
            session = self.session
            self.session = None
            self._last_interim_text = ""
            self._segments = []

        if session is not None:
            self._close_quietly(session)
        logger.info("Live streaming cancelled")

    @staticmethod
    def _close_quietly(session: StreamingSession) -> None:
        try:
            session.close()
        except Exception as e:
            logger.warning(f"Error closing streaming session: {e}")
