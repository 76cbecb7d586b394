"""Chunk-boundary and auto-end decisions driven by speech events."""

import time
import logging
import threading
from dataclasses import replace
from typing import Callable, Optional

from ..models.events import SpeechEvent
from .config import VADConfiguration, AutoEndConfiguration, MIN_AUTO_END_SILENCE

logger = logging.getLogger(__name__)


class SessionController:
    """Tracks speech timing for one recording session.

    All durations are measured with the injected clock, so tests can drive it
    without sleeping.
    """

    def __init__(self,
                 vad_config: Optional[VADConfiguration] = None,
                 auto_end_config: Optional[AutoEndConfiguration] = None,
                 max_chunk_duration: float = 30.0,
                 clock: Callable[[], float] = time.time):
        self.vad_config = vad_config or VADConfiguration.default()
        auto_end_config = auto_end_config or AutoEndConfiguration.default()
        if auto_end_config.enabled and auto_end_config.silence_duration < MIN_AUTO_END_SILENCE:
            auto_end_config = replace(auto_end_config, silence_duration=MIN_AUTO_END_SILENCE)
        self.auto_end_config = auto_end_config
        self.max_chunk_duration = max_chunk_duration
        self.clock = clock

        self.lock = threading.Lock()
        self.is_user_speaking = False
        self.has_spoken = False
        self.last_speech_end_time: Optional[float] = None
        self.chunk_start_time: Optional[float] = None
        self.session_start_time: Optional[float] = None

    def start_session(self) -> None:
        with self.lock:
            now = self.clock()
            self.session_start_time = now
            self.chunk_start_time = now
            self.has_spoken = False
            self.is_user_speaking = False
            self.last_speech_end_time = None
        cfg = self.auto_end_config
        logger.info(f"Session timing started: auto_end={cfg.enabled}, silence={cfg.silence_duration:.1f}s, "
                    f"min_session={cfg.min_session_duration:.1f}s, "
                    f"require_speech_first={cfg.require_speech_first}, "
                    f"no_speech_timeout={cfg.no_speech_timeout:.1f}s, max_chunk={self.max_chunk_duration:.1f}s")

    def on_speech_event(self, event: SpeechEvent) -> None:
        with self.lock:
            if event.is_start:
                self.is_user_speaking = True
                self.has_spoken = True
                if self.chunk_start_time is None:
                    self.chunk_start_time = self.clock()
            else:
                self.is_user_speaking = False
                self.last_speech_end_time = self.clock()
        logger.info(f"Speech {event.kind.value}: session={self.current_session_duration:.1f}s")

    def should_send_chunk(self) -> bool:
        """True at a natural pause once the chunk has reached its maximum duration."""
        with self.lock:
            if self.chunk_start_time is None:
                return False
            now = self.clock()
            duration = now - self.chunk_start_time

            if duration < self.max_chunk_duration:
                return False

            # Never cut in the middle of speech
            if self.is_user_speaking:
                return False

            if self.last_speech_end_time is not None:
                return now - self.last_speech_end_time >= self.vad_config.min_silence_after_speech

            logger.debug(f"Fallback chunk send: no speech end seen, duration={duration:.1f}s")
            return True

    def chunk_sent(self) -> None:
        with self.lock:
            self.chunk_start_time = self.clock()

    def should_auto_end_session(self) -> bool:
        cfg = self.auto_end_config
        if not cfg.enabled:
            return False

        with self.lock:
            now = self.clock()
            session_duration = now - self.session_start_time if self.session_start_time is not None else 0.0

            if (not self.has_spoken and cfg.no_speech_timeout > 0
                    and self.session_start_time is not None
                    and session_duration >= cfg.no_speech_timeout):
                logger.warning(f"Auto-end: no speech after {session_duration:.1f}s "
                               f"(timeout={cfg.no_speech_timeout:.1f}s)")
                return True

            if cfg.require_speech_first and not self.has_spoken:
                return False
            if self.is_user_speaking:
                return False
            if self.session_start_time is not None and session_duration < cfg.min_session_duration:
                return False

            if self.last_speech_end_time is not None:
                silence = now - self.last_speech_end_time
                if silence >= cfg.silence_duration:
                    logger.warning(f"Auto-end: {silence:.1f}s of silence "
                                   f"(required {cfg.silence_duration:.1f}s)")
                    return True
                return False

            required = cfg.silence_duration + cfg.min_session_duration
            if self.session_start_time is not None and session_duration >= required:
                logger.warning(f"Auto-end fallback: session={session_duration:.1f}s >= {required:.1f}s "
                               f"without a speech end")
                return True

        return False

    @property
    def current_chunk_duration(self) -> float:
        with self.lock:
            if self.chunk_start_time is None:
                return 0.0
            return self.clock() - self.chunk_start_time

    @property
    def current_session_duration(self) -> float:
        with self.lock:
            if self.session_start_time is None:
                return 0.0
            return self.clock() - self.session_start_time

    @property
    def current_silence_duration(self) -> Optional[float]:
        with self.lock:
            if self.is_user_speaking or self.last_speech_end_time is None:
                return None
            return self.clock() - self.last_speech_end_time

    def diagnostic_summary(self) -> str:
        silence = self.current_silence_duration
        silence_text = f"{silence:.1f}" if silence is not None else "none"
        return (f"session={self.current_session_duration:.1f}s chunk={self.current_chunk_duration:.1f}s "
                f"speaking={self.is_user_speaking} spoken={self.has_spoken} silence={silence_text}s")
