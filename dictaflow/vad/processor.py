"""Voice activity detection with hysteresis."""

import time
import logging
import threading
from typing import Callable, Optional

import numpy as np

from ..models.events import SpeechEvent, VADResult
from .config import VADConfiguration
from .platform import PlatformSupport
from .speech_model import SpeechModel, EnergySpeechModel

logger = logging.getLogger(__name__)


class VADError(Exception):
    """Base class for VAD failures."""


class NotInitializedError(VADError):
    """A processing call was made before ``initialize()``."""

    def __init__(self):
        super().__init__("VAD processor used before initialize()")


class UnsupportedPlatformError(VADError):
    def __init__(self, reason: str):
        super().__init__(f"VAD unavailable: {reason}")
        self.reason = reason


class ProcessingFailedError(VADError):
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class VADProcessor:
    """Speech/silence state machine over a stream of frame batches.

    Each batch gets a speech probability from the speech model. A switch to
    speaking needs ``min_speech_duration`` seconds of consecutive batches at or
    above the threshold; a switch back needs ``min_silence_after_speech`` seconds
    below it. Durations are counted in samples, so the decision does not depend
    on how the capture source sizes its batches.

    Event timestamps are stream offsets in seconds (where the triggering batch
    starts). ``last_speech_start_time`` and ``last_speech_end_time`` use the
    injected wall clock, which ``current_silence_duration`` is measured against.
    """

    is_available = True

    def __init__(self,
                 config: Optional[VADConfiguration] = None,
                 speech_model: Optional[SpeechModel] = None,
                 sample_rate: int = 16000,
                 clock: Callable[[], float] = time.time):
        self.config = config or VADConfiguration.default()
        self.speech_model = speech_model or EnergySpeechModel()
        self.sample_rate = sample_rate
        self.clock = clock

        self.lock = threading.RLock()
        self.is_initialized = False

        self._min_speech_samples = int(round(self.config.min_speech_duration * sample_rate))
        self._min_silence_samples = int(round(self.config.min_silence_after_speech * sample_rate))

        self._reset_state()

    def _reset_state(self) -> None:
        self.is_speaking = False
        self.last_speech_start_time: Optional[float] = None
        self.last_speech_end_time: Optional[float] = None
        self._stream_offset_samples = 0
        self._speech_run_samples = 0
        self._silence_run_samples = 0
        self._cumulative_probability = 0.0
        self._processed_batches = 0
        self._speech_samples = 0

    def initialize(self) -> None:
        if self.is_initialized:
            return
        self.is_initialized = True
        logger.info(f"VAD initialized on {PlatformSupport.description()}: "
                    f"threshold={self.config.threshold}, "
                    f"min_speech={self.config.min_speech_duration}s, "
                    f"min_silence={self.config.min_silence_after_speech}s")

    def process(self, samples) -> VADResult:
        """Run the speech model over one batch and advance the state machine."""
        if not self.is_initialized:
            raise NotInitializedError()

        samples = np.asarray(samples, dtype=np.float32).reshape(-1)
        start_time = time.perf_counter()
        try:
            probability = float(self.speech_model.speech_probability(samples))
        except Exception as e:
            raise ProcessingFailedError(f"VAD processing failed: {e}") from e

        if not 0.0 <= probability <= 1.0:
            raise ProcessingFailedError(f"Speech model returned out-of-range probability {probability}")

        return self._advance(probability, len(samples), start_time)

    def process_probability(self, probability: float, sample_count: int) -> VADResult:
        """Advance the state machine with a probability computed elsewhere."""
        if not self.is_initialized:
            raise NotInitializedError()
        if not 0.0 <= probability <= 1.0:
            raise ProcessingFailedError(f"Probability {probability} outside [0, 1]")
        return self._advance(float(probability), int(sample_count), time.perf_counter())

    def _advance(self, probability: float, sample_count: int, start_time: float) -> VADResult:
        event = None
        with self.lock:
            batch_offset = self._stream_offset_samples / self.sample_rate
            self._stream_offset_samples += sample_count
            self._processed_batches += 1
            self._cumulative_probability += probability

            above = probability >= self.config.threshold
            if above:
                self._speech_samples += sample_count

            if not self.is_speaking:
                self._speech_run_samples = self._speech_run_samples + sample_count if above else 0
                if above and self._speech_run_samples >= self._min_speech_samples:
                    self.is_speaking = True
                    self._silence_run_samples = 0
                    self.last_speech_start_time = self.clock()
                    event = SpeechEvent.started(batch_offset)
            else:
                self._silence_run_samples = 0 if above else self._silence_run_samples + sample_count
                if not above and self._silence_run_samples >= self._min_silence_samples:
                    self.is_speaking = False
                    self._speech_run_samples = 0
                    self.last_speech_end_time = self.clock()
                    event = SpeechEvent.ended(batch_offset)

            is_speaking = self.is_speaking

        if event is not None:
            logger.debug(f"Speech {event.kind.value} at {event.at:.2f}s (p={probability:.2f})")

        return VADResult(
            probability=probability,
            is_speaking=is_speaking,
            event=event,
            processing_time_ms=(time.perf_counter() - start_time) * 1000,
        )

    def reset_chunk(self) -> None:
        """Start a new averaging window; speaking state is kept."""
        with self.lock:
            self._cumulative_probability = 0.0
            self._processed_batches = 0
            self._speech_samples = 0

    def reset_session(self) -> None:
        with self.lock:
            self._reset_state()
        self.speech_model.reset()

    @property
    def average_speech_probability(self) -> float:
        with self.lock:
            if self._processed_batches == 0:
                return 0.0
            return self._cumulative_probability / self._processed_batches

    @property
    def speech_seconds(self) -> float:
        """Seconds of audio at or above the threshold since the last chunk reset."""
        with self.lock:
            return self._speech_samples / self.sample_rate

    def has_significant_speech(self, threshold: float = 0.3, min_speech_seconds: float = 0.0) -> bool:
        return (self.average_speech_probability >= threshold
                and self.speech_seconds >= min_speech_seconds)

    @property
    def current_silence_duration(self) -> Optional[float]:
        with self.lock:
            if self.is_speaking or self.last_speech_end_time is None:
                return None
            return self.clock() - self.last_speech_end_time


class DisabledVADProcessor:
    """Stand-in used when VAD cannot run here.

    Processing calls raise ``UnsupportedPlatformError``; every query reports
    the initial state (not speaking, zero average, no timestamps).
    """

    is_available = False
    is_initialized = False
    is_speaking = False
    last_speech_start_time = None
    last_speech_end_time = None
    average_speech_probability = 0.0
    speech_seconds = 0.0
    current_silence_duration = None

    def __init__(self, reason: str):
        self.reason = reason
        logger.warning(f"VAD disabled: {reason}")

    def initialize(self) -> None:
        raise UnsupportedPlatformError(self.reason)

    def process(self, samples) -> VADResult:
        raise UnsupportedPlatformError(self.reason)

    def process_probability(self, probability: float, sample_count: int) -> VADResult:
        raise UnsupportedPlatformError(self.reason)

    def reset_chunk(self) -> None:
        pass

    def reset_session(self) -> None:
        pass

    def has_significant_speech(self, threshold: float = 0.3, min_speech_seconds: float = 0.0) -> bool:
        return False


def create_vad_processor(config: Optional[VADConfiguration] = None,
                         enabled: bool = True,
                         speech_model: Optional[SpeechModel] = None,
                         sample_rate: int = 16000,
                         clock: Callable[[], float] = time.time):
    """Return an initialized VADProcessor, or a DisabledVADProcessor when VAD cannot run."""
    if not enabled:
        return DisabledVADProcessor("VAD disabled in configuration")

    reason = PlatformSupport.unavailable_reason()
    if reason:
        return DisabledVADProcessor(reason)

    processor = VADProcessor(config=config, speech_model=speech_model, sample_rate=sample_rate, clock=clock)
    processor.initialize()
    return processor
