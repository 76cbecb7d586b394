"""Thread-safe audio accumulator that is drained whole when a chunk is cut."""

import logging
import threading
from typing import List

import numpy as np

from ..models.audio import BufferSnapshot

logger = logging.getLogger(__name__)

# Headroom over the nominal maximum so a full-length recording is never clipped
CAPACITY_HEADROOM = 1.1


class AudioBuffer:
    """Accumulates float32 samples between chunk boundaries.

    ``append`` and ``take_all`` are serialized by a single lock, so a batch
    appended concurrently with a drain lands either in the drained snapshot or
    in the buffer afterwards, never both.
    """

    def __init__(self, sample_rate: int = 16000, max_duration_seconds: float = 3600.0):
        """Initialize audio buffer.

        Args:
            sample_rate: Audio sample rate
            max_duration_seconds: Longest recording the buffer will hold before
                                  dropping new frames
        """
        self.sample_rate = sample_rate
        self.max_samples = int(max_duration_seconds * sample_rate * CAPACITY_HEADROOM)

        self.lock = threading.Lock()
        self._batches: List[np.ndarray] = []
        self._sample_count = 0
        self._speech_sample_count = 0
        self._dropped_batches = 0

        logger.info(f"AudioBuffer initialized: {sample_rate}Hz, "
                    f"{self.max_samples} samples max")

    def append(self, frames, has_speech: bool) -> bool:
        """Add samples to the tail of the buffer.

        Returns False when the batch was dropped because the buffer is full.
        """
        samples = np.asarray(frames, dtype=np.float32).reshape(-1)
        if samples.size == 0:
            return True

        with self.lock:
            if self._sample_count + samples.size > self.max_samples:
                self._dropped_batches += 1
                logger.warning(f"AudioBuffer at capacity ({self._sample_count} samples), "
                               f"dropping {samples.size} samples")
                return False

            self._batches.append(samples)
            self._sample_count += samples.size
            if has_speech:
                self._speech_sample_count += samples.size

        return True

    def take_all(self) -> BufferSnapshot:
        """Atomically return everything held and leave the buffer empty."""
        with self.lock:
            if not self._batches:
                return BufferSnapshot(sample_rate=self.sample_rate)

            samples = np.concatenate(self._batches)
            speech_ratio = self._speech_sample_count / self._sample_count
            self._batches = []
            self._sample_count = 0
            self._speech_sample_count = 0

        logger.debug(f"Drained {len(samples)} samples ({len(samples) / self.sample_rate:.2f}s, "
                     f"speech ratio {speech_ratio:.2f})")
        return BufferSnapshot(samples=samples, speech_ratio=speech_ratio, sample_rate=self.sample_rate)

    def reset(self) -> None:
        with self.lock:
            self._batches = []
            self._sample_count = 0
            self._speech_sample_count = 0
            self._dropped_batches = 0

    @property
    def sample_count(self) -> int:
        with self.lock:
            return self._sample_count

    @property
    def duration(self) -> float:
        """Seconds of audio currently held."""
        return self.sample_count / self.sample_rate

    @property
    def speech_ratio(self) -> float:
        with self.lock:
            if self._sample_count == 0:
                return 0.0
            return self._speech_sample_count / self._sample_count

    @property
    def is_at_capacity(self) -> bool:
        with self.lock:
            return self._sample_count >= self.max_samples

    @property
    def dropped_batches(self) -> int:
        with self.lock:
            return self._dropped_batches
