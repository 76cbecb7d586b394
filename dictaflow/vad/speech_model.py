"""Speech probability models used by the VAD processor."""

import math
from abc import ABC, abstractmethod

import numpy as np


class SpeechModel(ABC):
    """Maps a batch of float32 samples to a speech probability in [0, 1]."""

    @abstractmethod
    def speech_probability(self, samples: np.ndarray) -> float:
        pass

    def reset(self) -> None:
        """Drop any state carried between batches."""


class EnergySpeechModel(SpeechModel):
    """Loudness-based speech probability.

    RMS level in dBFS goes through a logistic curve centred on ``midpoint_db``.
    Digital silence maps to 0.
    """

    def __init__(self, midpoint_db: float = -40.0, slope_db: float = 3.0):
        self.midpoint_db = midpoint_db
        self.slope_db = slope_db

    def speech_probability(self, samples: np.ndarray) -> float:
        rms = rms_level(samples)
        if rms <= 1e-10:
            return 0.0
        level_db = 20.0 * math.log10(rms)
        exponent = -(level_db - self.midpoint_db) / self.slope_db
        # math.exp overflows past ~709
        if exponent > 700:
            return 0.0
        return 1.0 / (1.0 + math.exp(exponent))


def rms_level(samples: np.ndarray) -> float:
    if len(samples) == 0:
        return 0.0
    return float(np.sqrt(np.mean(np.square(samples, dtype=np.float64))))
