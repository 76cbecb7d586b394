"""Audio-related data models."""

from dataclasses import dataclass, field

import numpy as np


def _empty_samples() -> np.ndarray:
    return np.zeros(0, dtype=np.float32)


def float_to_pcm16(samples: np.ndarray) -> bytes:
    """Convert float samples in [-1, 1] to little-endian 16-bit PCM."""
    clipped = np.clip(np.asarray(samples, dtype=np.float32), -1.0, 1.0)
    return (clipped * 32767).astype('<i2').tobytes()


def pcm16_to_float(audio_data: bytes) -> np.ndarray:
    """Convert 16-bit PCM bytes to float32 samples in [-1, 1]."""
    return np.frombuffer(audio_data, dtype='<i2').astype(np.float32) / 32768.0


@dataclass
class AudioStats:
    """Audio recording statistics."""
    is_recording: bool
    duration_seconds: float
    sample_rate: int
    chunk_size: int
    total_chunks: int


@dataclass
class AudioFrameBatch:
    """A batch of captured samples plus the capture-side speech hint."""
    samples: np.ndarray
    has_speech: bool = False
    sample_rate: int = 16000
    timestamp: float = 0.0  # Unix time when the batch was captured
    sequence_number: int = 0

    @property
    def duration_seconds(self) -> float:
        return len(self.samples) / self.sample_rate if self.sample_rate else 0.0


@dataclass
class BufferSnapshot:
    """Everything an AudioBuffer held at the moment it was drained."""
    samples: np.ndarray = field(default_factory=_empty_samples)
    speech_ratio: float = 0.0
    sample_rate: int = 16000

    @property
    def duration_seconds(self) -> float:
        return len(self.samples) / self.sample_rate if self.sample_rate else 0.0

    @property
    def is_empty(self) -> bool:
        return len(self.samples) == 0

    def __len__(self) -> int:
        return len(self.samples)


@dataclass
class AudioChunk:
    """A unit of audio handed to a transcription backend."""
    samples: np.ndarray
    sample_rate: int = 16000
    speech_ratio: float = 0.0
    is_final: bool = False

    @classmethod
    def from_snapshot(cls, snapshot: BufferSnapshot, is_final: bool = False) -> "AudioChunk":
        return cls(samples=snapshot.samples,
                   sample_rate=snapshot.sample_rate,
                   speech_ratio=snapshot.speech_ratio,
                   is_final=is_final)

    @property
    def duration_seconds(self) -> float:
        return len(self.samples) / self.sample_rate if self.sample_rate else 0.0

    def to_pcm16(self) -> bytes:
        return float_to_pcm16(self.samples)
