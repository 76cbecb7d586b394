"""Audio buffering and publishing.

``AudioCapture`` lives in ``dictaflow.audio.capture`` and needs PyAudio.
"""

from .buffer import AudioBuffer
from .audio_pub import AudioPublisher

__all__ = [
    'AudioBuffer',
    'AudioPublisher'
]
