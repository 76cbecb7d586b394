"""Usage counters for transcription activity."""

import logging
import threading
from dataclasses import dataclass, asdict
from typing import Any, Dict

logger = logging.getLogger(__name__)


@dataclass
class StatisticsSnapshot:
    api_calls: int = 0
    transcriptions: int = 0
    failed_chunks: int = 0
    words: int = 0
    characters: int = 0
    audio_seconds: float = 0.0
    sessions: int = 0


class Statistics:
    """Process-lifetime counters. Create one at startup and pass it around."""

    def __init__(self):
        self.lock = threading.Lock()
        self._data = StatisticsSnapshot()

    def record_api_call(self) -> None:
        with self.lock:
            self._data.api_calls += 1

    def record_transcription(self, text: str, audio_duration_seconds: float) -> None:
        with self.lock:
            self._data.transcriptions += 1
            self._data.words += len(text.split())
            self._data.characters += len(text)
            self._data.audio_seconds += audio_duration_seconds

    def record_failure(self) -> None:
        with self.lock:
            self._data.failed_chunks += 1

    def record_session(self) -> None:
        with self.lock:
            self._data.sessions += 1

    def snapshot(self) -> StatisticsSnapshot:
        with self.lock:
            return StatisticsSnapshot(**asdict(self._data))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self.snapshot())

    def reset(self) -> None:
        with self.lock:
            self._data = StatisticsSnapshot()
        logger.info("Statistics reset")
