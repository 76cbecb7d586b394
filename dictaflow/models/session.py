"""Session-related data models."""

import random
import string
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class RecordingState(Enum):
    IDLE = "idle"
    RECORDING = "recording"
    PROCESSING_FINAL = "processing_final"
    CANCELLED = "cancelled"


class StopReason(Enum):
    HOTKEY = "hotkey"
    AUTO_END = "auto_end"
    ERROR = "error"
    UNKNOWN = "unknown"


class ProviderMode(Enum):
    BATCH = "batch"
    STREAMING = "streaming"


def generate_session_id() -> str:
    """Session ids look like 20240101_120000_ab12."""
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    suffix = ''.join(random.choices(string.ascii_lowercase + string.digits, k=4))
    return f"{timestamp}_{suffix}"


@dataclass
class Session:
    """One recording attempt."""
    session_id: str
    mode: ProviderMode
    state: RecordingState = RecordingState.RECORDING
    transcript: str = ""
    started_at: datetime = field(default_factory=datetime.now)
    stop_reason: Optional[StopReason] = None
    chunks_dispatched: int = 0
    chunks_failed: int = 0

    @property
    def duration_seconds(self) -> float:
        return (datetime.now() - self.started_at).total_seconds()

    def append_text(self, text: str) -> None:
        text = text.strip()
        if not text:
            return
        self.transcript = f"{self.transcript} {text}" if self.transcript else text
