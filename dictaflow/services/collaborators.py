"""Interfaces the dictation engine needs from the surrounding application."""

from enum import Enum
from typing import Callable, Optional, Protocol


class BannerStyle(Enum):
    INFO = "info"
    ERROR = "error"


class Indication(Enum):
    """Audible cues; exactly one plays per start, success, cancel or error."""
    START = "start"
    SUCCESS = "success"
    CANCEL = "cancel"
    ERROR = "error"


class TextInserter(Protocol):
    def capture_target(self) -> None:
        """Remember where text should go (the currently focused field)."""

    def insert(self, text: str, is_final: bool, replacing_chars: int = 0) -> None:
        """Delete ``replacing_chars`` characters, then type ``text`` into the captured target."""

    def cancel(self) -> None:
        """Drop any insertion that has not happened yet."""

    def finish(self) -> None:
        """The session is over; release the target."""


class BannerPresenter(Protocol):
    def show(self, message: str, style: BannerStyle) -> None:
        ...


class KeyInterceptor(Protocol):
    on_escape: Optional[Callable[[], None]]

    def start(self) -> None:
        ...

    def stop(self) -> None:
        ...


class SoundPlayer(Protocol):
    def play(self, indication: Indication) -> None:
        ...


class CaptureSource(Protocol):
    """Publishes AudioFrameBatch events on the configured pubsub topic while recording."""

    on_error: Optional[Callable[[Exception], None]]

    def start_recording(self) -> None:
        ...

    def stop_recording(self) -> None:
        ...
