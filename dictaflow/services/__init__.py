"""Services layer: session statistics and the collaborator interfaces.

``RecordingController`` lives in ``dictaflow.services.recording_controller``.
"""

from .statistics import Statistics, StatisticsSnapshot
from .collaborators import (
    BannerStyle,
    Indication,
    TextInserter,
    BannerPresenter,
    KeyInterceptor,
    SoundPlayer,
    CaptureSource,
)

__all__ = [
    "Statistics",
    "StatisticsSnapshot",
    "BannerStyle",
    "Indication",
    "TextInserter",
    "BannerPresenter",
    "KeyInterceptor",
    "SoundPlayer",
    "CaptureSource",
]
