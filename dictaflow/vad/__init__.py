"""Voice activity detection and session timing."""

from .config import VADConfiguration, AutoEndConfiguration
from .platform import PlatformSupport
from .speech_model import SpeechModel, EnergySpeechModel
from .processor import (
    VADProcessor,
    DisabledVADProcessor,
    VADError,
    NotInitializedError,
    UnsupportedPlatformError,
    ProcessingFailedError,
    create_vad_processor,
)
from .session_controller import SessionController

__all__ = [
    "VADConfiguration",
    "AutoEndConfiguration",
    "PlatformSupport",
    "SpeechModel",
    "EnergySpeechModel",
    "VADProcessor",
    "DisabledVADProcessor",
    "VADError",
    "NotInitializedError",
    "UnsupportedPlatformError",
    "ProcessingFailedError",
    "create_vad_processor",
    "SessionController",
]
