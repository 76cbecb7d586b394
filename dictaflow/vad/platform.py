"""Which machines can run the VAD."""

import os
import platform
from typing import Optional

SUPPORTED_MACHINES = ("x86_64", "amd64", "arm64", "aarch64")
DISABLE_ENV_VAR = "DICTAFLOW_DISABLE_VAD"


class PlatformSupport:
    """Capability check consulted once when the VAD processor is created."""

    @staticmethod
    def machine() -> str:
        return platform.machine().lower()

    @classmethod
    def supports_vad(cls) -> bool:
        return cls.unavailable_reason() is None

    @classmethod
    def unavailable_reason(cls) -> Optional[str]:
        if os.environ.get(DISABLE_ENV_VAR, "").strip() in ("1", "true", "yes"):
            return f"VAD disabled by {DISABLE_ENV_VAR}"
        machine = cls.machine()
        if machine not in SUPPORTED_MACHINES:
            return f"VAD requires a 64-bit x86 or ARM machine (found '{machine or 'unknown'}')"
        return None

    @classmethod
    def description(cls) -> str:
        return f"{platform.system()} {cls.machine()}"
