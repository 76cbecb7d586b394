"""Threshold and timing configuration for voice activity detection and auto-end."""

from dataclasses import dataclass, replace


@dataclass(frozen=True)
class VADConfiguration:
    """Speech/silence decision thresholds.

    threshold: probability at or above which a batch counts as speech
    min_speech_duration: seconds of sustained speech before a ``started`` event
    min_silence_after_speech: seconds of sustained silence before an ``ended`` event
    """
    threshold: float = 0.5
    min_speech_duration: float = 0.25
    min_silence_after_speech: float = 1.0

    def __post_init__(self):
        if not 0.0 <= self.threshold <= 1.0:
            raise ValueError(f"VAD threshold must be within [0, 1], got {self.threshold}")
        if self.min_speech_duration < 0 or self.min_silence_after_speech < 0:
            raise ValueError("VAD durations must be non-negative")

    @classmethod
    def default(cls) -> "VADConfiguration":
        return cls()

    @classmethod
    def sensitive(cls) -> "VADConfiguration":
        """Picks up quiet speakers; trades off more false starts."""
        return cls(threshold=0.3)

    @classmethod
    def strict(cls) -> "VADConfiguration":
        """For noisy rooms."""
        return cls(threshold=0.7)

    @classmethod
    def preset(cls, name: str) -> "VADConfiguration":
        presets = {
            "default": cls.default,
            "sensitive": cls.sensitive,
            "strict": cls.strict,
        }
        try:
            return presets[name.lower()]()
        except KeyError:
            raise ValueError(f"Unknown VAD preset '{name}'. Choose from: {', '.join(presets)}")


# Shorter auto-end windows cut people off mid-thought.
MIN_AUTO_END_SILENCE = 3.0


@dataclass(frozen=True)
class AutoEndConfiguration:
    """When a recording session should end on its own."""
    enabled: bool = True
    silence_duration: float = 5.0
    min_session_duration: float = 2.0
    require_speech_first: bool = True
    no_speech_timeout: float = 10.0

    @property
    def effective_silence_duration(self) -> float:
        return max(self.silence_duration, MIN_AUTO_END_SILENCE)

    def with_silence(self, seconds: float) -> "AutoEndConfiguration":
        return replace(self, silence_duration=seconds)

    @classmethod
    def default(cls) -> "AutoEndConfiguration":
        return cls()

    @classmethod
    def quick(cls) -> "AutoEndConfiguration":
        return cls(silence_duration=3.0)

    @classmethod
    def relaxed(cls) -> "AutoEndConfiguration":
        return cls(silence_duration=10.0)

    @classmethod
    def disabled(cls) -> "AutoEndConfiguration":
        return cls(enabled=False)

    @classmethod
    def preset(cls, name: str) -> "AutoEndConfiguration":
        presets = {
            "default": cls.default,
            "quick": cls.quick,
            "relaxed": cls.relaxed,
            "disabled": cls.disabled,
        }
        try:
            return presets[name.lower()]()
        except KeyError:
            raise ValueError(f"Unknown auto-end preset '{name}'. Choose from: {', '.join(presets)}")
