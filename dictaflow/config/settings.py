"""Read-only settings snapshot built from the YAML configuration."""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from ..vad.config import VADConfiguration, AutoEndConfiguration

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AudioSettings:
    sample_rate: int = 16000
    chunk_size: int = 1600
    channels: int = 1
    topic: str = "audio_frames"
    # RMS below this is treated as silence by the capture-side speech hint
    silence_threshold: float = 0.003
    max_buffer_seconds: float = 3600.0


@dataclass(frozen=True)
class ChunkingSettings:
    max_chunk_duration: float = 60.0
    min_chunk_duration: float = 0.25
    force_send_multiplier: float = 2.0
    skip_silent_chunks: bool = True
    min_speech_ratio: float = 0.03
    min_vad_speech_probability: float = 0.30


@dataclass(frozen=True)
class StreamingSettings:
    language: str = "en-US"
    interim_results: bool = True
    smart_format: bool = True
    endpointing_ms: int = 300
    model: Optional[str] = None
    auto_end_silence: float = 0.0
    finalize_grace_seconds: float = 2.0


@dataclass(frozen=True)
class CompletionSettings:
    """Post-stop wait for straggling chunk results.

    The first check runs ``timeout_seconds`` after stop. While chunks are still
    pending it re-checks every ``retry_interval_seconds``, at most ``max_retries``
    times, then gives up on the stragglers.
    """
    timeout_seconds: float = 1.0
    retry_interval_seconds: float = 2.0
    max_retries: int = 30


@dataclass(frozen=True)
class TranscriptionSettings:
    max_workers: int = 4
    max_retries: int = 3
    retry_base_delay: float = 1.5
    min_time_between_requests: float = 0.0
    timeout_seconds: float = 10.0
    max_timeout_seconds: float = 30.0
    max_audio_bytes: int = 25 * 1024 * 1024


@dataclass(frozen=True)
class DictationSettings:
    """Everything the engine reads from configuration. Never mutated at runtime."""
    provider: Optional[str] = None
    vad_enabled: bool = True
    vad: VADConfiguration = field(default_factory=VADConfiguration)
    auto_end: AutoEndConfiguration = field(default_factory=AutoEndConfiguration)
    audio: AudioSettings = field(default_factory=AudioSettings)
    chunking: ChunkingSettings = field(default_factory=ChunkingSettings)
    streaming: StreamingSettings = field(default_factory=StreamingSettings)
    completion: CompletionSettings = field(default_factory=CompletionSettings)
    transcription: TranscriptionSettings = field(default_factory=TranscriptionSettings)

    @classmethod
    def from_config(cls, config: Any) -> "DictationSettings":
        """Build settings from a ``DictaFlowConfig`` (anything with a dot-path ``get``)."""
        vad_preset = config.get('vad.preset', 'default')
        base_vad = VADConfiguration.preset(vad_preset)
        vad = VADConfiguration(
            threshold=float(config.get('vad.threshold', base_vad.threshold)),
            min_speech_duration=float(config.get('vad.min_speech_duration', base_vad.min_speech_duration)),
            min_silence_after_speech=float(config.get('vad.min_silence_after_speech',
                                                      base_vad.min_silence_after_speech)),
        )

        base_auto_end = AutoEndConfiguration.preset(config.get('auto_end.preset', 'default'))
        auto_end = AutoEndConfiguration(
            enabled=bool(config.get('auto_end.enabled', base_auto_end.enabled)),
            silence_duration=float(config.get('auto_end.silence_duration', base_auto_end.silence_duration)),
            min_session_duration=float(config.get('auto_end.min_session_duration',
                                                  base_auto_end.min_session_duration)),
            require_speech_first=bool(config.get('auto_end.require_speech_first',
                                                 base_auto_end.require_speech_first)),
            no_speech_timeout=float(config.get('auto_end.no_speech_timeout', base_auto_end.no_speech_timeout)),
        )

        audio = AudioSettings(
            sample_rate=int(config.get('audio.sample_rate', AudioSettings.sample_rate)),
            chunk_size=int(config.get('audio.chunk_size', AudioSettings.chunk_size)),
            channels=int(config.get('audio.channels', AudioSettings.channels)),
            topic=config.get('audio.topic', AudioSettings.topic),
            silence_threshold=float(config.get('audio.silence_threshold', AudioSettings.silence_threshold)),
            max_buffer_seconds=float(config.get('audio.max_buffer_seconds', AudioSettings.max_buffer_seconds)),
        )

        chunking = ChunkingSettings(
            max_chunk_duration=float(config.get('chunking.max_chunk_duration',
                                                ChunkingSettings.max_chunk_duration)),
            min_chunk_duration=float(config.get('chunking.min_chunk_duration',
                                                ChunkingSettings.min_chunk_duration)),
            force_send_multiplier=float(config.get('chunking.force_send_multiplier',
                                                   ChunkingSettings.force_send_multiplier)),
            skip_silent_chunks=bool(config.get('chunking.skip_silent_chunks', ChunkingSettings.skip_silent_chunks)),
            min_speech_ratio=float(config.get('chunking.min_speech_ratio', ChunkingSettings.min_speech_ratio)),
            min_vad_speech_probability=float(config.get('chunking.min_vad_speech_probability',
                                                        ChunkingSettings.min_vad_speech_probability)),
        )

        streaming = StreamingSettings(
            language=config.get('streaming.language', config.get('google_cloud.language', StreamingSettings.language)),
            interim_results=bool(config.get('streaming.interim_results', StreamingSettings.interim_results)),
            smart_format=bool(config.get('streaming.smart_format', StreamingSettings.smart_format)),
            endpointing_ms=int(config.get('streaming.endpointing_ms', StreamingSettings.endpointing_ms)),
            model=config.get('streaming.model', StreamingSettings.model),
            auto_end_silence=float(config.get('streaming.auto_end_silence', StreamingSettings.auto_end_silence)),
            finalize_grace_seconds=float(config.get('streaming.finalize_grace_seconds',
                                                    StreamingSettings.finalize_grace_seconds)),
        )

        completion = CompletionSettings(
            timeout_seconds=float(config.get('completion.timeout_seconds', CompletionSettings.timeout_seconds)),
            retry_interval_seconds=float(config.get('completion.retry_interval_seconds',
                                                    CompletionSettings.retry_interval_seconds)),
            max_retries=int(config.get('completion.max_retries', CompletionSettings.max_retries)),
        )

        transcription = TranscriptionSettings(
            max_workers=int(config.get('transcription.max_workers', TranscriptionSettings.max_workers)),
            max_retries=int(config.get('transcription.max_retries', TranscriptionSettings.max_retries)),
            retry_base_delay=float(config.get('transcription.retry_base_delay',
                                              TranscriptionSettings.retry_base_delay)),
            min_time_between_requests=float(config.get('transcription.min_time_between_requests',
                                                       TranscriptionSettings.min_time_between_requests)),
            timeout_seconds=float(config.get('transcription.timeout_seconds', TranscriptionSettings.timeout_seconds)),
            max_timeout_seconds=float(config.get('transcription.max_timeout_seconds',
                                                 TranscriptionSettings.max_timeout_seconds)),
            max_audio_bytes=int(config.get('transcription.max_audio_bytes', TranscriptionSettings.max_audio_bytes)),
        )

        settings = cls(
            provider=config.get('provider.active'),
            vad_enabled=bool(config.get('vad.enabled', True)),
            vad=vad,
            auto_end=auto_end,
            audio=audio,
            chunking=chunking,
            streaming=streaming,
            completion=completion,
            transcription=transcription,
        )
        logger.debug(f"Dictation settings: provider={settings.provider}, vad={settings.vad}, "
                     f"auto_end={settings.auto_end}, completion={settings.completion}")
        return settings
