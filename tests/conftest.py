"""Pytest configuration and fixtures for DictaFlow tests."""

import queue
import threading
import time
import logging
from typing import Callable, List, Optional

import numpy as np
import pytest
from unittest.mock import Mock, patch

from dictaflow.config.settings import (
    DictationSettings,
    AudioSettings,
    ChunkingSettings,
    CompletionSettings,
    StreamingSettings,
    TranscriptionSettings,
)
from dictaflow.models.audio import AudioChunk, AudioFrameBatch
from dictaflow.models.events import Closed, FinalResult, Interim
from dictaflow.models.transcription import TranscriptionResult, StreamingSessionConfig
from dictaflow.services.collaborators import BannerStyle, Indication
from dictaflow.transcription.base import (
    AbstractTranscriptionBackend,
    StreamingSession,
    StreamingTranscriptionBackend,
)
from dictaflow.transcription.providers import ProviderRegistry
from dictaflow.vad import AutoEndConfiguration, SpeechModel, VADConfiguration, VADProcessor


# Configure logging for tests
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

SAMPLE_RATE = 16000


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests of a single component")
    config.addinivalue_line("markers", "integration: tests that wire several components together")
    config.addinivalue_line("markers", "slow: tests that wait on real timers")


def wait_for(predicate: Callable[[], bool], timeout: float = 3.0, interval: float = 0.01) -> bool:
    """Poll until ``predicate()`` is true or the timeout passes."""
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def make_batch(amplitude: float, seconds: float = 0.1, has_speech: Optional[bool] = None,
               sequence_number: int = 0) -> AudioFrameBatch:
    samples = np.full(int(seconds * SAMPLE_RATE), amplitude, dtype=np.float32)
    return AudioFrameBatch(
        samples=samples,
        has_speech=amplitude > 0.003 if has_speech is None else has_speech,
        sample_rate=SAMPLE_RATE,
        timestamp=time.time(),
        sequence_number=sequence_number,
    )


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class AmplitudeSpeechModel(SpeechModel):
    """Speech probability is the peak absolute sample value, so tests pick it directly."""

    def __init__(self):
        self.calls = 0
        self.fail_next = False

    def speech_probability(self, samples) -> float:
        self.calls += 1
        if self.fail_next:
            self.fail_next = False
            raise RuntimeError("model hiccup")
        if len(samples) == 0:
            return 0.0
        return float(min(1.0, np.max(np.abs(samples))))

    def reset(self) -> None:
        pass


class StubBatchBackend(AbstractTranscriptionBackend):
    """Chunked backend driven by a per-call responder.

    ``responder(chunk_id, chunk)`` returns the text or raises. With
    ``gate`` set, every call blocks until the gate opens.
    """

    provider_id = "stub"
    display_name = "Stub"

    def __init__(self, responder: Optional[Callable[[str, AudioChunk], str]] = None,
                 configured: bool = True):
        super().__init__()
        self.responder = responder or (lambda chunk_id, chunk: f"text {chunk_id.rsplit('.', 1)[-1]}")
        self.configured = configured
        self.gate: Optional[threading.Event] = None
        self.lock = threading.Lock()
        self.calls: List[str] = []
        self.chunks: List[AudioChunk] = []

    @property
    def is_configured(self) -> bool:
        return self.configured

    def transcribe_chunk(self, chunk_id: str, chunk: AudioChunk) -> TranscriptionResult:
        with self.lock:
            self.calls.append(chunk_id)
            self.chunks.append(chunk)
        if self.gate is not None:
            self.gate.wait(5.0)
        return TranscriptionResult(transcript=self.responder(chunk_id, chunk), chunk_id=chunk_id,
                                   service="stub")

    def initialize(self) -> bool:
        return True

    def cleanup(self) -> None:
        pass


class FakeStreamingSession(StreamingSession):
    """In-memory streaming session; tests push events with ``emit``."""

    def __init__(self, final_on_finalize: Optional[str] = None):
        self.events_queue: "queue.Queue" = queue.Queue()
        self.sent: List[bytes] = []
        self.finalized = False
        self.closed = False
        self.final_on_finalize = final_on_finalize

    def emit(self, event) -> None:
        self.events_queue.put(event)

    def emit_interim(self, text: str) -> None:
        self.emit(Interim(TranscriptionResult(transcript=text, is_final=False)))

    def emit_final(self, text: str, speech_final: bool = False) -> None:
        self.emit(FinalResult(TranscriptionResult(transcript=text, is_final=True, speech_final=speech_final)))

    def send_audio(self, audio_data: bytes) -> None:
        if self.closed:
            raise ConnectionError("session closed")
        self.sent.append(audio_data)

    def finalize(self) -> None:
        self.finalized = True
        if self.final_on_finalize is not None:
            self.emit_final(self.final_on_finalize, speech_final=True)
        self.emit(Closed())

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.emit(Closed())

    def events(self):
        while True:
            event = self.events_queue.get()
            yield event
            if isinstance(event, Closed):
                return


class StubStreamingBackend(StreamingTranscriptionBackend):
    provider_id = "stub-streaming"
    display_name = "Stub"

    def __init__(self, configured: bool = True, fail_with: Optional[Exception] = None):
        self.configured = configured
        self.fail_with = fail_with
        self.sessions: List[FakeStreamingSession] = []
        self.configs: List[StreamingSessionConfig] = []
        self.final_on_finalize: Optional[str] = None

    @property
    def is_configured(self) -> bool:
        return self.configured

    def start_session(self, config: StreamingSessionConfig) -> StreamingSession:
        if self.fail_with is not None:
            raise self.fail_with
        self.configs.append(config)
        session = FakeStreamingSession(self.final_on_finalize)
        self.sessions.append(session)
        return session

    @property
    def session(self) -> FakeStreamingSession:
        return self.sessions[-1]


class SpyTextInserter:
    def __init__(self):
        self.lock = threading.Lock()
        self.inserts = []
        self.captures = 0
        self.cancels = 0
        self.finishes = 0

    def capture_target(self) -> None:
        self.captures += 1

    def insert(self, text: str, is_final: bool, replacing_chars: int = 0) -> None:
        with self.lock:
            self.inserts.append((text, is_final, replacing_chars))

    def cancel(self) -> None:
        self.cancels += 1

    def finish(self) -> None:
        self.finishes += 1

    @property
    def typed(self) -> str:
        """What the target field would contain after applying every insert."""
        document = ""
        with self.lock:
            for text, _, replacing in self.inserts:
                if replacing:
                    document = document[:-replacing] if replacing <= len(document) else ""
                document += text
        return document


class SpyBanner:
    def __init__(self):
        self.shown = []

    def show(self, message: str, style: BannerStyle) -> None:
        self.shown.append((message, style))

    def count(self, style: BannerStyle) -> int:
        return sum(1 for _, s in self.shown if s is style)


class SpySoundPlayer:
    def __init__(self):
        self.played: List[Indication] = []

    def play(self, indication: Indication) -> None:
        self.played.append(indication)

    def count(self, indication: Indication) -> int:
        return self.played.count(indication)


class SpyKeyInterceptor:
    def __init__(self):
        self.on_escape = None
        self.active = False
        self.starts = 0
        self.stops = 0

    def start(self) -> None:
        self.active = True
        self.starts += 1

    def stop(self) -> None:
        self.active = False
        self.stops += 1

    def press_escape(self) -> None:
        if self.active and self.on_escape:
            self.on_escape()


class SpyCaptureSource:
    def __init__(self):
        self.recording = False
        self.starts = 0
        self.stops = 0
        self.on_error = None

    def start_recording(self) -> None:
        self.recording = True
        self.starts += 1

    def stop_recording(self) -> None:
        self.recording = False
        self.stops += 1

    def fail(self, error: Exception) -> None:
        """The device went away: stop and report, as a capture thread would."""
        self.recording = False
        if self.on_error is not None:
            self.on_error(error)


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def speech_model():
    return AmplitudeSpeechModel()


@pytest.fixture
def vad_processor(speech_model, fake_clock):
    """Initialized VAD: 0.2s of speech to start, 0.5s of silence to end."""
    processor = VADProcessor(
        config=VADConfiguration(threshold=0.5, min_speech_duration=0.2, min_silence_after_speech=0.5),
        speech_model=speech_model,
        sample_rate=SAMPLE_RATE,
        clock=fake_clock,
    )
    processor.initialize()
    return processor


@pytest.fixture
def batch_backend():
    return StubBatchBackend()


@pytest.fixture
def streaming_backend():
    return StubStreamingBackend()


@pytest.fixture
def registry(batch_backend, streaming_backend):
    registry = ProviderRegistry()
    registry.register(batch_backend)
    registry.register(streaming_backend)
    return registry


@pytest.fixture
def dictation_settings():
    """Settings with short timers so completion paths finish quickly."""
    return DictationSettings(
        provider="stub",
        vad_enabled=True,
        vad=VADConfiguration(threshold=0.5, min_speech_duration=0.2, min_silence_after_speech=0.5),
        auto_end=AutoEndConfiguration(enabled=True, silence_duration=3.0, min_session_duration=1.0,
                                      require_speech_first=True, no_speech_timeout=10.0),
        audio=AudioSettings(sample_rate=SAMPLE_RATE, chunk_size=1600),
        chunking=ChunkingSettings(max_chunk_duration=2.0, min_chunk_duration=0.25,
                                  force_send_multiplier=2.0, skip_silent_chunks=True),
        streaming=StreamingSettings(finalize_grace_seconds=0.5),
        completion=CompletionSettings(timeout_seconds=0.05, retry_interval_seconds=0.05, max_retries=60),
        transcription=TranscriptionSettings(max_workers=2, max_retries=2, retry_base_delay=0.01),
    )


@pytest.fixture
def collaborators():
    return Mock(
        text_inserter=SpyTextInserter(),
        banner=SpyBanner(),
        sound_player=SpySoundPlayer(),
        key_interceptor=SpyKeyInterceptor(),
        capture_source=SpyCaptureSource(),
    )


@pytest.fixture
def make_controller(dictation_settings, registry, collaborators, vad_processor, fake_clock):
    """Build a RecordingController wired to spies; torn down after the test."""
    from dictaflow.services.recording_controller import RecordingController

    created = []

    def factory(settings: Optional[DictationSettings] = None, vad=None):
        controller = RecordingController(
            settings=settings or dictation_settings,
            registry=registry,
            text_inserter=collaborators.text_inserter,
            banner=collaborators.banner,
            key_interceptor=collaborators.key_interceptor,
            sound_player=collaborators.sound_player,
            capture_source=collaborators.capture_source,
            vad=vad or vad_processor,
            clock=fake_clock,
        )
        created.append(controller)
        return controller

    yield factory

    for controller in created:
        controller.shutdown(timeout=1.0)


@pytest.fixture
def mock_pyaudio():
    """Mock PyAudio for testing without actual audio hardware."""
    pyaudio = pytest.importorskip("pyaudio")
    with patch.object(pyaudio, 'PyAudio') as mock_pyaudio_class:
        mock_pyaudio_instance = Mock()
        mock_stream = Mock()

        # 1600 samples of silence
        mock_stream.read.return_value = b'\x00' * 3200
        mock_stream.stop_stream.return_value = None
        mock_stream.close.return_value = None

        mock_pyaudio_instance.open.return_value = mock_stream
        mock_pyaudio_instance.terminate.return_value = None

        mock_pyaudio_class.return_value = mock_pyaudio_instance

        yield {
            'class': mock_pyaudio_class,
            'instance': mock_pyaudio_instance,
            'stream': mock_stream
        }
