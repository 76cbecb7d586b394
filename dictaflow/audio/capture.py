"""Microphone capture that publishes float32 frame batches."""

import time
import logging
from threading import Thread, Event, current_thread
from typing import Callable, Optional
from datetime import datetime

import numpy as np
import pyaudio

from ..models.audio import AudioStats, AudioFrameBatch, pcm16_to_float
from ..vad.speech_model import rms_level
from .audio_pub import AudioPublisher


logger = logging.getLogger(__name__)


class AudioCapture:
    """Continuous audio capture on a background thread.

    Every batch read from the device is converted to float32 samples, tagged
    with an energy-based speech hint and handed to the publisher. A device
    error ends the capture thread and is passed to ``on_error``.
    """

    def __init__(
        self,
        publisher: AudioPublisher,
        sample_rate: int = 16000,
        chunk_size: int = 1600,
        channels: int = 1,
        silence_threshold: float = 0.003,
    ):
        """Initialize audio capture with specified parameters.

        Args:
            publisher: Receives one AudioFrameBatch per device read
            sample_rate: Audio sample rate
            chunk_size: Samples per device read (1600 = 100ms at 16kHz)
            channels: Number of audio channels (1 for mono)
            silence_threshold: RMS level below which a batch is hinted as silence
        """
        self.publisher = publisher
        self.sample_rate = sample_rate
        self.chunk_size = chunk_size
        self.channels = channels
        self.silence_threshold = silence_threshold

        self.on_error: Optional[Callable[[Exception], None]] = None

        self.recording_thread: Optional[Thread] = None
        self.stop_event = Event()
        self.is_recording = False

        self.start_time: Optional[datetime] = None
        self.total_chunks = 0
        self.peak_level = 0.0

    def start_recording(self) -> None:
        """Start continuous recording in background thread."""
        if self.is_recording:
            logger.warning("Recording already in progress")
            return

        logger.info("Starting audio recording")
        # One stop event per capture thread
        self.stop_event = Event()
        self.start_time = datetime.now()
        self.total_chunks = 0
        self.peak_level = 0.0

        self.is_recording = True
        self.recording_thread = Thread(target=self._record_continuously, args=(self.stop_event,), daemon=True)
        self.recording_thread.name = "AudioCaptureThread"
        self.recording_thread.start()

    def stop_recording(self) -> None:
        """Stop recording and clean up resources."""
        if not self.is_recording:
            logger.debug("No recording in progress")
            return

        logger.info("Stopping audio recording")
        self.stop_event.set()

        thread = self.recording_thread
        # Stop can be called from a subscriber running on the capture thread
        if thread and thread is not current_thread() and thread.is_alive():
            thread.join(timeout=2.0)
            if thread.is_alive():
                logger.warning("Recording thread did not stop cleanly")

        self.is_recording = False
        logger.info(f"Recording stopped. Total chunks: {self.total_chunks}")

    def _open_audio_stream(self, audio: pyaudio.PyAudio):
        stream = audio.open(
            format=pyaudio.paInt16,
            channels=self.channels,
            rate=self.sample_rate,
            input=True,
            frames_per_buffer=self.chunk_size,
            stream_callback=None
        )
        logger.info(f"Audio stream opened: {self.sample_rate}Hz, "
                    f"{self.chunk_size} samples/chunk")
        return stream

    def _to_batch(self, audio_data: bytes) -> AudioFrameBatch:
        samples = pcm16_to_float(audio_data)
        if self.channels > 1:
            samples = samples.reshape(-1, self.channels).mean(axis=1).astype(np.float32)

        level = rms_level(samples)
        self.peak_level = max(self.peak_level, level)
        self.total_chunks += 1
        return AudioFrameBatch(
            samples=samples,
            has_speech=level > self.silence_threshold,
            sample_rate=self.sample_rate,
            timestamp=time.time(),
            sequence_number=self.total_chunks,
        )

    def _record_continuously(self, stop_event: Event) -> None:
        """Continuous recording loop in background thread."""
        audio = None
        stream = None
        error = None
        try:
            audio = pyaudio.PyAudio()
            stream = self._open_audio_stream(audio)
            while not stop_event.is_set():
                audio_data = stream.read(self.chunk_size, exception_on_overflow=False)
                self.publisher.publish(self._to_batch(audio_data))
        except Exception as e:
            logger.error(f"Audio capture failed: {e}", exc_info=True)
            error = e
        finally:
            if stream:
                stream.stop_stream()
                stream.close()
            if audio:
                audio.terminate()
            if self.recording_thread is current_thread():
                self.is_recording = False

        if error is not None and not stop_event.is_set() and self.on_error is not None:
            self.on_error(error)

    def get_recording_stats(self) -> AudioStats:
        """Get current recording statistics."""
        duration = 0.0
        if self.start_time:
            duration = (datetime.now() - self.start_time).total_seconds()

        return AudioStats(
            is_recording=self.is_recording,
            duration_seconds=duration,
            sample_rate=self.sample_rate,
            chunk_size=self.chunk_size,
            total_chunks=self.total_chunks,
        )
