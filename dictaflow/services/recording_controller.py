"""Top-level dictation state machine."""

import time
import logging
import threading
from dataclasses import replace
from functools import partial
from typing import Dict, Optional

from pubsub import pub

from ..audio.buffer import AudioBuffer
from ..config.settings import DictationSettings
from ..models.audio import AudioChunk, AudioFrameBatch, BufferSnapshot
from ..models.session import RecordingState, StopReason, ProviderMode, Session, generate_session_id
from ..models.transcription import StreamingSessionConfig
from ..streaming import (
    LiveStreamingController,
    StreamOutput,
    TextUpdate,
    AutoEndRequested,
    SessionClosed,
    StreamFailed,
)
from ..transcription.base import TranscriptionProvider
from ..transcription.dispatcher import ChunkDispatcher
from ..transcription.errors import ProviderNotConfigured
from ..transcription.providers import ProviderRegistry
from ..transcription.queue_bridge import TranscriptionQueueBridge
from ..transcription.rate_limiter import RateLimiter
from ..vad import SessionController, ProcessingFailedError, create_vad_processor
from .collaborators import (
    BannerPresenter,
    BannerStyle,
    CaptureSource,
    Indication,
    KeyInterceptor,
    SoundPlayer,
    TextInserter,
)
from .statistics import Statistics

logger = logging.getLogger(__name__)

STATE_TOPIC = "dictation_state"
NO_PROVIDER_MESSAGE = "Set up a transcription provider to start dictating"
CAPTURE_FAILED_TITLE = "Audio capture failed"


class RecordingController:
    """Owns at most one dictation session at a time.

    The state moves IDLE -> RECORDING -> PROCESSING_FINAL -> IDLE. Cancel and
    session-ending errors go straight back to IDLE. Capture, worker, timer and
    stream threads all enter through ``self.lock`` and check that their
    session is still the current one before touching the transcript or the
    text inserter.

    Lifecycle changes are published on ``dictation_state`` as
    ``(session_id, state)``.
    """

    def __init__(self,
                 settings: DictationSettings,
                 registry: ProviderRegistry,
                 text_inserter: TextInserter,
                 banner: BannerPresenter,
                 key_interceptor: KeyInterceptor,
                 sound_player: SoundPlayer,
                 capture_source: Optional[CaptureSource] = None,
                 bridge: Optional[TranscriptionQueueBridge] = None,
                 statistics: Optional[Statistics] = None,
                 vad=None,
                 clock=time.time):
        self.settings = settings
        self.registry = registry
        self.text_inserter = text_inserter
        self.banner = banner
        self.key_interceptor = key_interceptor
        self.sound_player = sound_player
        self.capture_source = capture_source
        self.statistics = statistics or Statistics()
        self.clock = clock

        self.bridge = bridge or TranscriptionQueueBridge()
        self.bridge.on_text_ready = self._on_chunk_text
        self.bridge.on_all_complete = self._on_all_complete
        self.key_interceptor.on_escape = self.handle_escape
        if capture_source is not None:
            capture_source.on_error = self._on_capture_error

        audio = settings.audio
        self.buffer = AudioBuffer(audio.sample_rate, audio.max_buffer_seconds)
        self.vad = vad or create_vad_processor(settings.vad, settings.vad_enabled,
                                               sample_rate=audio.sample_rate, clock=clock)
        if not self.vad.is_available:
            logger.warning(f"Recording without VAD ({self.vad.reason}): "
                           f"chunking on the energy hint, auto-end off")

        self.lock = threading.RLock()
        self.state = RecordingState.IDLE
        self.last_transcript = ""
        self._session: Optional[Session] = None
        self._live: Optional[LiveStreamingController] = None
        self._dispatcher: Optional[ChunkDispatcher] = None
        self._dispatchers: Dict[str, ChunkDispatcher] = {}
        self._session_timing: Optional[SessionController] = None
        self._finish_timer: Optional[threading.Timer] = None
        self._subscribed = False

    @property
    def session(self) -> Optional[Session]:
        """A copy of the current session, or None when idle."""
        with self.lock:
            return replace(self._session) if self._session else None

    @property
    def is_recording(self) -> bool:
        return self.state is RecordingState.RECORDING

    # Start

    def start_recording(self) -> bool:
        """Begin a session. Returns False, leaving the state unchanged, if it cannot start."""
        with self.lock:
            if self.state is RecordingState.RECORDING:
                logger.warning("Already recording")
                return False
            if self.state is RecordingState.PROCESSING_FINAL:
                logger.warning("Previous session is still finishing; not starting")
                refused = True
                provider = None
            else:
                refused = False
                provider = self.registry.resolve(self.settings.provider)

        if refused:
            self.sound_player.play(Indication.ERROR)
            return False
        if provider is None:
            logger.error(f"Cannot start recording: {ProviderNotConfigured(self.settings.provider)}")
            self.banner.show(NO_PROVIDER_MESSAGE, BannerStyle.ERROR)
            self.sound_player.play(Indication.ERROR)
            return False

        with self.lock:
            session = Session(session_id=generate_session_id(), mode=provider.mode)
            self._session = session
            self.state = RecordingState.RECORDING
            self.last_transcript = ""
            self.bridge.reset()
            self.buffer.reset()
            self.vad.reset_session()

            live = None
            if provider.mode is ProviderMode.STREAMING:
                live = LiveStreamingController(
                    sink=partial(self._on_stream_output, session.session_id),
                    auto_end_silence=self.settings.streaming.auto_end_silence,
                    finalize_grace_seconds=self.settings.streaming.finalize_grace_seconds,
                )
                live.on_error = partial(self._fail_session, session.session_id)
                self._live = live
                self._dispatcher = None
                self._session_timing = None
            else:
                self._live = None
                self._dispatcher = self._get_dispatcher(provider)
                self._session_timing = SessionController(
                    vad_config=self.settings.vad,
                    auto_end_config=self.settings.auto_end,
                    max_chunk_duration=self.settings.chunking.max_chunk_duration,
                    clock=self.clock,
                )
                self._session_timing.start_session()

        logger.info(f"Starting session {session.session_id} with {provider.provider_display_name} "
                    f"({provider.mode.value})")
        self.text_inserter.capture_target()
        self.sound_player.play(Indication.START)
        self.key_interceptor.start()
        self._publish_state(session.session_id, RecordingState.RECORDING)
        self._subscribe()

        if live is not None and not live.start(provider, self._streaming_config()):
            # on_error has already taken the session down
            return False

        if self.capture_source is not None:
            try:
                self.capture_source.start_recording()
            except Exception as e:
                logger.error(f"Failed to start audio capture: {e}", exc_info=True)
                self._fail_session(session.session_id, e, CAPTURE_FAILED_TITLE)
                return False
        return True

    def _get_dispatcher(self, provider: TranscriptionProvider) -> ChunkDispatcher:
        dispatcher = self._dispatchers.get(provider.provider_id)
        if dispatcher is None:
            cfg = self.settings.transcription
            dispatcher = ChunkDispatcher(
                backend=provider,
                bridge=self.bridge,
                statistics=self.statistics,
                rate_limiter=RateLimiter(cfg.min_time_between_requests),
                max_workers=cfg.max_workers,
                max_retries=cfg.max_retries,
                retry_base_delay=cfg.retry_base_delay,
                max_audio_bytes=cfg.max_audio_bytes,
                on_result=self._on_chunk_result,
                name=provider.provider_id,
            )
            self._dispatchers[provider.provider_id] = dispatcher
        return dispatcher

    def _streaming_config(self) -> StreamingSessionConfig:
        streaming = self.settings.streaming
        return StreamingSessionConfig(
            language=streaming.language,
            sample_rate=self.settings.audio.sample_rate,
            channels=self.settings.audio.channels,
            interim_results=streaming.interim_results,
            smart_format=streaming.smart_format,
            endpointing_ms=streaming.endpointing_ms,
            model=streaming.model,
        )

    # Audio path

    def _subscribe(self) -> None:
        if not self._subscribed:
            pub.subscribe(self._on_audio_message, self.settings.audio.topic)
            self._subscribed = True

    def _unsubscribe(self) -> None:
        if self._subscribed:
            pub.unsubscribe(self._on_audio_message, self.settings.audio.topic)
            self._subscribed = False

    def _on_audio_message(self, batch: AudioFrameBatch) -> None:
        self.on_audio_frames(batch)

    def on_audio_frames(self, batch: AudioFrameBatch) -> None:
        """Feed one captured batch into the current session. Runs on the capture thread."""
        auto_end = False
        with self.lock:
            session = self._session
            if session is None or self.state is not RecordingState.RECORDING:
                return
            live = self._live

            if live is None:
                has_speech = self._detect_speech(batch)
                self.buffer.append(batch.samples, has_speech)
                self._maybe_send_chunk(session)
                auto_end = self.vad.is_available and self._session_timing.should_auto_end_session()
                if auto_end:
                    logger.info(f"Auto-ending session {session.session_id}: "
                                f"{self._session_timing.diagnostic_summary()}")

        if live is not None:
            live.send_audio(batch.samples)
        elif auto_end:
            self._stop_async(StopReason.AUTO_END)

    def _detect_speech(self, batch: AudioFrameBatch) -> bool:
        # Caller holds the lock.
        if not self.vad.is_available:
            return batch.has_speech
        try:
            result = self.vad.process(batch.samples)
        except ProcessingFailedError as e:
            logger.warning(f"VAD failed on batch {batch.sequence_number}, using energy hint: {e}")
            return batch.has_speech
        if result.event is not None:
            self._session_timing.on_speech_event(result.event)
        return result.probability >= self.vad.config.threshold

    def _maybe_send_chunk(self, session: Session) -> None:
        # Caller holds the lock.
        chunking = self.settings.chunking
        force_limit = chunking.max_chunk_duration * chunking.force_send_multiplier
        natural = self._session_timing.should_send_chunk()
        forced = not natural and self.buffer.duration >= force_limit
        if not (natural or forced):
            return
        if forced:
            logger.warning(f"Forcing chunk send: {self.buffer.duration:.1f}s buffered "
                           f"(limit {force_limit:.1f}s)")

        snapshot = self.buffer.take_all()
        self._session_timing.chunk_sent()
        average = self.vad.average_speech_probability
        self.vad.reset_chunk()
        self._dispatch_snapshot(session, snapshot, average, is_final=False)

    def _dispatch_snapshot(self, session: Session, snapshot: BufferSnapshot,
                           vad_average: float, is_final: bool) -> bool:
        # Caller holds the lock.
        chunking = self.settings.chunking
        if snapshot.is_empty or snapshot.duration_seconds < chunking.min_chunk_duration:
            logger.debug(f"Not sending {snapshot.duration_seconds:.2f}s chunk: too short")
            return False

        if chunking.skip_silent_chunks and not self._chunk_has_speech(snapshot, vad_average):
            logger.info(f"Skipping silent {snapshot.duration_seconds:.1f}s chunk "
                        f"(speech ratio {snapshot.speech_ratio:.2f}, vad avg {vad_average:.2f})")
            return False

        chunk = AudioChunk.from_snapshot(snapshot, is_final=is_final)
        seq = self._dispatcher.dispatch(chunk, session.session_id)
        session.chunks_dispatched += 1
        logger.info(f"Dispatched chunk #{seq}: {chunk.duration_seconds:.1f}s, final={is_final}")
        return True

    def _chunk_has_speech(self, snapshot: BufferSnapshot, vad_average: float) -> bool:
        chunking = self.settings.chunking
        if snapshot.speech_ratio >= chunking.min_speech_ratio:
            return True
        return self.vad.is_available and vad_average >= chunking.min_vad_speech_probability

    # Stop

    def stop_recording(self, reason: StopReason = StopReason.UNKNOWN) -> bool:
        """Finish the session: flush the last audio and wait for outstanding results."""
        with self.lock:
            session = self._session
            if session is None or self.state is not RecordingState.RECORDING:
                logger.debug(f"stop_recording({reason.value}) ignored in state {self.state.value}")
                return False
            self.state = RecordingState.PROCESSING_FINAL
            session.state = RecordingState.PROCESSING_FINAL
            session.stop_reason = reason
            live = self._live

        logger.info(f"Stopping session {session.session_id} ({reason.value}) "
                    f"after {session.duration_seconds:.1f}s")
        self._stop_inputs()
        self._publish_state(session.session_id, RecordingState.PROCESSING_FINAL)

        if live is not None:
            thread = threading.Thread(target=self._finish_streaming, args=(session.session_id, live))
            thread.name = "StreamingFinish"
            thread.daemon = True
            thread.start()
            return True

        with self.lock:
            if self._session is not session:
                return True
            snapshot = self.buffer.take_all()
            average = self.vad.average_speech_probability
            self.vad.reset_chunk()
            self._dispatch_snapshot(session, snapshot, average, is_final=True)

        self._schedule_finish(session.session_id, 0, self.settings.completion.timeout_seconds)
        return True

    def _stop_async(self, reason: StopReason) -> None:
        # Capture and stream threads cannot stop themselves synchronously
        thread = threading.Thread(target=self.stop_recording, args=(reason,))
        thread.name = f"Stop-{reason.value}"
        thread.daemon = True
        thread.start()

    def _stop_inputs(self) -> None:
        try:
            self.key_interceptor.stop()
        except Exception as e:
            logger.error(f"Failed to stop key interceptor: {e}")
        if self.capture_source is not None:
            try:
                self.capture_source.stop_recording()
            except Exception as e:
                logger.error(f"Failed to stop audio capture: {e}")
        self._unsubscribe()

    def _finish_streaming(self, session_id: str, live: LiveStreamingController) -> None:
        transcript = live.stop()
        with self.lock:
            if self._is_current(session_id, RecordingState.PROCESSING_FINAL):
                self._session.transcript = transcript
        self._complete_session(session_id)

    def _schedule_finish(self, session_id: str, attempt: int, delay: float) -> None:
        timer = threading.Timer(delay, self._finish_if_done, args=(session_id, attempt))
        timer.name = f"FinishCheck-{attempt}"
        timer.daemon = True
        with self.lock:
            if not self._is_current(session_id, RecordingState.PROCESSING_FINAL):
                return
            self._finish_timer = timer
        timer.start()

    def _finish_if_done(self, session_id: str, attempt: int) -> None:
        """Completion check after stop; retried while chunks are still out."""
        with self.lock:
            if not self._is_current(session_id, RecordingState.PROCESSING_FINAL):
                return

        if not self.bridge.session_started:
            logger.info("No chunks were dispatched")
            self._complete_session(session_id)
            return

        if self.bridge.check_completion():
            return

        completion = self.settings.completion
        pending = self.bridge.get_pending_count()
        if attempt + 1 >= completion.max_retries:
            abandoned = self.bridge.abandon_pending()
            logger.warning(f"Gave up waiting for {abandoned} chunks after {attempt + 1} checks")
            self.bridge.check_completion()
            return

        logger.info(f"Waiting for {pending} chunks (check {attempt + 1}/{completion.max_retries})")
        self._schedule_finish(session_id, attempt + 1, completion.retry_interval_seconds)

    def _complete_session(self, session_id: str) -> None:
        with self.lock:
            if not self._is_current(session_id, RecordingState.PROCESSING_FINAL):
                return
            session = self._session
            self._cancel_finish_timer()
            if session.mode is ProviderMode.BATCH:
                session.chunks_failed = self.bridge.failed_count
            self.state = RecordingState.IDLE
            session.state = RecordingState.IDLE
            self._session = None
            self._live = None
            self._session_timing = None
            self.last_transcript = session.transcript

        self.text_inserter.finish()
        if session.chunks_failed:
            self.banner.show(f"{session.chunks_failed} of {session.chunks_dispatched} chunks "
                             f"could not be transcribed", BannerStyle.INFO)
        if session.transcript:
            self.sound_player.play(Indication.SUCCESS)
        self.statistics.record_session()
        self._publish_state(session_id, RecordingState.IDLE)
        logger.info(f"Session {session_id} complete: {len(session.transcript)} chars, "
                    f"{session.chunks_dispatched} chunks, {session.chunks_failed} failed")

    # Results

    def _on_chunk_text(self, text: str) -> None:
        """Ordered chunk text from the queue bridge."""
        with self.lock:
            session = self._session
            if session is None or self.state not in (RecordingState.RECORDING,
                                                     RecordingState.PROCESSING_FINAL):
                logger.debug("Dropping chunk text for an inactive session")
                return
            session.append_text(text)
            self.text_inserter.insert(text.strip() + " ", True)

    def _on_chunk_result(self, seq: int, succeeded: bool) -> None:
        if not succeeded:
            logger.warning(f"Chunk #{seq} produced no text")
        with self.lock:
            finishing = self._session is not None and self.state is RecordingState.PROCESSING_FINAL
        if finishing:
            self.bridge.check_completion()

    def _on_all_complete(self) -> None:
        with self.lock:
            session = self._session
            if session is None or self.state is not RecordingState.PROCESSING_FINAL:
                logger.warning(f"Completion fired in state {self.state.value}; ignoring")
                return
        self._complete_session(session.session_id)

    def _on_stream_output(self, session_id: str, output: StreamOutput) -> None:
        if isinstance(output, TextUpdate):
            with self.lock:
                if not self._is_current(session_id):
                    return
                text = output.text_to_type
                if output.is_final and output.full_text:
                    text += " "
                if text or output.replacing_chars:
                    self.text_inserter.insert(text, output.is_final, output.replacing_chars)

        elif isinstance(output, (AutoEndRequested, SessionClosed)):
            with self.lock:
                recording = self._is_current(session_id, RecordingState.RECORDING)
            if recording:
                reason = StopReason.AUTO_END if isinstance(output, AutoEndRequested) else StopReason.UNKNOWN
                logger.info(f"Stream ended the session: {type(output).__name__}")
                self._stop_async(reason)

        elif isinstance(output, StreamFailed):
            logger.error(f"Stream failed: {output.error}")

        else:
            logger.debug(f"Stream output: {type(output).__name__}")

    # Errors and cancellation

    def _fail_session(self, session_id: str, error: Exception,
                      title: str = "Transcription failed") -> None:
        """End the session on a fatal error: one banner, one error sound, back to idle."""
        with self.lock:
            if not self._is_current(session_id):
                logger.debug(f"Ignoring error for finished session {session_id}: {error}")
                return
            session = self._session
            self._cancel_finish_timer()
            self.state = RecordingState.IDLE
            session.state = RecordingState.IDLE
            session.stop_reason = StopReason.ERROR
            self._session = None
            live = self._live
            self._live = None
            self._session_timing = None
            self.bridge.reset()
            self.buffer.reset()
            self.last_transcript = session.transcript

        logger.error(f"Session {session_id} failed: {error}")
        self._stop_inputs()
        if live is not None:
            live.cancel()
        self.text_inserter.finish()
        self.banner.show(f"{title}: {error}", BannerStyle.ERROR)
        self.sound_player.play(Indication.ERROR)
        self._publish_state(session_id, RecordingState.IDLE)

    def _on_capture_error(self, error: Exception) -> None:
        """The capture source died mid-session. Runs on the capture thread."""
        with self.lock:
            session = self._session
            if session is None or self.state is not RecordingState.RECORDING:
                return
        thread = threading.Thread(target=self._fail_session,
                                  args=(session.session_id, error, CAPTURE_FAILED_TITLE))
        thread.name = "CaptureFailed"
        thread.daemon = True
        thread.start()

    def cancel_recording(self) -> bool:
        """Throw the session away. Nothing that arrives afterwards is typed."""
        with self.lock:
            session = self._session
            if session is None or self.state is RecordingState.IDLE:
                return False
            self._cancel_finish_timer()
            session.state = RecordingState.CANCELLED
            session.transcript = ""
            self.state = RecordingState.IDLE
            self._session = None
            live = self._live
            self._live = None
            dispatcher = self._dispatcher
            self._session_timing = None
            self.bridge.reset()
            if live is None and dispatcher is not None:
                # Chunks dispatched after this point get a fresh cancel event
                dispatcher.begin_cancel()
            self.buffer.take_all()
            self.vad.reset_session()
            self.last_transcript = ""
            self.text_inserter.cancel()

        logger.info(f"Session {session.session_id} cancelled")
        self._stop_inputs()
        if live is not None:
            live.cancel()
        elif dispatcher is not None:
            dispatcher.drop_cancelled()
        self.sound_player.play(Indication.CANCEL)
        self._publish_state(session.session_id, RecordingState.CANCELLED)
        return True

    def handle_escape(self) -> None:
        """Escape always cancels; it never stops and keeps the text."""
        with self.lock:
            active = self.state in (RecordingState.RECORDING, RecordingState.PROCESSING_FINAL)
        if active:
            logger.info("Escape pressed, cancelling")
            self.cancel_recording()

    def toggle(self) -> bool:
        """Hotkey handler: start when idle, stop when recording."""
        with self.lock:
            state = self.state
        if state is RecordingState.IDLE:
            return self.start_recording()
        if state is RecordingState.RECORDING:
            return self.stop_recording(StopReason.HOTKEY)
        logger.info("Still processing the last session")
        return False

    def shutdown(self, timeout: float = 5.0) -> None:
        """Tear everything down without playing any indication."""
        with self.lock:
            self._cancel_finish_timer()
            live = self._live
            self._live = None
            self._session = None
            self._session_timing = None
            self.state = RecordingState.IDLE
            self.bridge.reset()
            self.buffer.reset()
            dispatchers = list(self._dispatchers.values())
            self._dispatchers.clear()

        self._stop_inputs()
        if live is not None:
            live.cancel()
        for dispatcher in dispatchers:
            dispatcher.cancel_all()
            dispatcher.shutdown(timeout)
        logger.info("Recording controller shut down")

    # Helpers

    def _is_current(self, session_id: str, state: Optional[RecordingState] = None) -> bool:
        # Caller holds the lock.
        if self._session is None or self._session.session_id != session_id:
            return False
        if state is not None:
            return self.state is state
        return self.state in (RecordingState.RECORDING, RecordingState.PROCESSING_FINAL)

    def _cancel_finish_timer(self) -> None:
        if self._finish_timer is not None:
            self._finish_timer.cancel()
            self._finish_timer = None

    def _publish_state(self, session_id: str, state: RecordingState) -> None:
        pub.sendMessage(STATE_TOPIC, session_id=session_id, state=state.value)
