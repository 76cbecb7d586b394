"""Unit tests for RecordingController: lifecycle, cancellation and error paths."""

import threading
from dataclasses import replace

import pytest
from unittest.mock import Mock

from pubsub import pub

from dictaflow.models.events import StreamError
from dictaflow.models.session import RecordingState, StopReason, ProviderMode
from dictaflow.services.collaborators import BannerStyle, Indication
from dictaflow.services.recording_controller import NO_PROVIDER_MESSAGE, STATE_TOPIC
from dictaflow.transcription.errors import ConnectionFailed
from dictaflow.vad import DisabledVADProcessor

from conftest import make_batch, wait_for

SPEECH = 0.9
SILENCE = 0.0


def feed(controller, amplitude, count):
    for i in range(count):
        controller.on_audio_frames(make_batch(amplitude, sequence_number=i))


@pytest.fixture
def streaming_settings(dictation_settings):
    return replace(dictation_settings, provider="stub-streaming")


@pytest.fixture
def state_log():
    """Every (session_id, state) published on the state topic."""
    log = []

    def listener(session_id, state):
        log.append((session_id, state))

    pub.subscribe(listener, STATE_TOPIC)
    yield log
    pub.unsubscribe(listener, STATE_TOPIC)


@pytest.mark.unit
class TestStart:

    def test_start_enters_recording(self, make_controller, collaborators, state_log):
        controller = make_controller()

        assert controller.start_recording() is True

        assert controller.state is RecordingState.RECORDING
        assert controller.session.mode is ProviderMode.BATCH
        assert collaborators.sound_player.played == [Indication.START]
        assert collaborators.text_inserter.captures == 1
        assert collaborators.key_interceptor.active is True
        assert collaborators.capture_source.recording is True
        assert state_log == [(controller.session.session_id, "recording")]

    def test_no_provider_stays_idle_with_one_banner(self, make_controller, dictation_settings,
                                                    collaborators):
        controller = make_controller(replace(dictation_settings, provider="missing"))

        assert controller.start_recording() is False

        assert controller.state is RecordingState.IDLE
        assert controller.session is None
        assert collaborators.banner.shown == [(NO_PROVIDER_MESSAGE, BannerStyle.ERROR)]
        assert collaborators.sound_player.played == [Indication.ERROR]
        assert collaborators.capture_source.starts == 0

    def test_unconfigured_provider_is_treated_as_missing(self, make_controller, batch_backend,
                                                         collaborators):
        batch_backend.configured = False
        controller = make_controller()

        assert controller.start_recording() is False
        assert controller.state is RecordingState.IDLE
        assert collaborators.banner.count(BannerStyle.ERROR) == 1

    def test_second_start_is_ignored(self, make_controller, collaborators):
        controller = make_controller()
        controller.start_recording()
        session_id = controller.session.session_id

        assert controller.start_recording() is False
        assert controller.session.session_id == session_id
        assert collaborators.sound_player.played == [Indication.START]

    def test_start_refused_while_finishing(self, make_controller, batch_backend, collaborators):
        batch_backend.gate = threading.Event()
        controller = make_controller()
        controller.start_recording()
        feed(controller, SPEECH, 5)
        controller.stop_recording()
        assert controller.state is RecordingState.PROCESSING_FINAL

        assert controller.start_recording() is False
        assert collaborators.sound_player.count(Indication.ERROR) == 1

        batch_backend.gate.set()
        assert wait_for(lambda: controller.state is RecordingState.IDLE)

    def test_capture_failure_ends_session(self, make_controller, collaborators):
        collaborators.capture_source.start_recording = Mock(side_effect=OSError("no microphone"))
        controller = make_controller()

        assert controller.start_recording() is False

        assert controller.state is RecordingState.IDLE
        assert collaborators.banner.count(BannerStyle.ERROR) == 1
        assert collaborators.sound_player.count(Indication.ERROR) == 1


@pytest.mark.unit
class TestBatchSession:

    def test_stop_transcribes_final_chunk(self, make_controller, batch_backend, collaborators, state_log):
        controller = make_controller()
        controller.start_recording()
        session_id = controller.session.session_id
        feed(controller, SPEECH, 5)

        assert controller.stop_recording(StopReason.HOTKEY) is True

        assert wait_for(lambda: controller.state is RecordingState.IDLE)
        assert controller.last_transcript == "text 0"
        assert collaborators.text_inserter.typed == "text 0 "
        assert collaborators.sound_player.count(Indication.SUCCESS) == 1
        assert collaborators.text_inserter.finishes == 1
        assert collaborators.capture_source.recording is False
        assert collaborators.key_interceptor.active is False
        assert [s for _, s in state_log] == ["recording", "processing_final", "idle"]
        assert all(sid == session_id for sid, _ in state_log)
        assert len(batch_backend.calls) == 1
        assert batch_backend.chunks[0].is_final is True

    def test_silent_session_completes_without_success(self, make_controller, batch_backend, collaborators):
        controller = make_controller()
        controller.start_recording()
        feed(controller, SILENCE, 5)

        controller.stop_recording()

        assert wait_for(lambda: controller.state is RecordingState.IDLE)
        assert batch_backend.calls == []
        assert controller.last_transcript == ""
        assert collaborators.sound_player.count(Indication.SUCCESS) == 0
        assert collaborators.text_inserter.finishes == 1

    def test_long_speech_is_force_chunked(self, make_controller, batch_backend, collaborators):
        """Without a pause, a chunk is cut once the buffer reaches max x multiplier."""
        controller = make_controller()
        controller.start_recording()

        feed(controller, SPEECH, 40)
        assert wait_for(lambda: len(batch_backend.calls) == 1)
        assert controller.session.chunks_dispatched == 1

        feed(controller, SPEECH, 5)
        controller.stop_recording()

        assert wait_for(lambda: controller.state is RecordingState.IDLE)
        assert controller.last_transcript == "text 0 text 1"

    def test_texts_inserted_in_sequence_order(self, make_controller, batch_backend, collaborators):
        gates = {"0": threading.Event(), "1": threading.Event()}

        def responder(chunk_id, chunk):
            seq = chunk_id.rsplit(".", 1)[-1]
            gates[seq].wait(3.0)
            return f"part {seq}"

        batch_backend.responder = responder
        controller = make_controller()
        controller.start_recording()
        feed(controller, SPEECH, 40)
        feed(controller, SPEECH, 5)
        controller.stop_recording()
        assert wait_for(lambda: len(batch_backend.calls) == 2)

        gates["1"].set()
        assert wait_for(lambda: controller.bridge.get_pending_count() == 1)
        assert collaborators.text_inserter.inserts == []

        gates["0"].set()
        assert wait_for(lambda: controller.state is RecordingState.IDLE)
        assert collaborators.text_inserter.typed == "part 0 part 1 "

    def test_failed_chunk_shows_info_banner(self, make_controller, batch_backend, collaborators):
        def responder(chunk_id, chunk):
            raise ConnectionFailed(OSError("unreachable"))

        batch_backend.responder = responder
        controller = make_controller()
        controller.start_recording()
        feed(controller, SPEECH, 5)
        controller.stop_recording()

        assert wait_for(lambda: controller.state is RecordingState.IDLE)
        assert collaborators.banner.count(BannerStyle.INFO) == 1
        assert collaborators.banner.count(BannerStyle.ERROR) == 0
        assert collaborators.sound_player.count(Indication.SUCCESS) == 0

    def test_straggling_chunk_is_abandoned(self, make_controller, dictation_settings,
                                           batch_backend, collaborators):
        """Completion stops waiting after the configured number of checks."""
        batch_backend.gate = threading.Event()
        settings = replace(dictation_settings,
                           completion=replace(dictation_settings.completion, max_retries=2))
        controller = make_controller(settings)
        controller.start_recording()
        feed(controller, SPEECH, 5)
        controller.stop_recording()

        assert wait_for(lambda: controller.state is RecordingState.IDLE)
        assert controller.last_transcript == ""
        assert collaborators.banner.count(BannerStyle.INFO) == 1

        batch_backend.gate.set()
        assert not wait_for(lambda: collaborators.text_inserter.inserts, timeout=0.3)

    def test_stop_when_idle_is_ignored(self, make_controller):
        controller = make_controller()
        assert controller.stop_recording() is False

    def test_toggle(self, make_controller):
        controller = make_controller()
        controller.stop_recording = Mock(wraps=controller.stop_recording)
        assert controller.toggle() is True
        assert controller.state is RecordingState.RECORDING
        assert controller.toggle() is True
        assert wait_for(lambda: controller.state is RecordingState.IDLE)
        controller.stop_recording.assert_called_once_with(StopReason.HOTKEY)

    def test_completed_session_is_counted(self, make_controller):
        controller = make_controller()
        controller.start_recording()
        feed(controller, SPEECH, 5)
        controller.stop_recording()

        assert wait_for(lambda: controller.statistics.snapshot().sessions == 1)
        assert controller.statistics.to_dict()["transcriptions"] == 1

    def test_stop_reasons(self):
        assert {reason.value for reason in StopReason} == {"hotkey", "auto_end", "error", "unknown"}

    def test_audio_ignored_when_idle(self, make_controller):
        controller = make_controller()
        feed(controller, SPEECH, 3)
        assert controller.buffer.sample_count == 0


@pytest.mark.unit
class TestAutoEnd:

    def test_silence_after_speech_stops_session(self, make_controller, fake_clock, batch_backend):
        controller = make_controller()
        controller.stop_recording = Mock(wraps=controller.stop_recording)
        controller.start_recording()

        feed(controller, SPEECH, 3)
        fake_clock.advance(2.0)
        feed(controller, SILENCE, 6)
        controller.stop_recording.assert_not_called()

        fake_clock.advance(3.0)
        feed(controller, SILENCE, 1)

        assert wait_for(lambda: controller.stop_recording.called)
        controller.stop_recording.assert_called_with(StopReason.AUTO_END)
        assert wait_for(lambda: controller.state is RecordingState.IDLE)
        assert controller.last_transcript == "text 0"

    def test_no_speech_timeout_stops_session(self, make_controller, fake_clock):
        controller = make_controller()
        controller.stop_recording = Mock(wraps=controller.stop_recording)
        controller.start_recording()

        feed(controller, SILENCE, 2)
        fake_clock.advance(10.0)
        feed(controller, SILENCE, 1)

        assert wait_for(lambda: controller.stop_recording.called)
        controller.stop_recording.assert_called_with(StopReason.AUTO_END)

    def test_no_auto_end_without_vad(self, make_controller, fake_clock, batch_backend):
        controller = make_controller(vad=DisabledVADProcessor("test machine"))
        controller.start_recording()

        feed(controller, SILENCE, 2)
        fake_clock.advance(60.0)
        feed(controller, SILENCE, 2)

        assert controller.state is RecordingState.RECORDING

    def test_energy_hint_used_without_vad(self, make_controller, batch_backend):
        controller = make_controller(vad=DisabledVADProcessor("test machine"))
        controller.start_recording()
        feed(controller, 0.2, 5)
        controller.stop_recording()

        assert wait_for(lambda: controller.state is RecordingState.IDLE)
        assert len(batch_backend.calls) == 1


@pytest.mark.unit
class TestCancel:

    def test_cancel_with_chunks_in_flight_inserts_nothing(self, make_controller, batch_backend,
                                                          collaborators, state_log):
        """Results of chunks still in flight at cancel never reach the text target."""
        batch_backend.gate = threading.Event()
        controller = make_controller()
        controller.start_recording()
        session_id = controller.session.session_id
        feed(controller, SPEECH, 40)
        feed(controller, SPEECH, 40)
        assert wait_for(lambda: len(batch_backend.calls) == 2)

        assert controller.cancel_recording() is True
        batch_backend.gate.set()

        assert not wait_for(lambda: collaborators.text_inserter.inserts, timeout=0.5)
        assert controller.state is RecordingState.IDLE
        assert controller.session is None
        assert controller.last_transcript == ""
        assert collaborators.text_inserter.cancels == 1
        assert collaborators.text_inserter.finishes == 0
        assert collaborators.sound_player.played == [Indication.START, Indication.CANCEL]
        assert state_log[-1] == (session_id, "cancelled")

    def test_cancel_while_finishing(self, make_controller, batch_backend, collaborators):
        batch_backend.gate = threading.Event()
        controller = make_controller()
        controller.start_recording()
        feed(controller, SPEECH, 5)
        controller.stop_recording()

        assert controller.cancel_recording() is True
        batch_backend.gate.set()

        assert not wait_for(lambda: collaborators.sound_player.count(Indication.SUCCESS), timeout=0.3)
        assert collaborators.text_inserter.inserts == []
        assert controller.state is RecordingState.IDLE

    def test_escape_cancels_and_never_keeps_text(self, make_controller, batch_backend, collaborators):
        controller = make_controller()
        controller.start_recording()
        feed(controller, SPEECH, 5)

        collaborators.key_interceptor.press_escape()

        assert controller.state is RecordingState.IDLE
        assert collaborators.sound_player.count(Indication.CANCEL) == 1
        assert collaborators.sound_player.count(Indication.SUCCESS) == 0
        assert batch_backend.calls == []

    def test_cancel_when_idle(self, make_controller, collaborators):
        controller = make_controller()
        assert controller.cancel_recording() is False
        controller.handle_escape()
        assert collaborators.sound_player.played == []

    def test_new_session_after_cancel(self, make_controller, batch_backend, collaborators):
        batch_backend.gate = threading.Event()
        controller = make_controller()
        controller.start_recording()
        feed(controller, SPEECH, 40)
        assert wait_for(lambda: len(batch_backend.calls) == 1)
        controller.cancel_recording()

        batch_backend.gate.set()
        controller.start_recording()
        feed(controller, SPEECH, 5)
        controller.stop_recording()

        assert wait_for(lambda: controller.state is RecordingState.IDLE)
        assert controller.last_transcript == "text 0"
        assert collaborators.text_inserter.typed == "text 0 "


@pytest.mark.unit
class TestStreamingSession:

    def test_interim_and_final_text_are_typed(self, make_controller, streaming_settings,
                                              streaming_backend, collaborators):
        controller = make_controller(streaming_settings)
        assert controller.start_recording() is True
        assert controller.session.mode is ProviderMode.STREAMING

        streaming_backend.session.emit_interim("hel")
        streaming_backend.session.emit_final("hello")
        assert wait_for(lambda: len(collaborators.text_inserter.inserts) == 2)
        assert collaborators.text_inserter.inserts == [("hel", False, 0), ("lo ", True, 0)]

        controller.stop_recording()
        assert wait_for(lambda: controller.state is RecordingState.IDLE)
        assert controller.last_transcript == "hello"
        assert streaming_backend.session.finalized is True
        assert collaborators.sound_player.count(Indication.SUCCESS) == 1

    def test_audio_forwarded_to_stream(self, make_controller, streaming_settings, streaming_backend):
        controller = make_controller(streaming_settings)
        controller.start_recording()
        feed(controller, SPEECH, 3)
        assert len(streaming_backend.session.sent) == 3

    def test_stream_error_fails_once(self, make_controller, streaming_settings, streaming_backend,
                                     collaborators, state_log):
        controller = make_controller(streaming_settings)
        controller.start_recording()

        error = ConnectionFailed(OSError("socket closed"))
        streaming_backend.session.emit(StreamError(error))
        streaming_backend.session.emit(StreamError(error))

        assert wait_for(lambda: controller.state is RecordingState.IDLE)
        assert collaborators.banner.count(BannerStyle.ERROR) == 1
        assert collaborators.sound_player.count(Indication.ERROR) == 1
        assert state_log[-1][1] == "idle"
        assert streaming_backend.session.closed is True

    def test_stream_connect_failure(self, make_controller, streaming_settings, streaming_backend,
                                    collaborators):
        streaming_backend.fail_with = ConnectionFailed(OSError("refused"))
        controller = make_controller(streaming_settings)

        assert controller.start_recording() is False

        assert controller.state is RecordingState.IDLE
        assert collaborators.banner.count(BannerStyle.ERROR) == 1
        assert collaborators.sound_player.count(Indication.ERROR) == 1
        assert collaborators.capture_source.starts == 0

    def test_provider_closing_stream_stops_session(self, make_controller, streaming_settings,
                                                   streaming_backend):
        controller = make_controller(streaming_settings)
        controller.stop_recording = Mock(wraps=controller.stop_recording)
        controller.start_recording()

        streaming_backend.session.close()

        assert wait_for(lambda: controller.stop_recording.called)
        assert wait_for(lambda: controller.state is RecordingState.IDLE)

    def test_cancel_discards_stream(self, make_controller, streaming_settings, streaming_backend,
                                    collaborators):
        controller = make_controller(streaming_settings)
        controller.start_recording()
        session = streaming_backend.session

        controller.cancel_recording()
        session.emit_final("too late")

        assert not wait_for(lambda: collaborators.text_inserter.inserts, timeout=0.3)
        assert session.closed is True
        assert collaborators.sound_player.count(Indication.CANCEL) == 1


@pytest.mark.unit
class TestCaptureFailure:

    def test_capture_error_ends_session(self, make_controller, collaborators, state_log):
        controller = make_controller()
        controller.start_recording()
        feed(controller, SPEECH, 3)

        collaborators.capture_source.fail(OSError("device unplugged"))

        assert wait_for(lambda: controller.state is RecordingState.IDLE)
        assert wait_for(lambda: collaborators.sound_player.count(Indication.ERROR) == 1)
        assert collaborators.banner.shown == [("Audio capture failed: device unplugged", BannerStyle.ERROR)]
        assert collaborators.key_interceptor.active is False
        assert state_log[-1][1] == "idle"
        assert controller.buffer.sample_count == 0

    def test_capture_error_when_idle_is_ignored(self, make_controller, collaborators):
        make_controller()

        collaborators.capture_source.fail(OSError("device unplugged"))

        assert collaborators.banner.shown == []
        assert collaborators.sound_player.played == []

