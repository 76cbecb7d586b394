"""Main application entry point for DictaFlow."""

import sys
import time
import argparse
import logging
import threading
from dataclasses import replace
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.table import Table

from .audio.audio_pub import AudioPublisher
from .config import DictaFlowConfig
from .models.session import RecordingState
from .services.recording_controller import RecordingController
from .transcription.providers import ProviderRegistry
from .ui.console import ConsoleTextInserter, ConsoleBanner, ConsoleSoundPlayer
from .ui.keyboard_input import EscapeKeyInterceptor, create_input_handler

logger = logging.getLogger(__name__)


def build_registry(config: DictaFlowConfig, sample_rate: int) -> ProviderRegistry:
    """Register the Google chunked and streaming providers from configuration."""
    from .transcription.google_backend import GoogleSpeechBackend, GoogleStreamingBackend

    credentials_path = config.get_google_credentials_path()
    language = config.get('google_cloud.language', 'en-US')
    registry = ProviderRegistry()
    registry.register(GoogleSpeechBackend(
        credentials_path=credentials_path,
        sample_rate=sample_rate,
        language=language,
        use_enhanced=config.get('google_cloud.use_enhanced_model', True),
        enable_automatic_punctuation=config.get('google_cloud.enable_automatic_punctuation', True),
        base_timeout=float(config.get('transcription.timeout_seconds', 10.0)),
        max_timeout=float(config.get('transcription.max_timeout_seconds', 30.0)),
    ))
    registry.register(GoogleStreamingBackend(credentials_path=credentials_path, language=language))
    return registry


class Server:

    def __init__(self, config_path: Optional[str], log_level: Optional[str] = None,
                 provider: Optional[str] = None):
        self.config = DictaFlowConfig(config_path)
        setup_logging(self.config, log_level or self.config.get('logging.level', 'INFO'))
        self.settings = self.config.settings()
        if provider:
            self.settings = replace(self.settings, provider=provider)
        self.console = Console()
        self.should_exit = threading.Event()
        self.input_handler = None

    def init(self):
        from .audio.capture import AudioCapture

        logger.info("Initializing services...")
        audio = self.settings.audio
        logger.info(f"Audio settings: {audio.sample_rate}Hz, {audio.chunk_size} samples/chunk, "
                    f"{audio.channels} channels")

        self.audio_publisher = AudioPublisher(audio.topic)
        self.audio_capture = AudioCapture(
            publisher=self.audio_publisher,
            sample_rate=audio.sample_rate,
            chunk_size=audio.chunk_size,
            channels=audio.channels,
            silence_threshold=audio.silence_threshold,
        )
        self.registry = build_registry(self.config, audio.sample_rate)
        self.key_interceptor = EscapeKeyInterceptor()
        self.controller = RecordingController(
            settings=self.settings,
            registry=self.registry,
            text_inserter=ConsoleTextInserter(self.console),
            banner=ConsoleBanner(self.console),
            key_interceptor=self.key_interceptor,
            sound_player=ConsoleSoundPlayer(self.console),
            capture_source=self.audio_capture,
        )
        self.print_summary()

    def print_summary(self) -> None:
        table = Table(title="DictaFlow", show_header=False)
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="white")
        provider = self.registry.provider(self.settings.provider)
        configured = self.registry.is_provider_configured(self.settings.provider)
        table.add_row("Provider", f"{self.settings.provider or 'none'}"
                                  f"{'' if configured else ' (not configured)'}")
        table.add_row("Mode", provider.mode.value if provider else "-")
        table.add_row("VAD", "on" if self.controller.vad.is_available else "off")
        auto_end = self.settings.auto_end
        table.add_row("Auto-end", f"{auto_end.effective_silence_duration:.1f}s silence"
                                  if auto_end.enabled else "off")
        table.add_row("Keys", "r = start/stop, Esc = cancel, q = quit")
        self.console.print(table)

    def handle_key(self, key: str) -> bool:
        """Keyboard callback. Returns False to quit."""
        if self.key_interceptor.feed(key):
            return True
        if key == "r":
            self.controller.toggle()
        elif key in ("q", "\x03"):
            self.should_exit.set()
            return False
        return True

    def run_interactive(self) -> None:
        self.input_handler = create_input_handler(self.handle_key)
        self.input_handler.start()
        try:
            while not self.should_exit.wait(0.5):
                pass
        finally:
            self.cleanup()

    def run(self, duration: int) -> None:
        """Record for ``duration`` seconds, wait for the transcript, then exit."""
        try:
            if not self.controller.start_recording():
                return
            time.sleep(duration)
            self.controller.stop_recording()
            while self.controller.state is not RecordingState.IDLE:
                time.sleep(0.1)
            self.console.print(f"Transcript: {self.controller.last_transcript}")
        except Exception as e:
            logger.error(f"Error in run: {e}")
        finally:
            self.cleanup()

    def cleanup(self):
        if self.input_handler:
            self.input_handler.stop()
        self.controller.shutdown()
        for provider in self.registry.all_providers:
            provider.cleanup()
        logger.info(f"Statistics: {self.controller.statistics.to_dict()}")


def setup_logging(config, level: str = "INFO") -> None:
    """Set up logging configuration from YAML config."""
    log_file_path = config.get('logging.file_path', 'data/logs/dictaflow.log')
    console_output = config.get('logging.console_output', True)

    log_dir = Path(log_file_path).parent
    log_dir.mkdir(parents=True, exist_ok=True)

    handlers = []

    file_handler = logging.FileHandler(log_file_path)
    file_handler.setLevel(logging.DEBUG)
    file_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
    )
    file_handler.setFormatter(file_formatter)
    handlers.append(file_handler)

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.WARNING)  # Keep the dictation output readable
        console_formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        console_handler.setFormatter(console_formatter)
        handlers.append(console_handler)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level.upper()))
    for handler in handlers:
        root_logger.addHandler(handler)

    logger.info("=" * 50)
    logger.info("DictaFlow starting up")
    logger.info(f"Log file: {log_file_path}")
    logger.info(f"Log level set to: {level}")
    logger.info("=" * 50)


def main() -> None:
    """Main entry point for DictaFlow."""
    parser = argparse.ArgumentParser(
        description="DictaFlow - real-time dictation",
        epilog="Keys: r=start/stop recording, Esc=cancel, q=quit"
    )

    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration YAML file (default: looks for dictaflow.yaml)"
    )

    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set logging level (default: from config, else INFO)"
    )

    parser.add_argument(
        "--duration",
        type=int,
        help="Record once for this many seconds, print the transcript and exit"
    )

    parser.add_argument(
        "--provider",
        type=str,
        help="Transcription provider id, e.g. google or google-streaming (overrides config)"
    )

    parser.add_argument(
        "--version",
        action="version",
        version="DictaFlow v0.1.0"
    )

    args = parser.parse_args()

    try:
        server = Server(args.config, args.log_level, args.provider)
        server.init()
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}")
        sys.exit(1)

    try:
        if args.duration:
            server.run(args.duration)
        else:
            server.run_interactive()
    except KeyboardInterrupt:
        server.cleanup()
        print("\nGoodbye!")
    except Exception as e:
        print(f"Error: {e}")
        logging.error(f"Application error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
