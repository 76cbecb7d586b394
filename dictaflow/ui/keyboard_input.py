"""Cross-platform keyboard input handling for the terminal UI."""

import sys
import threading
import time
from typing import Optional, Callable
import logging

logger = logging.getLogger(__name__)

ESCAPE = "\x1b"


class KeyboardInputHandler:
    """Handle keyboard input in a cross-platform way."""

    def __init__(self, callback: Callable[[str], bool]):
        """Initialize keyboard handler.

        Args:
            callback: Function that takes a key and returns True to continue, False to quit
        """
        self.callback = callback
        self.running = False
        self.thread: Optional[threading.Thread] = None

    def start(self) -> None:
        """Start the keyboard input handler."""
        if self.running:
            return

        self.running = True
        self.thread = threading.Thread(target=self._input_loop, daemon=True)
        self.thread.name = "KeyboardInput"
        self.thread.start()
        logger.info("Keyboard input handler started")

    def stop(self) -> None:
        """Stop the keyboard input handler."""
        self.running = False
        if self.thread and self.thread is not threading.current_thread():
            self.thread.join(timeout=1.0)
        logger.info("Keyboard input handler stopped")

    def _input_loop(self) -> None:
        """Main input handling loop."""
        logger.info("Starting keyboard input loop")
        while self.running:
            try:
                key = self._get_key()
                if key:
                    logger.debug(f"Key detected: {key!r}")
                    if not self.callback(key):
                        logger.info("Callback returned False, breaking input loop")
                        break
                time.sleep(0.05)
            except Exception as e:
                logger.error(f"Error in input loop: {e}")
                break
        self.running = False
        logger.info("Keyboard input loop ended")

    def _get_key(self) -> Optional[str]:
        """Get a single keypress in a cross-platform way."""
        if sys.platform == "win32":
            return self._get_key_windows()
        return self._get_key_unix()

    def _get_key_windows(self) -> Optional[str]:
        import msvcrt
        if msvcrt.kbhit():
            key = msvcrt.getch().decode('utf-8', errors='ignore')
            return key.lower()
        return None

    def _get_key_unix(self) -> Optional[str]:
        import select
        import tty
        import termios

        if select.select([sys.stdin], [], [], 0.1)[0]:
            # Raw mode for the single read so keys arrive without Enter
            old_settings = termios.tcgetattr(sys.stdin)
            try:
                tty.setraw(sys.stdin.fileno())
                key = sys.stdin.read(1)
                return key.lower()
            finally:
                termios.tcsetattr(sys.stdin, termios.TCSADRAIN, old_settings)
        return None


class SimpleInputHandler:
    """Line-based fallback for when stdin is not a terminal.

    Type a command and press Enter: r toggles recording, c cancels, q quits.
    """

    COMMANDS = {"c": ESCAPE, "cancel": ESCAPE}

    def __init__(self, callback: Callable[[str], bool]):
        self.callback = callback
        self.running = False
        self.thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self.running:
            return

        self.running = True
        self.thread = threading.Thread(target=self._input_loop, daemon=True)
        self.thread.name = "SimpleInput"
        self.thread.start()
        logger.info("Simple input handler started")

    def stop(self) -> None:
        self.running = False
        logger.info("Simple input handler stopped")

    def _input_loop(self) -> None:
        while self.running:
            try:
                user_input = input("> ").strip().lower()
            except (EOFError, KeyboardInterrupt):
                break

            key = self.COMMANDS.get(user_input, user_input[:1] or "r")
            if not self.callback(key):
                break
        self.running = False


class EscapeKeyInterceptor:
    """Routes the escape key to ``on_escape`` while armed.

    The dictation controller arms it for the length of a session. Keys are
    fed in by whichever input handler owns the terminal.
    """

    def __init__(self):
        self.on_escape: Optional[Callable[[], None]] = None
        self.armed = False

    def start(self) -> None:
        self.armed = True
        logger.debug("Escape interceptor armed")

    def stop(self) -> None:
        self.armed = False
        logger.debug("Escape interceptor disarmed")

    def feed(self, key: str) -> bool:
        """Returns True if the key was consumed."""
        if key != ESCAPE or not self.armed:
            return False
        if self.on_escape:
            self.on_escape()
        return True


def create_input_handler(callback: Callable[[str], bool]):
    """Create the best available input handler for the current terminal.

    Args:
        callback: Function that takes a key and returns True to continue, False to quit
    """
    if sys.stdin.isatty():
        return KeyboardInputHandler(callback)
    logger.warning("stdin is not a terminal, falling back to line input")
    return SimpleInputHandler(callback)
