"""Terminal stand-ins for the text, banner and sound collaborators."""

import logging
import threading
from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from ..services.collaborators import BannerStyle, Indication

logger = logging.getLogger(__name__)


class ConsoleTextInserter:
    """Types dictated text into an in-memory document and echoes it to the terminal.

    Interim text is shown dimmed and replaced as the provider revises it.
    """

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()
        self.lock = threading.Lock()
        self.document = ""
        self.target_start = 0
        self.has_target = False

    def capture_target(self) -> None:
        with self.lock:
            self.target_start = len(self.document)
            self.has_target = True

    def insert(self, text: str, is_final: bool, replacing_chars: int = 0) -> None:
        with self.lock:
            if not self.has_target:
                logger.debug("insert() without a captured target; ignoring")
                return
            if replacing_chars:
                # Never delete past the point where this session started
                keep = max(self.target_start, len(self.document) - replacing_chars)
                self.document = self.document[:keep]
            self.document += text
            session_text = self.document[self.target_start:]

        style = "white" if is_final else "dim"
        self.console.print(Text(session_text, style=style), end="\r" if not is_final else "\n")

    def cancel(self) -> None:
        with self.lock:
            self.document = self.document[:self.target_start]
            self.has_target = False
        self.console.print("[yellow]Dictation cancelled[/yellow]")

    def finish(self) -> None:
        with self.lock:
            self.has_target = False
            session_text = self.document[self.target_start:].strip()
        if session_text:
            self.console.print(Panel(session_text, title="Transcript", style="green"))


class ConsoleBanner:
    STYLES = {BannerStyle.INFO: "bold blue", BannerStyle.ERROR: "bold red"}

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def show(self, message: str, style: BannerStyle) -> None:
        self.console.print(Panel(message, style=self.STYLES[style]))


class ConsoleSoundPlayer:
    """Rings the terminal bell and prints a short status line per indication."""

    LABELS = {
        Indication.START: ("Recording...", "bold red"),
        Indication.SUCCESS: ("Done", "bold green"),
        Indication.CANCEL: ("Cancelled", "yellow"),
        Indication.ERROR: ("Error", "bold red"),
    }

    def __init__(self, console: Optional[Console] = None, bell: bool = True):
        self.console = console or Console()
        self.bell = bell

    def play(self, indication: Indication) -> None:
        label, style = self.LABELS[indication]
        if self.bell:
            self.console.bell()
        self.console.print(label, style=style)
