"""Ordered result delivery and one-shot completion for a chunked session."""

import logging
import threading
from collections import deque
from typing import Callable, Deque, Dict, List, Optional, Set, Tuple

logger = logging.getLogger(__name__)


class TranscriptionQueueBridge:
    """Tracks dispatched chunks by sequence number until every one is resolved.

    Results may arrive out of order and from any thread. Resolved texts are
    handed to ``on_text_ready`` strictly in sequence order, and
    ``on_all_complete`` fires at most once per session: the first
    ``check_completion()`` that finds nothing pending wins, every other caller
    sees that it already fired.

    Callbacks always run outside the bridge lock.
    """

    def __init__(self,
                 on_text_ready: Optional[Callable[[str], None]] = None,
                 on_all_complete: Optional[Callable[[], None]] = None):
        self.on_text_ready = on_text_ready
        self.on_all_complete = on_all_complete

        self.lock = threading.Lock()
        self.generation = 0
        self._draining = False
        self._init_session_state()

    def _init_session_state(self) -> None:
        self._next_seq = 0
        self._next_to_output = 0
        self._pending: Set[int] = set()
        self._resolved: Dict[int, str] = {}
        self._outbox: Deque[Tuple[int, str]] = deque()
        self._delivered: List[str] = []
        self._session_started = False
        self._failed_count = 0
        self._completion_fired = False
        self._recheck_after_drain = False

    def reset(self) -> None:
        """Forget the current session; numbering restarts at 0 and completion can fire again.

        Results submitted with the previous ``generation`` are ignored from now on.
        """
        with self.lock:
            self._init_session_state()
            self.generation += 1
            generation = self.generation
        logger.debug(f"Queue bridge reset (generation {generation})")

    def next_sequence(self) -> int:
        """Register and return the next sequence number: 0, 1, 2, ..."""
        return self.next_ticket()[0]

    def next_ticket(self) -> Tuple[int, int]:
        """Like ``next_sequence`` but also returns the generation it belongs to."""
        with self.lock:
            seq = self._next_seq
            self._next_seq += 1
            self._pending.add(seq)
            self._session_started = True
            return seq, self.generation

    def submit_result(self, seq: int, text: str, generation: Optional[int] = None) -> bool:
        """Resolve ``seq`` with ``text``.

        Unknown, already resolved and stale-generation sequence numbers are
        ignored. Returns True when the result was recorded.
        """
        return self._resolve(seq, text, generation, failed=False)

    def mark_failed(self, seq: int, generation: Optional[int] = None) -> bool:
        """Resolve ``seq`` with no text so later chunks are not held back."""
        recorded = self._resolve(seq, "", generation, failed=True)
        if recorded:
            logger.warning(f"Chunk {seq} marked failed")
        return recorded

    def _resolve(self, seq: int, text: str, generation: Optional[int], failed: bool) -> bool:
        with self.lock:
            if generation is not None and generation != self.generation:
                logger.debug(f"Dropping result for seq {seq} from stale generation {generation}")
                return False
            if seq not in self._pending:
                logger.debug(f"Ignoring result for unknown or resolved seq {seq}")
                return False
            self._pending.discard(seq)
            self._resolved[seq] = text or ""
            if failed:
                self._failed_count += 1
            self._collect_ready()

        self._drain()
        return True

    def abandon_pending(self) -> int:
        """Mark every unresolved sequence failed. Returns how many were abandoned."""
        with self.lock:
            abandoned = sorted(self._pending)
            for seq in abandoned:
                self._resolved[seq] = ""
            self._pending.clear()
            self._failed_count += len(abandoned)
            self._collect_ready()

        if abandoned:
            logger.warning(f"Abandoned {len(abandoned)} pending chunks: {abandoned}")
        self._drain()
        return len(abandoned)

    def check_completion(self) -> bool:
        """Fire ``on_all_complete`` if everything is resolved and it has not fired yet.

        Returns True only for the call that fired it.
        """
        with self.lock:
            if self._completion_fired or not self._session_started:
                return False
            if self._pending:
                return False
            if self._outbox or self._draining:
                # Texts are still being delivered; the drainer re-checks when done
                self._recheck_after_drain = True
                return False
            self._completion_fired = True
            callback = self.on_all_complete
            delivered = len(self._delivered)

        logger.info(f"All chunks complete ({delivered} with text)")
        if callback:
            callback()
        return True

    def get_pending_count(self) -> int:
        with self.lock:
            return len(self._pending)

    @property
    def session_started(self) -> bool:
        with self.lock:
            return self._session_started

    @property
    def failed_count(self) -> int:
        """Chunks of the current session resolved as failed or abandoned."""
        with self.lock:
            return self._failed_count

    @property
    def completion_fired(self) -> bool:
        with self.lock:
            return self._completion_fired

    def ordered_texts(self) -> List[str]:
        """Non-empty texts delivered so far, in sequence order."""
        with self.lock:
            return list(self._delivered)

    def _collect_ready(self) -> None:
        # Caller holds the lock.
        while self._next_to_output in self._resolved:
            text = self._resolved.pop(self._next_to_output)
            if text.strip():
                self._outbox.append((self.generation, text))
                self._delivered.append(text)
            self._next_to_output += 1

    def _drain(self) -> None:
        """Deliver queued texts in order; only one thread drains at a time."""
        with self.lock:
            if self._draining:
                return
            self._draining = True

        while True:
            with self.lock:
                if not self._outbox:
                    self._draining = False
                    recheck = self._recheck_after_drain
                    self._recheck_after_drain = False
                    break
                generation, text = self._outbox.popleft()
                callback = self.on_text_ready if generation == self.generation else None

            if callback:
                try:
                    callback(text)
                except Exception as e:
                    logger.error(f"on_text_ready callback failed: {e}", exc_info=True)

        if recheck:
            self.check_completion()
