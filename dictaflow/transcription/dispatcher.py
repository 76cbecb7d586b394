"""Worker pool that sends audio chunks to a chunked transcription backend."""

import time
import random
import logging
import threading
import queue
from typing import Callable, NamedTuple, Optional

from ..models.audio import AudioChunk
from ..services.statistics import Statistics
from .base import AbstractTranscriptionBackend
from .errors import TranscriptionError, TranscriptionCancelled, RateLimited, AudioTooLarge
from .queue_bridge import TranscriptionQueueBridge
from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


class ChunkTask(NamedTuple):
    """A chunk waiting for a worker thread."""
    seq: int
    generation: int
    chunk: AudioChunk
    session_id: str
    cancel_event: threading.Event


class ChunkDispatcher:
    """Numbers chunks through the queue bridge and transcribes them on worker threads.

    Every dispatched chunk is resolved in the bridge exactly once: with its
    text on success, or as failed once retries are exhausted. When the bridge
    accepts a result ``on_result(seq, succeeded)`` runs; by default it asks
    the bridge to check completion.
    """

    def __init__(self,
                 backend: AbstractTranscriptionBackend,
                 bridge: TranscriptionQueueBridge,
                 statistics: Optional[Statistics] = None,
                 rate_limiter: Optional[RateLimiter] = None,
                 max_workers: int = 4,
                 max_retries: int = 3,
                 retry_base_delay: float = 1.5,
                 max_audio_bytes: int = 25 * 1024 * 1024,
                 on_result: Optional[Callable[[int, bool], None]] = None,
                 name: str = "chunks"):
        self.name = name
        self.backend = backend
        self.bridge = bridge
        self.statistics = statistics or Statistics()
        self.rate_limiter = rate_limiter or RateLimiter()
        self.max_workers = max_workers
        self.max_retries = max(1, max_retries)
        self.retry_base_delay = retry_base_delay
        self.max_audio_bytes = max_audio_bytes
        self.on_result = on_result or (lambda seq, succeeded: self.bridge.check_completion())

        self.task_queue: "queue.Queue[Optional[ChunkTask]]" = queue.Queue()
        self.worker_threads = []
        self.shutdown_event = threading.Event()
        self._cancel_event = threading.Event()
        self._cancel_lock = threading.Lock()

        self._start_workers()

    def _start_workers(self):
        """Create and start the pool of worker threads."""
        for i in range(self.max_workers):
            thread = threading.Thread(target=self._worker_loop)
            thread.name = f"worker_{self.name}_{i}"
            thread.daemon = True
            thread.start()
            self.worker_threads.append(thread)
        logger.info(f"Started {len(self.worker_threads)} {self.name} dispatcher workers")

    def dispatch(self, chunk: AudioChunk, session_id: str = "") -> int:
        """Assign the next sequence number to ``chunk`` and queue it. Returns the number."""
        if self.shutdown_event.is_set():
            raise RuntimeError(f"Dispatcher {self.name} is shut down")

        seq, generation = self.bridge.next_ticket()
        with self._cancel_lock:
            cancel_event = self._cancel_event
        task = ChunkTask(seq=seq, generation=generation, chunk=chunk,
                         session_id=session_id, cancel_event=cancel_event)
        logger.debug(f"Queueing chunk #{seq} for {self.name}: {chunk.duration_seconds:.2f}s, "
                     f"speech ratio {chunk.speech_ratio:.2f}, final={chunk.is_final}")
        self.task_queue.put(task)
        return seq

    def _worker_loop(self):
        """The main loop for each worker thread."""
        thread_name = threading.current_thread().name
        logger.debug(f"Worker thread {thread_name} starting")

        while True:
            task = self.task_queue.get()

            if task is None:
                logger.debug(f"Worker {thread_name} received sentinel, exiting.")
                self.task_queue.task_done()
                break

            try:
                self._process(task)
            except Exception as e:
                logger.error(f"Unhandled exception processing chunk #{task.seq} in {thread_name}: {e}",
                             exc_info=True)
            finally:
                self.task_queue.task_done()

        logger.debug(f"Worker thread {thread_name} exiting.")

    def _process(self, task: ChunkTask) -> None:
        if task.cancel_event.is_set():
            logger.debug(f"Skipping cancelled chunk #{task.seq}")
            return

        chunk_id = f"{self.name}.{task.session_id or 'session'}.{task.seq}"
        logger.info(f"Transcribing chunk {chunk_id} ({task.chunk.duration_seconds:.2f}s)")

        try:
            text = self._transcribe_with_retry(chunk_id, task)
        except TranscriptionCancelled:
            logger.info(f"Chunk {chunk_id} cancelled")
            return
        except Exception as e:
            logger.error(f"Chunk {chunk_id} failed: {e}")
            self.statistics.record_failure()
            succeeded = False
            recorded = self.bridge.mark_failed(task.seq, task.generation)
        else:
            self.statistics.record_transcription(text, task.chunk.duration_seconds)
            succeeded = True
            recorded = self.bridge.submit_result(task.seq, text, task.generation)
            if recorded:
                logger.info(f"Chunk {chunk_id} done: '{text}'")

        # Results from a cancelled or reset session are inert
        if recorded and not task.cancel_event.is_set():
            self.on_result(task.seq, succeeded)

    def _transcribe_with_retry(self, chunk_id: str, task: ChunkTask) -> str:
        size = len(task.chunk.samples) * 2
        if size > self.max_audio_bytes:
            raise AudioTooLarge(size, self.max_audio_bytes)

        for attempt in range(1, self.max_retries + 1):
            self.rate_limiter.wait_and_record(task.cancel_event)
            self.statistics.record_api_call()
            try:
                result = self.backend.transcribe_chunk(chunk_id, task.chunk)
                return result.transcript if result else ""
            except TranscriptionCancelled:
                raise
            except TranscriptionError as e:
                if not e.is_retryable or attempt == self.max_retries:
                    raise
                delay = self._retry_delay(attempt, e)
                logger.warning(f"Chunk {chunk_id} attempt {attempt}/{self.max_retries} failed ({e}); "
                               f"retrying in {delay:.1f}s")
                if task.cancel_event.wait(delay):
                    raise TranscriptionCancelled()

        raise TranscriptionError(f"Chunk {chunk_id} exhausted retries")

    def _retry_delay(self, attempt: int, error: TranscriptionError) -> float:
        if isinstance(error, RateLimited) and error.retry_after:
            return error.retry_after
        backoff = self.retry_base_delay * (2 ** (attempt - 1))
        return backoff + random.uniform(0, self.retry_base_delay / 2)

    def cancel_all(self) -> int:
        """Drop queued chunks and wake any worker waiting to retry. Returns chunks dropped."""
        self.begin_cancel()
        return self.drop_cancelled()

    def begin_cancel(self) -> None:
        """Cancel every chunk dispatched so far. Chunks dispatched afterwards are unaffected."""
        with self._cancel_lock:
            cancelled_event = self._cancel_event
            self._cancel_event = threading.Event()
        cancelled_event.set()

    def drop_cancelled(self) -> int:
        """Remove cancelled chunks from the queue, keeping newer ones in order."""
        dropped = 0
        kept = []
        sentinels = 0
        while True:
            try:
                task = self.task_queue.get_nowait()
            except queue.Empty:
                break
            self.task_queue.task_done()
            if task is None:
                sentinels += 1
            elif task.cancel_event.is_set():
                dropped += 1
            else:
                kept.append(task)

        for task in kept:
            self.task_queue.put(task)
        for _ in range(sentinels):
            # Shutdown sentinels go back for the workers
            self.task_queue.put(None)

        logger.info(f"{self.name} dispatcher cancelled, dropped {dropped} queued chunks")
        return dropped

    def shutdown(self, timeout: float = 30.0) -> bool:
        """Wait for queued chunks to finish, then stop the worker threads."""
        logger.info(f"Shutting down {self.name} dispatcher...")
        self.shutdown_event.set()

        start_time = time.time()
        drained = True
        while self.task_queue.unfinished_tasks > 0:
            if time.time() - start_time >= timeout:
                logger.warning(f"[{self.name}] Timeout reached while waiting for queue. "
                               f"{self.task_queue.unfinished_tasks} tasks remain.")
                drained = False
                break
            time.sleep(0.05)

        for _ in self.worker_threads:
            self.task_queue.put(None)

        for thread in self.worker_threads:
            thread.join(2.0)
            if thread.is_alive():
                logger.warning(f"Worker thread {thread.name} did not terminate cleanly.")

        logger.info(f"{self.name} dispatcher shutdown complete.")
        return drained

    def get_pending_task_count(self) -> int:
        """Get the number of chunks waiting for a worker."""
        return self.task_queue.qsize()
