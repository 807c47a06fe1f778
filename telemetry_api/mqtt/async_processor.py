"""Async processor: decouples the paho callback from blocking inserts.

Wraps ReadingProcessor with a bounded queue + worker threads so the paho
network loop thread returns right after enqueue instead of blocking on the
database round trip.

Backpressure: when the queue is full the newest message is dropped and
counted; the broker is never slowed down.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Callable, Optional, Union

from .processor import ProcessOutcome, ReadingProcessor

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 1000
DEFAULT_NUM_WORKERS = 4


class AsyncReadingProcessor:
    """Queue + worker threads around ReadingProcessor.

    - paho callback -> enqueue() returns immediately
    - Worker threads -> process() blocks on the insert (in parallel)
    - Bounded queue provides backpressure
    """

    def __init__(
        self,
        processor: ReadingProcessor,
        max_queue_size: int = DEFAULT_QUEUE_SIZE,
        num_workers: int = DEFAULT_NUM_WORKERS,
        on_outcome: Optional[Callable[[ProcessOutcome], None]] = None,
    ):
        self._processor = processor
        self._queue: queue.Queue = queue.Queue(maxsize=max_queue_size)
        self._num_workers = max(1, num_workers)
        self._on_outcome = on_outcome
        self._stop_event = threading.Event()

        # Metrics
        self._enqueued = 0
        self._dropped = 0
        self._processed = 0
        self._errors = 0
        self._lock = threading.Lock()

        self._workers: list[threading.Thread] = []

    def start(self) -> None:
        """Start worker threads."""
        self._stop_event.clear()
        for i in range(self._num_workers):
            t = threading.Thread(
                target=self._worker_loop,
                args=(i,),
                daemon=True,
                name=f"mqtt-worker-{i}",
            )
            t.start()
            self._workers.append(t)
        logger.info(
            "[ASYNC_PROC] Started workers=%d queue_max=%d",
            self._num_workers, self._queue.maxsize,
        )

    def stop(self, drain: bool = True) -> None:
        """Stop workers. If drain=True, process remaining items first."""
        if drain:
            self._queue.join()
        self._stop_event.set()
        for t in self._workers:
            t.join(timeout=5.0)
        self._workers.clear()
        logger.info("[ASYNC_PROC] Stopped. %s", self.metrics)

    def enqueue(self, payload: Union[bytes, str]) -> bool:
        """Enqueue payload for async processing. Returns False if full."""
        try:
            self._queue.put_nowait(payload)
            with self._lock:
                self._enqueued += 1
            return True
        except queue.Full:
            with self._lock:
                self._dropped += 1
            logger.warning("[ASYNC_PROC] Queue full, dropped message")
            return False

    def _worker_loop(self, worker_id: int) -> None:
        while not self._stop_event.is_set():
            try:
                payload = self._queue.get(timeout=0.5)
            except queue.Empty:
                continue

            try:
                outcome = self._processor.process(payload)
                with self._lock:
                    self._processed += 1
                if self._on_outcome is not None:
                    self._on_outcome(outcome)
            except Exception as e:
                with self._lock:
                    self._errors += 1
                logger.exception("[ASYNC_PROC] Worker %d error: %s", worker_id, e)
            finally:
                self._queue.task_done()

    @property
    def is_running(self) -> bool:
        return bool(self._workers) and not self._stop_event.is_set()

    @property
    def metrics(self) -> dict:
        with self._lock:
            return {
                "queue_depth": self._queue.qsize(),
                "queue_max": self._queue.maxsize,
                "workers": self._num_workers,
                "enqueued": self._enqueued,
                "dropped": self._dropped,
                "processed": self._processed,
                "errors": self._errors,
            }
