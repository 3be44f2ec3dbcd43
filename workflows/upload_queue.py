"""Bounded-concurrency job queue for uploads.

A fixed pool of ``max_concurrent`` daemon workers pulls jobs from one FIFO
queue, so jobs start in submission order and no more than
``max_concurrent`` run at once. Completion order is not guaranteed. After
finishing a job each worker pauses ``pace_seconds`` before taking the
next one, which spreads bursts out for the remote API.

Every submission gets its own Future. A failing job only fails its own
Future; there is no retry here.
"""

import logging
import queue
import threading
import time
from concurrent.futures import Future
from typing import Any, Callable, Dict

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT = 3
DEFAULT_PACE_SECONDS = 0.1


class UploadQueue:
    def __init__(self, max_concurrent: int = DEFAULT_MAX_CONCURRENT,
                 pace_seconds: float = DEFAULT_PACE_SECONDS,
                 thread_name_prefix: str = 'upload-worker') -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self.pace_seconds = pace_seconds
        self._jobs: "queue.Queue" = queue.Queue()
        self._lock = threading.Lock()
        self._shutdown = False
        self._in_flight = 0
        self._completed = 0
        self._failed = 0

        self._threads = []
        for i in range(max_concurrent):
            t = threading.Thread(
                target=self._worker_loop,
                daemon=True,
                name=f"{thread_name_prefix}-{i}",
            )
            t.start()
            self._threads.append(t)

    def submit(self, fn: Callable[..., Any], *args, **kwargs) -> Future:
        """Queue ``fn(*args, **kwargs)`` and return a Future for its result.

        Raises:
            RuntimeError: If the queue has been shut down
        """
        future: Future = Future()
        with self._lock:
            if self._shutdown:
                raise RuntimeError("cannot submit jobs after shutdown")
            self._jobs.put((fn, args, kwargs, future))
        return future

    def _worker_loop(self) -> None:
        while True:
            item = self._jobs.get()
            if item is None:
                self._jobs.task_done()
                break

            fn, args, kwargs, future = item
            if not future.set_running_or_notify_cancel():
                self._jobs.task_done()
                continue

            with self._lock:
                self._in_flight += 1
            try:
                result = fn(*args, **kwargs)
            except Exception as e:
                with self._lock:
                    self._in_flight -= 1
                    self._failed += 1
                future.set_exception(e)
            else:
                with self._lock:
                    self._in_flight -= 1
                    self._completed += 1
                future.set_result(result)
            finally:
                self._jobs.task_done()

            if self.pace_seconds > 0:
                time.sleep(self.pace_seconds)

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight

    @property
    def pending(self) -> int:
        return self._jobs.qsize()

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                'max_concurrent': self.max_concurrent,
                'in_flight': self._in_flight,
                'pending': self._jobs.qsize(),
                'completed': self._completed,
                'failed': self._failed,
            }

    def join(self) -> None:
        """Block until every queued job has finished."""
        self._jobs.join()

    def shutdown(self, wait: bool = True, cancel_pending: bool = False) -> None:
        """Stop accepting jobs and let the workers exit.

        Args:
            wait: Block until the workers have exited
            cancel_pending: Cancel jobs that haven't started yet
        """
        with self._lock:
            if self._shutdown:
                return
            self._shutdown = True

        if cancel_pending:
            cancelled = 0
            while True:
                try:
                    item = self._jobs.get_nowait()
                except queue.Empty:
                    break
                if item is not None and item[3].cancel():
                    cancelled += 1
                self._jobs.task_done()
            if cancelled:
                logger.info("Cancelled %d pending upload jobs", cancelled)

        for _ in self._threads:
            self._jobs.put(None)

        if wait:
            for t in self._threads:
                if t is not threading.current_thread():
                    t.join()

    def __enter__(self) -> "UploadQueue":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown(wait=True)
