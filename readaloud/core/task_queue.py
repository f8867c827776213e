"""
Background task dispatch.
A thread pool plus per-key leases so the same unit of work is never queued
twice, and timer-based re-submission for tasks with a backoff schedule.
"""

import itertools
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class TaskQueue:
    """
    Runs callables on worker threads.

    unique_key: while a lease on the key is live, further enqueues with the
    same key are coalesced (enqueue returns None). The lease is released when
    the task finishes for good, or lapses after lease_seconds.
    backoff: delays (seconds) for re-running a task that raised; the key
    stays held across re-runs.
    """

    def __init__(self, max_workers: int = 4):
        self._executor = ThreadPoolExecutor(max_workers=max_workers,
                                            thread_name_prefix="readaloud-worker")
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._leases: dict[str, tuple[int, float]] = {}
        self._tokens = itertools.count(1)
        self._timers: set[threading.Timer] = set()
        self._active = 0
        self._closed = False

    # ── Public API ────────────────────────────────────────────────────

    def enqueue(self, fn: Callable, *args, unique_key: str | None = None,
                lease_seconds: float | None = None,
                backoff: tuple = ()) -> Optional[Future]:
        """Submit fn(*args). Returns the first attempt's Future, or None if coalesced."""
        with self._lock:
            if self._closed:
                raise RuntimeError("TaskQueue is shut down")

            lease = None
            if unique_key is not None:
                if self._lease_live(unique_key):
                    logger.debug("Task %s already queued, coalescing", unique_key)
                    return None
                expires = time.monotonic() + lease_seconds if lease_seconds else float('inf')
                lease = (unique_key, next(self._tokens))
                self._leases[unique_key] = (lease[1], expires)

            return self._submit_locked(fn, args, lease, list(backoff), attempt=1)

    def is_queued(self, unique_key: str) -> bool:
        with self._lock:
            return self._lease_live(unique_key)

    def join(self, timeout: float | None = None) -> bool:
        """Block until nothing is running or waiting to re-run. False on timeout."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._idle:
            while self._active:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._idle.wait(remaining)
        return True

    def shutdown(self, wait: bool = True):
        with self._lock:
            self._closed = True
            timers = list(self._timers)
            self._timers.clear()
        for timer in timers:
            timer.cancel()
            self._finish_one()
        self._executor.shutdown(wait=wait)

    # ── Internals ─────────────────────────────────────────────────────

    def _lease_live(self, key: str) -> bool:
        held = self._leases.get(key)
        if held is None:
            return False
        if held[1] <= time.monotonic():
            del self._leases[key]
            return False
        return True

    def _release(self, lease):
        if lease is None:
            return
        key, token = lease
        with self._lock:
            held = self._leases.get(key)
            if held and held[0] == token:
                del self._leases[key]

    def _submit_locked(self, fn, args, lease, backoff, attempt) -> Future:
        self._active += 1
        return self._executor.submit(self._run, fn, args, lease, backoff, attempt)

    def _finish_one(self):
        with self._idle:
            self._active -= 1
            if self._active <= 0:
                self._active = 0
                self._idle.notify_all()

    def _run(self, fn, args, lease, backoff, attempt):
        name = getattr(fn, '__name__', repr(fn))
        try:
            result = fn(*args)
        except Exception as e:
            if backoff and self._schedule_retry(fn, args, lease, backoff, attempt):
                logger.warning("Task %s failed (attempt %d), re-running in %ss: %s",
                               name, attempt, backoff[0], e)
            else:
                logger.error("Task %s failed (attempt %d): %s", name, attempt, e,
                             exc_info=True)
                self._release(lease)
            raise
        else:
            self._release(lease)
            return result
        finally:
            self._finish_one()

    def _schedule_retry(self, fn, args, lease, backoff, attempt) -> bool:
        delay, rest = backoff[0], backoff[1:]
        with self._lock:
            if self._closed:
                return False
            timer = threading.Timer(delay, self._resubmit)
            timer.args = (fn, args, lease, rest, attempt + 1, timer)
            timer.daemon = True
            self._timers.add(timer)
            self._active += 1
            timer.start()
        return True

    def _resubmit(self, fn, args, lease, backoff, attempt, timer):
        with self._lock:
            if timer not in self._timers:
                # cancelled by shutdown(), which already settled the count
                return
            self._timers.discard(timer)
            self._submit_locked(fn, args, lease, backoff, attempt)
        self._finish_one()
