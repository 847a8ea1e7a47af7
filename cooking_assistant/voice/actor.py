"""
Serial executor that gives the voice controller single-actor semantics.

Every mutation of controller state runs as a message on one executor, so
transcript deliveries (from the capture thread), timer callbacks and UI
control calls never interleave.
"""

import logging
import queue
import threading
from collections import deque
from concurrent.futures import Future
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

_STOP = object()


class SerialExecutor:
    """
    Runs submitted callables one at a time, in submission order.

    threaded=True:  a dedicated worker thread drains a queue.
    threaded=False: the submitting thread drains the mailbox inline. Calls
                    submitted while draining (re-entrant) are appended and run
                    after the current message, never nested.
    """

    def __init__(self, threaded: bool = True, name: str = "voice-actor"):
        self.threaded = threaded
        self.name = name
        self._queue: queue.Queue = queue.Queue()
        self._worker: Optional[threading.Thread] = None
        self._running = False

        # Inline mode
        self._pending: deque = deque()
        self._lock = threading.RLock()
        self._draining = False
        self._drain_thread: Optional[int] = None

        if threaded:
            self._running = True
            self._worker = threading.Thread(target=self._worker_loop, daemon=True, name=name)
            self._worker.start()

    def submit(self, fn: Callable[..., Any], *args) -> Future:
        """Queue fn(*args) for execution on the actor."""
        future: Future = Future()
        if self.threaded:
            if not self._running:
                future.set_exception(RuntimeError(f"{self.name} is shut down"))
                return future
            self._queue.put((fn, args, future))
            return future

        with self._lock:
            self._pending.append((fn, args, future))
            if self._draining:
                return future
            self._draining = True
            self._drain_thread = threading.get_ident()
            try:
                while self._pending:
                    self._run(*self._pending.popleft())
            finally:
                self._draining = False
                self._drain_thread = None
        return future

    def in_actor(self) -> bool:
        """True when called from code currently running on the actor."""
        if self.threaded:
            return threading.current_thread() is self._worker
        return self._draining and self._drain_thread == threading.get_ident()

    def call(self, fn: Callable[..., Any], *args, wait: bool = False, timeout: Optional[float] = 5.0) -> Future:
        """
        Submit and optionally block until the message has run.

        Waiting from inside the actor would deadlock, so in that case the
        message is only queued.
        """
        in_actor = self.in_actor()
        future = self.submit(fn, *args)
        if wait and not in_actor:
            future.result(timeout=timeout)
        return future

    def flush(self, timeout: Optional[float] = 5.0) -> None:
        """Block until everything submitted so far has run."""
        if self.in_actor():
            return
        self.submit(lambda: None).result(timeout=timeout)

    def shutdown(self, timeout: float = 2.0) -> None:
        if not self.threaded or not self._running:
            return
        self._running = False
        self._queue.put(_STOP)
        if self._worker is not None and self._worker is not threading.current_thread():
            self._worker.join(timeout=timeout)

    def _worker_loop(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                break
            self._run(*item)

    def _run(self, fn: Callable[..., Any], args: tuple, future: Future) -> None:
        if not future.set_running_or_notify_cancel():
            return
        try:
            result = fn(*args)
        except Exception as e:
            logger.exception("%s: message %s failed", self.name, getattr(fn, "__name__", fn))
            future.set_exception(e)
        else:
            future.set_result(result)
