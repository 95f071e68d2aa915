"""
Cancellable repeating task.

Collection (hold a key to record) and live prediction are both "do one
step, yield to the UI, repeat until told to stop". ``RepeatingTask``
captures that shape:

    - ``step()`` runs once per cycle
    - ``yield_fn()`` is called between cycles; this is where the UI gets
      to redraw and poll input (e.g. ``cv2.waitKey``)
    - ``stop()`` flips a flag that is checked once per cycle, so the step
      in progress always finishes

``run()`` drives the loop on the caller's thread; ``start_async()`` runs
it on a daemon thread. ``on_finish`` fires once whenever the loop ends,
whether stopped, exhausted or failed.
"""

import time
import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


def next_frame(fps: float = 30.0) -> Callable[[], None]:
    """Default yield point: sleep for one frame interval."""
    interval = 1.0 / fps if fps > 0 else 0.0

    def _yield():
        time.sleep(interval)

    return _yield


class RepeatingTask:
    """Runs ``step`` repeatedly until stopped."""

    def __init__(self, step: Callable[[], None], yield_fn: Optional[Callable[[], None]] = None,
                 name: str = "task", max_iterations: Optional[int] = None,
                 on_error: Optional[Callable[[BaseException], None]] = None,
                 on_finish: Optional[Callable[[], None]] = None):
        self._step = step
        self._on_error = on_error
        self._on_finish = on_finish
        self._yield = yield_fn or next_frame()
        self._name = name
        self._max_iterations = max_iterations

        self._running = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._iterations = 0
        self._error: Optional[BaseException] = None

    def run(self) -> int:
        """Run on the current thread until stopped.

        Returns:
            Number of completed iterations
        """
        self._running.set()
        try:
            return self._loop()
        finally:
            self._finished()

    def _loop(self) -> int:
        self._iterations = 0
        logger.debug("%s started", self._name)

        try:
            while self._running.is_set():
                self._step()
                self._iterations += 1
                if self._max_iterations is not None and self._iterations >= self._max_iterations:
                    break
                self._yield()
        finally:
            self._running.clear()
            logger.debug("%s stopped after %d iterations", self._name, self._iterations)

        return self._iterations

    def start_async(self):
        """Run the loop on a daemon thread."""
        if self.is_running:
            return
        self._error = None
        self._running.set()
        self._thread = threading.Thread(target=self._run_thread, name=self._name, daemon=True)
        self._thread.start()

    def _run_thread(self):
        try:
            self._loop()
        except Exception as e:
            # No caller to propagate to on a worker thread; keep it for inspection
            self._error = e
            logger.exception("%s crashed", self._name)
            if self._on_error is not None:
                self._on_error(e)
        finally:
            self._finished()

    def _finished(self):
        if self._on_finish is not None:
            self._on_finish()

    def stop(self, timeout: Optional[float] = None):
        """Request the loop to stop after the current cycle.

        Args:
            timeout: When set and the loop runs on a thread, wait this long
                     for it to finish
        """
        self._running.clear()
        if timeout is not None and self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)

    @property
    def is_running(self) -> bool:
        return self._running.is_set()

    @property
    def iterations(self) -> int:
        return self._iterations

    @property
    def error(self) -> Optional[BaseException]:
        """Exception that ended a threaded run, if any."""
        return self._error

    @property
    def name(self) -> str:
        return self._name
