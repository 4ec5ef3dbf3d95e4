import logging
import sys
import threading
import time
from collections.abc import Callable
from typing import Protocol

logger = logging.getLogger(__name__)


class CancelToken:
    """
    Cooperative cancellation flag handed to every request of a cycle.

    A token is cancelled either explicitly via cancel() or when the optional
    predicate starts returning True. Consumers poll ``cancelled`` between
    units of work; nothing already running is interrupted.
    """

    def __init__(self, predicate: Callable[[], bool] | None = None) -> None:
        self._event = threading.Event()
        self._predicate = predicate

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._predicate is not None:
            try:
                return bool(self._predicate())
            except Exception:
                logger.exception('Cancel predicate failed, treating as cancelled')
                return True
        return False


class ProgressSink(Protocol):
    """Receiver of download progress, called in the UI context."""

    def start_task(self, message: str, total: int) -> None: ...

    def remaining(self, work: int) -> None: ...


class SingleLineRenderer:
    """Thread-safe renderer that redraws a single console line."""

    def __init__(self, *, single_line: bool = True) -> None:
        self.single_line = single_line
        self._last_len = 0
        self._lock = threading.Lock()

    def clear_line(self) -> None:
        with self._lock:
            if self.single_line and self._last_len > 0:
                sys.stdout.write('\r' + ' ' * self._last_len + '\r')
                sys.stdout.flush()
                self._last_len = 0

    def write_line(self, msg: str) -> None:
        with self._lock:
            if self.single_line:
                pad = max(0, self._last_len - len(msg))
                sys.stdout.write('\r' + msg + (' ' * pad))
            else:
                sys.stdout.write('\r' + msg)
            sys.stdout.flush()
            self._last_len = len(msg)


DEFAULT_WRITER = SingleLineRenderer()


class ConsoleProgress:
    """Console progress bar usable as a ProgressSink."""

    def __init__(self, writer: SingleLineRenderer | None = None) -> None:
        self.total = 1
        self.done = 0
        self.label = ''
        self.start = time.monotonic()
        self._writer = writer or DEFAULT_WRITER

    def _format_eta(self, remaining: float) -> str:
        if remaining == float('inf'):
            return '--:--'
        m, s = divmod(int(remaining), 60)
        h, m = divmod(m, 60)
        if h > 0:
            return f'{h:02d}:{m:02d}:{s:02d}'
        return f'{m:02d}:{s:02d}'

    def _render(self) -> None:
        elapsed = max(1e-6, time.monotonic() - self.start)
        rps = self.done / elapsed
        remaining = (self.total - self.done) / rps if rps > 0 else float('inf')
        bar_len = 30
        filled = int(bar_len * self.done / self.total)
        bar = '█' * filled + '░' * (bar_len - filled)
        msg = (
            f'{self.label}: [{bar}] {self.done}/{self.total} | {rps:4.1f}/s | ETA'
            f' {self._format_eta(remaining)}'
        )
        self._writer.write_line(msg)

    def start_task(self, message: str, total: int) -> None:
        self.label = message
        self.total = max(1, int(total))
        self.done = 0
        self.start = time.monotonic()
        self._writer.clear_line()
        self._render()

    def remaining(self, work: int) -> None:
        self.done = min(self.total, max(0, self.total - int(work)))
        self._render()

    def close(self) -> None:
        self._writer.clear_line()
