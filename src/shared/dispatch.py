"""
UI-affinity dispatcher.

Background threads never call progress sinks, layer refreshes or user
callbacks directly: they post them here, and the owner of the UI context
drains the queue from its own loop (a GUI timer, a CLI wait loop).
In immediate mode posted callables run inline on the posting thread,
which is what headless callers and tests want.
"""

from __future__ import annotations

import logging
import queue
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


class UiDispatcher:
    def __init__(self, *, immediate: bool = False) -> None:
        self.immediate = immediate
        self._queue: queue.Queue[Callable[[], None]] = queue.Queue()

    def post(self, fn: Callable[[], None] | None) -> None:
        """Schedule fn to run in the UI context. None is ignored."""
        if fn is None:
            return
        if self.immediate:
            self._run(fn)
        else:
            self._queue.put(fn)

    def drain(self, timeout: float | None = None) -> int:
        """
        Run posted callables on the calling thread.

        With a timeout, waits up to that long for the first item.
        Returns the number of callables run.
        """
        ran = 0
        block = timeout is not None
        while True:
            try:
                fn = self._queue.get(block=block, timeout=timeout)
            except queue.Empty:
                return ran
            block = False
            self._run(fn)
            ran += 1

    def pending(self) -> int:
        return self._queue.qsize()

    @staticmethod
    def _run(fn: Callable[[], None]) -> None:
        try:
            fn()
        except Exception:
            logger.exception('UI callback failed')
