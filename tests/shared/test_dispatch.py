"""Tests for UiDispatcher."""

import threading

from shared.dispatch import UiDispatcher


class TestUiDispatcher:
    """Tests for UiDispatcher."""

    def test_immediate_runs_inline(self):
        calls = []
        UiDispatcher(immediate=True).post(lambda: calls.append(threading.current_thread()))
        assert calls == [threading.current_thread()]

    def test_queued_until_drained(self):
        ui = UiDispatcher()
        calls = []
        ui.post(lambda: calls.append(1))
        ui.post(lambda: calls.append(2))
        assert calls == []
        assert ui.pending() == 2
        assert ui.drain() == 2
        assert calls == [1, 2]
        assert ui.pending() == 0

    def test_drain_runs_on_draining_thread(self):
        """Callables posted from a worker run on the thread that drains."""
        ui = UiDispatcher()
        seen = []
        worker = threading.Thread(
            target=ui.post, args=(lambda: seen.append(threading.current_thread()),)
        )
        worker.start()
        worker.join()
        ui.drain(timeout=1)
        assert seen == [threading.current_thread()]

    def test_none_ignored(self):
        ui = UiDispatcher()
        ui.post(None)
        assert ui.pending() == 0

    def test_drain_timeout_empty(self):
        assert UiDispatcher().drain(timeout=0.01) == 0

    def test_failing_callback_does_not_stop_drain(self):
        ui = UiDispatcher()
        calls = []

        def _boom():
            msg = 'boom'
            raise RuntimeError(msg)

        ui.post(_boom)
        ui.post(lambda: calls.append('after'))
        assert ui.drain() == 2
        assert calls == ['after']
