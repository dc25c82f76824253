import threading
from unittest.mock import MagicMock

from warden.sweeper import PeriodicTask


class TestPeriodicTask:

    def test_runs_target_repeatedly(self):
        calls = []
        done = threading.Event()

        def target():
            calls.append(1)
            if len(calls) >= 3:
                done.set()

        task = PeriodicTask('test', 0.01, target)
        task.start()
        try:
            assert done.wait(timeout=5)
        finally:
            task.stop()

        assert len(calls) >= 3
        assert task.is_running is False

    def test_exceptions_do_not_stop_loop(self):
        done = threading.Event()
        target = MagicMock(side_effect=RuntimeError("sweep failed"))

        def flaky():
            if target.call_count >= 2:
                done.set()
            target()

        task = PeriodicTask('flaky', 0.01, flaky)
        task.start()
        try:
            assert done.wait(timeout=5)
        finally:
            task.stop()

        assert target.call_count >= 2

    def test_run_once_swallows_errors(self):
        task = PeriodicTask('once', 60, MagicMock(side_effect=ValueError("bad")))
        task.run_once()
        task.target.assert_called_once()

    def test_stop_without_start(self):
        task = PeriodicTask('idle', 60, MagicMock())
        task.stop()
        assert task.is_running is False

    def test_start_is_idempotent(self):
        task = PeriodicTask('twice', 60, MagicMock())
        task.start()
        thread = task._thread
        task.start()
        assert task._thread is thread
        task.stop()
