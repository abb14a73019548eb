from threading import Event

from scheduler import PeriodicTask


def test_run_once_returns_result():
    task = PeriodicTask("count", 60, lambda: 3)
    assert task.run_once() == 3


def test_run_once_swallows_failures():
    def boom():
        raise RuntimeError("sweep failed")

    task = PeriodicTask("boom", 60, boom)
    assert task.run_once() is None


def test_start_runs_immediately_then_repeats():
    calls = []
    repeated = Event()

    def sweep():
        calls.append(1)
        if len(calls) >= 2:
            repeated.set()

    task = PeriodicTask("sweep", 0.01, sweep)
    task.start()
    try:
        assert repeated.wait(2)
        assert task.running
    finally:
        task.stop()
    assert not task.running


def test_failing_sweep_keeps_schedule():
    ran = Event()
    calls = []

    def flaky():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("first run fails")
        ran.set()

    task = PeriodicTask("flaky", 0.01, flaky)
    task.start()
    try:
        assert ran.wait(2)
    finally:
        task.stop()
