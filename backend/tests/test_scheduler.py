import threading

from samap.services.scheduler import AutomationScheduler


class FakeAutomation:
    def __init__(self, calls, fail=False):
        self.calls = calls
        self.fail = fail

    def run_periodic(self):
        self.calls.append(1)
        if self.fail:
            raise RuntimeError("base caída")
        return {"reminders": {"successful": 1, "failed": 0, "total": 1}}


def test_run_once_stores_last_result():
    calls = []
    scheduler = AutomationScheduler(lambda: FakeAutomation(calls), interval_seconds=60)

    result = scheduler.run_once()

    assert result["reminders"]["total"] == 1
    assert scheduler.last_result == result
    assert scheduler.runs == 1


def test_run_once_survives_failures():
    calls = []
    scheduler = AutomationScheduler(lambda: FakeAutomation(calls, fail=True), interval_seconds=60)

    assert scheduler.run_once() == {}
    assert scheduler.last_result is None
    assert scheduler.runs == 1


def test_start_runs_immediately_and_stop_joins():
    ran = threading.Event()

    class Signalling(FakeAutomation):
        def run_periodic(self):
            ran.set()
            return super().run_periodic()

    scheduler = AutomationScheduler(lambda: Signalling([]), interval_seconds=3600)
    scheduler.start()
    try:
        assert ran.wait(timeout=5)
        assert scheduler.running is True
    finally:
        scheduler.stop(timeout=5)

    assert scheduler.running is False
    assert scheduler.runs >= 1
