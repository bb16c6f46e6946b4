import threading
import time

from app.utils.batching import batch_process


def test_results_are_counted_per_item():
    result = batch_process([1, 2, 3, 4], lambda n: n % 2 == 0, batch_size=2)

    assert result.total == 4
    assert result.processed == 4
    assert result.succeeded == 2
    assert result.skipped == 2
    assert result.failed == 0
    assert result.remaining == 0


def test_concurrency_never_exceeds_batch_size():
    lock = threading.Lock()
    running = 0
    peak = 0

    def work(_):
        nonlocal running, peak
        with lock:
            running += 1
            peak = max(peak, running)
        time.sleep(0.01)
        with lock:
            running -= 1
        return True

    result = batch_process(list(range(12)), work, batch_size=3)

    assert result.succeeded == 12
    assert 1 <= peak <= 3


def test_errors_are_isolated():
    def work(n):
        if n == 2:
            raise ValueError("bad item")
        return True

    result = batch_process([1, 2, 3], work, batch_size=5)

    assert result.succeeded == 2
    assert result.failed == 1
    item, exc = result.errors[0]
    assert item == 2
    assert isinstance(exc, ValueError)
    assert result.failure_ratio == 1 / 3


def test_time_budget_stops_new_batches():
    ticks = iter([0, 0, 5, 11])

    result = batch_process(
        list(range(10)),
        lambda n: True,
        batch_size=3,
        time_budget=10,
        clock=lambda: next(ticks),
    )

    # started=0; batches at t=0 and t=5 run, the check at t=11 stops the rest
    assert result.processed == 6
    assert result.remaining == 4


def test_empty_input():
    result = batch_process([], lambda n: True)
    assert result.total == 0
    assert result.failure_ratio == 0.0
