from __future__ import annotations

import threading
import time

import pytest

from transaction_intelligence.fanout import p_map, p_settle


def test_p_map_preserves_input_order_regardless_of_completion():
    delays = [0.05, 0.0, 0.03, 0.01]

    def work(i: int) -> int:
        time.sleep(delays[i])
        return i * 10

    assert p_map(range(4), work, concurrency=4) == [0, 10, 20, 30]


def test_p_map_never_exceeds_concurrency():
    lock = threading.Lock()
    in_flight = 0
    peak = 0

    def work(_i: int) -> None:
        nonlocal in_flight, peak
        with lock:
            in_flight += 1
            peak = max(peak, in_flight)
        time.sleep(0.01)
        with lock:
            in_flight -= 1

    p_map(range(12), work, concurrency=3)
    assert 1 <= peak <= 3


def test_p_map_propagates_first_error():
    def work(i: int) -> int:
        if i == 2:
            raise RuntimeError("boom")
        return i

    with pytest.raises(RuntimeError, match="boom"):
        p_map(range(5), work, concurrency=2)


def test_p_map_empty_input():
    assert p_map([], lambda x: x, concurrency=2) == []


def test_p_settle_isolates_failures_in_submission_order():
    def work(i: int) -> int:
        if i == 1:
            time.sleep(0.02)
            raise ValueError("second task failed")
        return i

    settled = p_settle(range(3), work, concurrency=3)

    assert [s.index for s in settled] == [0, 1, 2]
    assert [s.ok for s in settled] == [True, False, True]
    assert settled[0].value == 0 and settled[2].value == 2
    assert isinstance(settled[1].error, ValueError)


@pytest.mark.parametrize("bad", [0, -1, True, 1.5])
def test_invalid_concurrency(bad):
    with pytest.raises(ValueError):
        p_map([1], lambda x: x, concurrency=bad)
