import time

import pytest

from taskdispatch.benchmark import benchmark, loop_cost


def test_zero_count_returns_zero_without_calling():
    calls = []
    assert benchmark(0, lambda: calls.append(1)) == 0
    assert calls == []


def test_function_called_count_times():
    calls = []
    benchmark(25, lambda: calls.append(1))
    assert len(calls) == 25


def test_negative_count_rejected():
    with pytest.raises(ValueError):
        benchmark(-1, lambda: None)


def test_loop_cost_is_stable_and_non_negative():
    first = loop_cost()
    assert first >= 0
    assert loop_cost() == first


def test_result_is_non_negative():
    assert benchmark(100, lambda: None) >= 0


def test_slow_function_measured():
    result = benchmark(3, lambda: time.sleep(0.002))
    assert result >= 1_000_000