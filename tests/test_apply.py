import threading

import pytest

from taskdispatch.apply import MAX_WORKERS, apply, max_workers


@pytest.mark.parametrize("workers", [1, 2, 4, 8])
def test_every_index_called_once(workers):
    seen = []
    apply(100, seen.append, workers)
    assert sorted(seen) == list(range(100))


def test_zero_iterations_calls_nothing():
    calls = []
    apply(0, calls.append, 4)
    assert calls == []


def test_negative_iterations_rejected():
    with pytest.raises(ValueError):
        apply(-1, lambda i: None, 2)


def test_zero_workers_rejected():
    with pytest.raises(ValueError):
        apply(3, lambda i: None, 0)


def test_serial_runs_in_order_on_caller_thread():
    calls = []
    apply(10, lambda i: calls.append((i, threading.get_ident())), 1)
    assert [i for i, _ in calls] == list(range(10))
    assert {ident for _, ident in calls} == {threading.get_ident()}


def test_runs_concurrently():
    barrier = threading.Barrier(4, timeout=5)
    results = []
    apply(4, lambda i: (barrier.wait(), results.append(i)), 4)
    assert sorted(results) == [0, 1, 2, 3]


def test_threads_limited_by_iterations():
    idents = []
    apply(2, lambda i: idents.append(threading.get_ident()), 8)
    assert len(idents) == 2
    assert 1 <= len(set(idents)) <= 2


def test_exception_propagates():
    def boom(i):
        if i == 5:
            raise KeyError("bad index")

    with pytest.raises(KeyError, match="bad index"):
        apply(50, boom, 4)


def test_exception_propagates_serially():
    def boom(i):
        raise RuntimeError("stop")

    with pytest.raises(RuntimeError, match="stop"):
        apply(3, boom, 1)


def test_max_workers_bounds():
    value = max_workers()
    assert 1 <= value <= MAX_WORKERS


def test_default_workers_covers_all_indices():
    seen = []
    apply(37, seen.append)
    assert sorted(seen) == list(range(37))