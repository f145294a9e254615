import pytest

from taskdispatch.buffer import Buffer


def test_fresh_buffer_debug_str():
    assert Buffer().debug_str() == "S0 i#0 o#0"


def test_append_then_pending_round_trip():
    buf = Buffer()
    data = b"hello world"
    assert buf.append(data) == len(data)
    assert buf.pending() == data
    assert buf.outof_size() == len(data)
    assert len(buf) == len(data)


def test_successive_appends_concatenate():
    buf = Buffer()
    buf.append(b"abc")
    buf.append(bytearray(b"def"))
    assert buf.pending() == b"abcdef"


def test_need_into_grows_to_requested_free_space():
    buf = Buffer()
    buf.append(b"xyz")
    buf.need_into(100)
    assert buf.into_size() >= 100
    assert buf.pending() == b"xyz"


def test_need_into_is_noop_when_space_suffices():
    buf = Buffer()
    buf.need_into(50)
    size = buf.size
    buf.need_into(10)
    assert buf.size == size


def test_need_into_rejects_negative():
    with pytest.raises(ValueError):
        Buffer().need_into(-1)


def test_partial_drain_keeps_remainder():
    buf = Buffer()
    buf.append(b"abcdef")
    buf.used_outof(2)
    assert buf.pending() == b"cdef"
    assert buf.outof_size() == 4


def test_full_drain_resets_positions():
    buf = Buffer()
    buf.append(b"abcdef")
    buf.used_outof(6)
    assert buf.outof_size() == 0
    assert buf.into_size() == buf.size
    buf.append(b"zz")
    assert buf.pending() == b"zz"


def test_over_drain_raises():
    buf = Buffer()
    buf.append(b"ab")
    with pytest.raises(ValueError):
        buf.used_outof(3)
    assert buf.pending() == b"ab"


def test_write_text_returns_encoded_length():
    buf = Buffer()
    text = "Server: é"
    assert buf.write_text(text) == len(text.encode("utf-8"))
    assert buf.pending().decode("utf-8") == text


def test_debug_str_tracks_counts():
    buf = Buffer()
    buf.append(b"12345")
    parts = buf.debug_str().split()
    assert parts[0] == f"S{buf.size}"
    assert parts[1] == f"i#{buf.into_size()}"
    assert parts[2] == "o#5"