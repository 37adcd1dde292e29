import pytest

from utils import security


@pytest.fixture
def ticks(monkeypatch):
    now = [1000.0]
    monkeypatch.setattr(security.time, "monotonic", lambda: now[0])
    yield now
    security.reset_attempts()


def test_attempts_are_limited_inside_window(ticks):
    assert security.track_attempt("vote:10.0.0.1", limit=2, window_seconds=60)
    assert security.track_attempt("vote:10.0.0.1", limit=2, window_seconds=60)
    assert not security.track_attempt("vote:10.0.0.1", limit=2, window_seconds=60)

    ticks[0] += 61
    assert security.track_attempt("vote:10.0.0.1", limit=2, window_seconds=60)


def test_expired_counters_are_evicted(ticks):
    security.track_attempt("vote:10.0.0.1", limit=5, window_seconds=60)
    security.track_attempt("vote:10.0.0.2", limit=5, window_seconds=600)

    ticks[0] += 120
    security.track_attempt("vote:10.0.0.3", limit=5, window_seconds=60)
    assert set(security._attempts) == {"vote:10.0.0.2", "vote:10.0.0.3"}
