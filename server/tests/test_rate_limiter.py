"""Tests for token-bucket admission control."""

import threading

import pytest

from inkframe.config import LimiterConfig
from inkframe.rate_limiter import TokenBucket
from inkframe.validation import RateLimitedError


class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


def test_strict_limiter_back_to_back(clock):
    """Capacity 1 / refill 1/s: true, false, then true after a second."""
    limiter = TokenBucket(rate=1.0, burst=1, clock=clock)

    assert limiter.allow() is True
    assert limiter.allow() is False

    clock.advance(1.0)
    assert limiter.allow() is True
    assert limiter.allow() is False


def test_partial_refill_not_enough(clock):
    limiter = TokenBucket(rate=1.0, burst=1, clock=clock)
    assert limiter.allow() is True

    clock.advance(0.5)
    assert limiter.allow() is False

    # The half token from before still counts
    clock.advance(0.5)
    assert limiter.allow() is True


def test_burst_capacity(clock):
    limiter = TokenBucket(rate=3.0, burst=10, clock=clock)

    results = [limiter.allow() for _ in range(12)]
    assert results == [True] * 10 + [False] * 2

    # 1 second at 3/s gives three more
    clock.advance(1.0)
    assert [limiter.allow() for _ in range(4)] == [True, True, True, False]


def test_refill_capped_at_burst(clock):
    limiter = TokenBucket(rate=3.0, burst=10, clock=clock)
    for _ in range(10):
        limiter.allow()

    clock.advance(3600)
    assert limiter.tokens == pytest.approx(10.0)


def test_denied_call_does_not_consume(clock):
    limiter = TokenBucket(rate=1.0, burst=1, clock=clock)
    limiter.allow()
    clock.advance(0.9)
    assert limiter.allow() is False
    assert limiter.tokens == pytest.approx(0.9)


def test_clock_going_backwards(clock):
    limiter = TokenBucket(rate=1.0, burst=1, clock=clock)
    limiter.allow()
    clock.advance(-5.0)
    assert limiter.allow() is False
    clock.advance(1.0)
    assert limiter.allow() is True


def test_require_raises(clock):
    limiter = TokenBucket(rate=0.0, burst=1, clock=clock, name="ingest")
    limiter.require()
    with pytest.raises(RateLimitedError):
        limiter.require()


def test_invalid_parameters():
    with pytest.raises(ValueError):
        TokenBucket(rate=-1.0, burst=1)
    with pytest.raises(ValueError):
        TokenBucket(rate=1.0, burst=0)


def test_from_config(clock):
    limiter = TokenBucket.from_config(
        LimiterConfig(rate=3.0, burst=10), name="retrieval", clock=clock
    )
    assert limiter.rate == 3.0
    assert limiter.burst == 10
    assert limiter.name == "retrieval"


def test_concurrent_callers_never_over_admit():
    """With no refill, exactly `burst` of many concurrent calls are admitted."""
    limiter = TokenBucket(rate=0.0, burst=10)
    start = threading.Barrier(50)
    admitted = []
    lock = threading.Lock()

    def worker():
        start.wait()
        for _ in range(5):
            if limiter.allow():
                with lock:
                    admitted.append(1)

    threads = [threading.Thread(target=worker) for _ in range(50)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(admitted) == 10
    stats = limiter.get_stats()
    assert stats["allowed"] == 10
    assert stats["denied"] == 240
