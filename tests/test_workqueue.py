"""
Tests for the rate limited work queue.
"""
import threading

import pytest

from ces_controller.workqueue import (
    BucketRateLimiter,
    ItemExponentialFailureRateLimiter,
    MaxOfRateLimiter,
    RateLimitingQueue,
)

from helpers import FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def queue(clock):
    limiter = ItemExponentialFailureRateLimiter(base_delay=1.0, max_delay=8.0)
    return RateLimitingQueue("test", limiter, clock=clock)


def test_identical_keys_are_deduplicated(queue):
    queue.add("ns/a")
    queue.add("ns/a")
    queue.add("ns/b")

    assert len(queue) == 2
    assert queue.get(timeout=0) == ("ns/a", False)
    assert queue.get(timeout=0) == ("ns/b", False)
    assert queue.get(timeout=0) == (None, False)


def test_key_in_flight_is_not_handed_out_twice(queue):
    queue.add("ns/a")
    item, _ = queue.get(timeout=0)

    queue.add("ns/a")
    assert queue.get(timeout=0) == (None, False)

    queue.done(item)
    assert queue.get(timeout=0) == ("ns/a", False)


def test_done_without_new_add_does_not_requeue(queue):
    queue.add("ns/a")
    item, _ = queue.get(timeout=0)
    queue.done(item)

    assert len(queue) == 0


def test_rate_limited_add_waits_for_backoff(queue, clock):
    queue.add_rate_limited("ns/a")

    assert queue.get(timeout=0) == (None, False)
    clock.advance(1.0)
    assert queue.get(timeout=0) == ("ns/a", False)


def test_backoff_grows_and_forget_resets_it(queue):
    limiter = queue.rate_limiter

    assert [limiter.when("ns/a") for _ in range(5)] == [1.0, 2.0, 4.0, 8.0, 8.0]
    assert queue.num_requeues("ns/a") == 5

    queue.forget("ns/a")
    assert queue.num_requeues("ns/a") == 0
    assert limiter.when("ns/a") == 1.0


def test_backoff_is_per_key():
    limiter = ItemExponentialFailureRateLimiter(base_delay=0.5, max_delay=100)
    limiter.when("ns/a")
    limiter.when("ns/a")

    assert limiter.when("ns/b") == 0.5


def test_earlier_schedule_wins(queue, clock):
    queue.add_after("ns/a", 10)
    queue.add_after("ns/a", 2)

    clock.advance(2)
    assert queue.get(timeout=0) == ("ns/a", False)
    queue.done("ns/a")

    clock.advance(10)
    assert queue.get(timeout=0) == (None, False)


def test_bucket_limiter_allows_burst_then_spaces_requests(clock):
    limiter = BucketRateLimiter(qps=2.0, burst=2, clock=clock)

    assert limiter.when("a") == 0.0
    assert limiter.when("b") == 0.0
    assert limiter.when("c") == pytest.approx(0.5)

    clock.advance(10)
    assert limiter.when("d") == 0.0


def test_max_of_limiter_takes_longest_delay(clock):
    limiter = MaxOfRateLimiter(
        ItemExponentialFailureRateLimiter(base_delay=3.0, max_delay=60),
        BucketRateLimiter(qps=1.0, burst=1, clock=clock),
    )

    assert limiter.when("a") == 3.0
    assert limiter.num_requeues("a") == 1
    limiter.forget("a")
    assert limiter.num_requeues("a") == 0


def test_shutdown_stops_dispatch_and_drops_retries(queue, clock):
    queue.add("ns/a")
    queue.add_rate_limited("ns/b")
    queue.shut_down()

    assert queue.get(timeout=0) == (None, True)
    queue.add("ns/c")
    queue.add_rate_limited("ns/c")
    clock.advance(100)
    assert queue.get(timeout=0) == (None, True)


def test_blocked_get_wakes_on_shutdown():
    queue = RateLimitingQueue("test")
    results = []

    worker = threading.Thread(target=lambda: results.append(queue.get()))
    worker.start()
    queue.shut_down()
    worker.join(timeout=5)

    assert results == [(None, True)]


def test_blocked_get_wakes_on_add():
    queue = RateLimitingQueue("test")
    results = []

    worker = threading.Thread(target=lambda: results.append(queue.get(timeout=5)))
    worker.start()
    queue.add("ns/a")
    worker.join(timeout=5)

    assert results == [("ns/a", False)]
