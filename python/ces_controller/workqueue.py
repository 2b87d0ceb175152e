"""
Rate limited work queue.

Items are object keys. A key waiting in the queue is stored once no matter
how often it is added, and a key being processed is never handed to a second
worker: adding it again while in flight marks it dirty and it is queued again
when the worker calls ``done``. Handlers always re-read current state, so one
pass over a key is enough to observe every change folded into it.
"""
import heapq
import itertools
import logging
import threading
import time
from collections import deque

logger = logging.getLogger(__name__)


class ItemExponentialFailureRateLimiter:
    """Per item backoff: ``base_delay * 2**failures``, capped at ``max_delay``."""

    def __init__(self, base_delay=0.005, max_delay=1000.0):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._failures = {}
        self._lock = threading.Lock()

    def when(self, item):
        with self._lock:
            exp = self._failures.get(item, 0)
            self._failures[item] = exp + 1
        # 2**exp overflows float range long before max_delay matters
        if exp > 62:
            return self.max_delay
        return min(self.base_delay * (2 ** exp), self.max_delay)

    def num_requeues(self, item):
        with self._lock:
            return self._failures.get(item, 0)

    def forget(self, item):
        with self._lock:
            self._failures.pop(item, None)


class BucketRateLimiter:
    """Overall token bucket shared by every item of a queue."""

    def __init__(self, qps=10.0, burst=100, clock=time.monotonic):
        self.qps = qps
        self.burst = burst
        self._clock = clock
        self._tokens = float(burst)
        self._last = clock()
        self._lock = threading.Lock()

    def when(self, item):
        with self._lock:
            now = self._clock()
            self._tokens = min(self.burst, self._tokens + (now - self._last) * self.qps)
            self._last = now
            self._tokens -= 1
            if self._tokens >= 0:
                return 0.0
            return -self._tokens / self.qps

    def num_requeues(self, item):
        return 0

    def forget(self, item):
        pass


class MaxOfRateLimiter:
    """Delay is the longest any of the wrapped limiters asks for."""

    def __init__(self, *limiters):
        self.limiters = limiters

    def when(self, item):
        return max(limiter.when(item) for limiter in self.limiters)

    def num_requeues(self, item):
        return max(limiter.num_requeues(item) for limiter in self.limiters)

    def forget(self, item):
        for limiter in self.limiters:
            limiter.forget(item)


def default_rate_limiter(base_delay=0.005, max_delay=1000.0, qps=10.0, burst=100):
    return MaxOfRateLimiter(
        ItemExponentialFailureRateLimiter(base_delay, max_delay),
        BucketRateLimiter(qps, burst),
    )


class RateLimitingQueue:

    def __init__(self, name, rate_limiter=None, clock=time.monotonic):
        self.name = name
        self.rate_limiter = rate_limiter or default_rate_limiter()
        self._clock = clock
        self._cond = threading.Condition()
        self._queue = deque()
        self._dirty = set()
        self._processing = set()
        # Delayed items: heap of (ready_at, seq, item), latest schedule per item in _waiting_at
        self._waiting = []
        self._waiting_at = {}
        self._seq = itertools.count()
        self._shutting_down = False

    def __len__(self):
        with self._cond:
            return len(self._queue)

    def add(self, item):
        with self._cond:
            self._add_locked(item)

    def _add_locked(self, item):
        if self._shutting_down or item in self._dirty:
            return
        self._dirty.add(item)
        if item in self._processing:
            return
        self._queue.append(item)
        self._cond.notify()

    def add_after(self, item, delay):
        with self._cond:
            if self._shutting_down:
                return
            if delay <= 0:
                self._add_locked(item)
                return
            ready_at = self._clock() + delay
            # An earlier schedule for the same item wins
            if item in self._waiting_at and self._waiting_at[item] <= ready_at:
                return
            self._waiting_at[item] = ready_at
            heapq.heappush(self._waiting, (ready_at, next(self._seq), item))
            self._cond.notify_all()

    def add_rate_limited(self, item):
        delay = self.rate_limiter.when(item)
        logger.debug("queue[%s] requeue %s in %.3fs", self.name, item, delay)
        self.add_after(item, delay)

    def forget(self, item):
        self.rate_limiter.forget(item)

    def num_requeues(self, item):
        return self.rate_limiter.num_requeues(item)

    def _promote_ready(self):
        now = self._clock()
        while self._waiting and self._waiting[0][0] <= now:
            ready_at, _, item = heapq.heappop(self._waiting)
            if self._waiting_at.get(item) != ready_at:
                continue
            del self._waiting_at[item]
            self._add_locked(item)

    def get(self, timeout=None):
        """
        Block until an item is available. Returns ``(item, shutdown)``.

        ``item`` is None when the queue shut down or ``timeout`` expired.
        """
        deadline = None if timeout is None else self._clock() + timeout
        with self._cond:
            while True:
                if self._shutting_down:
                    return None, True
                self._promote_ready()
                if self._queue:
                    item = self._queue.popleft()
                    self._processing.add(item)
                    self._dirty.discard(item)
                    return item, False

                now = self._clock()
                wait = None
                if self._waiting:
                    wait = max(self._waiting[0][0] - now, 0)
                if deadline is not None:
                    if now >= deadline:
                        return None, False
                    wait = deadline - now if wait is None else min(wait, deadline - now)
                self._cond.wait(wait)

    def done(self, item):
        with self._cond:
            self._processing.discard(item)
            if item in self._dirty and not self._shutting_down:
                self._queue.append(item)
                self._cond.notify()

    def shut_down(self):
        """Stop dispatching. In-flight items finish, pending retries are dropped."""
        with self._cond:
            self._shutting_down = True
            self._waiting.clear()
            self._waiting_at.clear()
            self._cond.notify_all()
        logger.info("queue[%s] shut down", self.name)

    @property
    def shutting_down(self):
        with self._cond:
            return self._shutting_down
