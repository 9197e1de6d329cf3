import heapq
import itertools
import logging
import threading
import time

logger = logging.getLogger(__name__)


class ThreadingScheduler:
    """Wall-clock scheduler backed by daemon threading.Timer instances."""

    def now(self) -> float:
        return time.monotonic()

    def call_later(self, delay: float, callback):
        timer = threading.Timer(max(0.0, delay), callback)
        timer.daemon = True
        timer.start()
        return timer


class _ManualHandle:
    def __init__(self, due: float, callback):
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler:
    """Virtual clock. Callbacks run only inside advance()/advance_to()."""

    def __init__(self, start: float = 0.0):
        self._now = start
        self._queue = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback):
        handle = _ManualHandle(self._now + max(0.0, delay), callback)
        heapq.heappush(self._queue, (handle.due, next(self._seq), handle))
        return handle

    def advance(self, seconds: float):
        self.advance_to(self._now + seconds)

    def advance_to(self, when: float):
        while self._queue and self._queue[0][0] <= when:
            due, _, handle = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self._now = max(self._now, due)
            handle.callback()
        self._now = max(self._now, when)

    def pending(self) -> int:
        return sum(1 for _, _, h in self._queue if not h.cancelled)


class GraceTimers:
    """Table of pending one-shot timers keyed by cause.

    At most one timer per key is pending. A fired or cancelled timer frees its
    key; a callback whose handle was replaced or cancelled in the meantime is
    dropped, so a late thread timer cannot fire after cancel().
    """

    def __init__(self, scheduler):
        self.scheduler = scheduler
        self._lock = threading.Lock()
        self._handles = {}

    def start(self, key: str, delay: float, callback) -> bool:
        with self._lock:
            if key in self._handles:
                return False
            token = object()

            def fire():
                with self._lock:
                    current = self._handles.get(key)
                    if current is None or current[0] is not token:
                        return
                    del self._handles[key]
                callback()

            handle = self.scheduler.call_later(delay, fire)
            self._handles[key] = (token, handle)
            return True

    def cancel(self, key: str) -> bool:
        with self._lock:
            entry = self._handles.pop(key, None)
        if entry is None:
            return False
        entry[1].cancel()
        return True

    def cancel_all(self):
        with self._lock:
            entries = list(self._handles.values())
            self._handles.clear()
        for _, handle in entries:
            handle.cancel()

    def pending(self, key: str) -> bool:
        with self._lock:
            return key in self._handles

    def keys(self):
        with self._lock:
            return list(self._handles)


class RecurringTimer:
    """Re-arms itself every `interval` seconds until stop()."""

    def __init__(self, scheduler, interval: float, callback):
        self.scheduler = scheduler
        self.interval = interval
        self.callback = callback
        self._lock = threading.Lock()
        self._handle = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self):
        with self._lock:
            if self._running:
                return
            self._running = True
            self._handle = self.scheduler.call_later(self.interval, self._tick)

    def stop(self):
        with self._lock:
            self._running = False
            handle, self._handle = self._handle, None
        if handle is not None:
            handle.cancel()

    def _tick(self):
        if not self._running:
            return
        try:
            self.callback()
        except Exception:
            logger.exception("Recurring timer callback failed")
        with self._lock:
            if self._running:
                self._handle = self.scheduler.call_later(self.interval, self._tick)
