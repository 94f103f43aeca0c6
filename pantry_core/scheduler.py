"""
Event loop, clocks and runners.

Everything that touches client state runs on one EventLoop thread. Timers are
scheduled with after()/after_cancel() the way a Tk root schedules callbacks;
nothing ever sleeps. Blocking HTTP calls go through a runner, which executes
them off-loop and posts the outcome back with call_soon_threadsafe().

Clocks return milliseconds. ManualClock lets tests move time by hand.
"""

import heapq
import itertools
import queue
import threading
import time

from .config import log


# ─── Clocks ──────────────────────────────────────────────────────

class MonotonicClock:
    """Milliseconds for measuring intervals. Immune to wall-clock jumps."""

    def now(self):
        return time.monotonic() * 1000.0


class WallClock:
    """Epoch milliseconds, for timestamps that get persisted."""

    def now(self):
        return time.time() * 1000.0


class ManualClock:
    def __init__(self, start=0.0):
        self._now = float(start)

    def now(self):
        return self._now

    def set(self, value):
        if value < self._now:
            raise ValueError("ManualClock cannot go backwards")
        self._now = float(value)

    def advance(self, ms):
        self.set(self._now + ms)


# ─── Event loop ──────────────────────────────────────────────────

class EventLoop:
    """
    Single-threaded scheduler.

      after(ms, fn, *args)          -> timer id
      after_cancel(timer id)        cancel; safe on fired/unknown ids
      call_soon(fn, *args)          next run_pending()
      call_soon_threadsafe(fn, ...) from any thread
      run_pending()                 run everything due now
      mainloop() / quit()           real-time driver
      advance(ms)                   ManualClock driver for tests
    """

    def __init__(self, clock=None):
        self._clock = clock or MonotonicClock()
        self._heap = []
        self._callbacks = {}
        self._ids = itertools.count(1)
        self._inbox = queue.Queue()
        self._running = False

    @property
    def clock(self):
        return self._clock

    def now(self):
        return self._clock.now()

    def after(self, delay_ms, fn, *args):
        timer_id = next(self._ids)
        due = self.now() + max(0, delay_ms)
        self._callbacks[timer_id] = (fn, args)
        heapq.heappush(self._heap, (due, timer_id))
        return timer_id

    def after_cancel(self, timer_id):
        if timer_id is not None:
            self._callbacks.pop(timer_id, None)

    def call_soon(self, fn, *args):
        return self.after(0, fn, *args)

    def call_soon_threadsafe(self, fn, *args):
        self._inbox.put((fn, args))

    def pending_timers(self):
        return len(self._callbacks)

    def next_due(self):
        while self._heap and self._heap[0][1] not in self._callbacks:
            heapq.heappop(self._heap)
        return self._heap[0][0] if self._heap else None

    def _drain_inbox(self):
        ran = 0
        while True:
            try:
                fn, args = self._inbox.get_nowait()
            except queue.Empty:
                return ran
            self._invoke(fn, args)
            ran += 1

    def _invoke(self, fn, args):
        try:
            fn(*args)
        except Exception as e:
            log.error("Callback %s failed: %s", getattr(fn, "__name__", fn), e, exc_info=True)

    def run_pending(self):
        """Run posted results and every timer that is due. Returns count run."""
        ran = 0
        while True:
            batch = self._drain_inbox()
            now = self.now()
            due = self.next_due()
            if due is not None and due <= now:
                _, timer_id = heapq.heappop(self._heap)
                fn, args = self._callbacks.pop(timer_id)
                self._invoke(fn, args)
                batch += 1
            if not batch:
                return ran
            ran += batch

    def advance(self, ms):
        """Move a ManualClock forward, firing timers in due order on the way."""
        if not isinstance(self._clock, ManualClock):
            raise TypeError("advance() needs a ManualClock")
        target = self.now() + ms
        self.run_pending()
        while True:
            due = self.next_due()
            if due is None or due > target:
                break
            self._clock.set(max(due, self.now()))
            self.run_pending()
        self._clock.set(target)
        self.run_pending()

    def mainloop(self, until=None, idle_wait_sec=0.2):
        """Run until quit() or until(): blocks on the inbox between timers."""
        self._running = True
        try:
            while self._running:
                self.run_pending()
                if until is not None and until():
                    break
                due = self.next_due()
                wait = idle_wait_sec
                if due is not None:
                    wait = min(wait, max(0.0, (due - self.now()) / 1000.0))
                try:
                    fn, args = self._inbox.get(timeout=wait)
                except queue.Empty:
                    continue
                self._invoke(fn, args)
        finally:
            self._running = False

    def quit(self):
        self._running = False


# ─── Runners ─────────────────────────────────────────────────────

class ThreadRunner:
    """
    Runs a blocking call on a short-lived daemon thread and posts
    on_result(value) or on_error(exc) back onto the loop.
    """

    def __init__(self, loop):
        self._loop = loop

    def submit(self, fn, on_result, on_error):
        def work():
            try:
                result = fn()
            except Exception as e:
                self._loop.call_soon_threadsafe(on_error, e)
                return
            self._loop.call_soon_threadsafe(on_result, result)

        threading.Thread(target=work, daemon=True).start()


class InlineRunner:
    """Runs the call immediately; the outcome is still delivered via the loop."""

    def __init__(self, loop):
        self._loop = loop

    def submit(self, fn, on_result, on_error):
        try:
            result = fn()
        except Exception as e:
            self._loop.call_soon(on_error, e)
            return
        self._loop.call_soon(on_result, result)
