"""
Poller: drives one JobHandle to a terminal status by repeated status checks.

    IDLE --arm()--> POLLING --terminal / unknown / error / max wait--> SETTLED
      ^                |
      +---cancel()-----+   (cancel() works from any state)

Every arm() and cancel() bumps a generation counter. Scheduled ticks and
request results carry the generation they were issued under and are dropped
when it no longer matches, so a superseded or cancelled handle can never
cause another request or a state change.

At most one status-check request is outstanding at any time, even across
arm() calls: a new handle's first check waits for a superseded request to
come back (its result is then discarded).
"""

from enum import Enum

from .config import log
from .constants import POLL_INTERVAL_MS, POLL_MAX_WAIT_MS
from .errors import JobFailed, JobTimedOut, JobUnknown
from .jobs import JobState, JobStatus


class PollerState(Enum):
    IDLE = "idle"
    POLLING = "polling"
    SETTLED = "settled"


class Poller:
    """
    check(handle) -> JobStatus is blocking and runs through `runner`.
    on_status(status) sees every accepted status, including PENDING ones.
    on_settled(status, error) fires exactly once per armed handle; error is
    None on COMPLETED, JobFailed / JobUnknown / JobTimedOut, or the
    NetworkError / ApiError raised by the check itself.
    """

    def __init__(self, loop, runner, check, settings=None, on_status=None, on_settled=None):
        self._loop = loop
        self._runner = runner
        self._check = check
        self._settings = settings
        self.on_status = on_status
        self.on_settled = on_settled

        self.state = PollerState.IDLE
        self.handle = None
        self.outcome = None
        self.error = None
        self.requests_issued = 0
        self.interval_ms = None
        self.max_wait_ms = None

        self._generation = 0
        self._in_flight = False
        self._deferred_gen = None
        self._tick_id = None
        self._deadline_id = None
        self._started_at = None
        self._settled_at = None

    # ── Public API ───────────────────────────────────────────

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def elapsed_ms(self):
        if self._started_at is None:
            return None
        end = self._settled_at if self._settled_at is not None else self._loop.now()
        return end - self._started_at

    def arm(self, handle, interval_ms=None, max_wait_ms=None):
        handle.validate()
        if self.state is PollerState.POLLING:
            log.info("Poller: %s superseded by %s", self._describe(self.handle), self._describe(handle))
        self._stop_timers()

        self._generation += 1
        gen = self._generation
        self.handle = handle
        self.interval_ms = interval_ms or self._default_interval(handle)
        self.max_wait_ms = max_wait_ms if max_wait_ms is not None else self._default_max_wait(handle)
        self.state = PollerState.POLLING
        self.outcome = None
        self.error = None
        self.requests_issued = 0
        self._started_at = self._loop.now()
        self._settled_at = None

        log.info(
            "Poller armed: %s (interval=%dms, max_wait=%s)",
            self._describe(handle), self.interval_ms,
            f"{self.max_wait_ms}ms" if self.max_wait_ms else "none",
        )
        if self.max_wait_ms:
            self._deadline_id = self._loop.after(self.max_wait_ms, self._on_deadline, gen)
        self._issue(gen)

    def cancel(self):
        """Back to IDLE. Nothing scheduled fires and late results are dropped."""
        self._generation += 1
        self._stop_timers()
        self._deferred_gen = None
        if self.state is PollerState.POLLING:
            log.info("Poller cancelled: %s", self._describe(self.handle))
        self.state = PollerState.IDLE

    # ── Request cycle ────────────────────────────────────────

    def _issue(self, gen):
        if self._in_flight:
            self._deferred_gen = gen
            return
        self._in_flight = True
        self.requests_issued += 1
        handle = self.handle
        self._runner.submit(
            lambda: self._check(handle),
            lambda status: self._on_result(gen, status),
            lambda exc: self._on_error(gen, exc),
        )

    def _request_done(self):
        self._in_flight = False
        gen, self._deferred_gen = self._deferred_gen, None
        if gen is not None and self._accepts(gen):
            self._issue(gen)

    def _accepts(self, gen):
        return gen == self._generation and self.state is PollerState.POLLING

    def _on_result(self, gen, status):
        self._request_done()
        if not self._accepts(gen):
            log.debug("Poller: discarding late status for generation %d", gen)
            return
        if not isinstance(status, JobStatus):
            status = JobStatus.from_response(status)

        if self.on_status:
            try:
                self.on_status(status)
            except Exception:
                log.exception("Poller: status observer failed for %s", self._describe(self.handle))
        if not self._accepts(gen):
            return

        if status.state is JobState.PENDING:
            self._tick_id = self._loop.after(self.interval_ms, self._tick, gen)
        elif status.state is JobState.COMPLETED:
            self._settle(status, None)
        elif status.state is JobState.FAILED:
            self._settle(status, JobFailed(self.handle, status.message))
        else:
            self._settle(status, JobUnknown(self.handle, status.message))

    def _on_error(self, gen, exc):
        self._request_done()
        if not self._accepts(gen):
            log.debug("Poller: discarding late error for generation %d: %s", gen, exc)
            return
        log.warning("Poller: status check for %s failed: %s", self._describe(self.handle), exc)
        self._settle(JobStatus.unknown(str(exc)), exc)

    def _tick(self, gen):
        self._tick_id = None
        if self._accepts(gen):
            self._issue(gen)

    def _on_deadline(self, gen):
        self._deadline_id = None
        if not self._accepts(gen):
            return
        waited = self._loop.now() - self._started_at
        err = JobTimedOut(self.handle, waited)
        log.warning("Poller: %s", err)
        self._settle(JobStatus.unknown(str(err)), err)

    def _settle(self, status, error):
        self._stop_timers()
        self.state = PollerState.SETTLED
        self.outcome = status
        self.error = error
        self._settled_at = self._loop.now()
        log.info(
            "Poller settled: %s -> %s after %d request(s)",
            self._describe(self.handle), status.state.value, self.requests_issued,
        )
        if self.on_settled:
            self.on_settled(status, error)

    # ── Helpers ──────────────────────────────────────────────

    def _stop_timers(self):
        self._loop.after_cancel(self._tick_id)
        self._loop.after_cancel(self._deadline_id)
        self._tick_id = None
        self._deadline_id = None

    def _default_interval(self, handle):
        if self._settings is not None:
            return self._settings.interval_for(handle.kind)
        return POLL_INTERVAL_MS[handle.kind]

    def _default_max_wait(self, handle):
        if self._settings is not None:
            return self._settings.max_wait_for(handle.kind)
        return POLL_MAX_WAIT_MS.get(handle.kind)

    @staticmethod
    def _describe(handle):
        if handle is None:
            return "<none>"
        return f"{handle.kind.value}[{handle.key}]"
