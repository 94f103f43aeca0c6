"""
PantryApp: owns the event loop and every shared collaborator.

One instance per process. Screens get the app and pull the loop, runner,
API client, store, cache and session from it; nothing reads module globals.
"""

from .cache import LocalCache
from .config import log, load_settings, state_file
from .constants import CLIENT_VERSION
from .http_client import ApiClient
from .scheduler import EventLoop, ThreadRunner, WallClock
from .session import Session
from .storage import JsonFileStore
from .views import DashboardScreen, LoginScreen, SignupScreen


class PantryApp:
    def __init__(self, settings=None, store=None, loop=None, runner=None,
                 client=None, wall_clock=None):
        self.settings = settings or load_settings()
        self.loop = loop or EventLoop()
        self.runner = runner or ThreadRunner(self.loop)
        self.client = client or ApiClient(self.settings.api_url)
        self.store = store if store is not None else JsonFileStore(state_file())
        self.cache = LocalCache(
            self.store,
            clock=wall_clock or WallClock(),
            window_ms=self.settings.freshness_window_ms,
        )
        self.session = Session(self.store, self.cache)
        log.info("Pantry client v%s (api=%s)", CLIENT_VERSION, self.settings.api_url)

    # ── Screens ──────────────────────────────────────────────

    def signup_screen(self, navigate=None):
        return SignupScreen(self, navigate)

    def login_screen(self, navigate=None):
        return LoginScreen(self, navigate)

    def dashboard_screen(self, navigate=None):
        return DashboardScreen(self, navigate)

    # ── Loop ─────────────────────────────────────────────────

    def run_until(self, predicate, timeout_sec=None):
        """Drive the loop until predicate() holds (or timeout). Returns predicate()."""
        deadline = None
        if timeout_sec is not None:
            deadline = self.loop.now() + timeout_sec * 1000

        def done():
            if predicate():
                return True
            return deadline is not None and self.loop.now() >= deadline

        self.loop.mainloop(until=done)
        return predicate()
