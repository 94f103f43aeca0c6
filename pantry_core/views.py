"""
Screen models: the per-screen state machine and the three screens that wait
on backend jobs (signup, login, dashboard).

    IDLE -> LOADING -> READY | ERROR
               |
               +--> AWAITING_JOB -> READY | ERROR
    READY | ERROR -> LOADING   (retry / resubmit)

A screen is a plain object a renderer reads: `state`, `content` (only while
READY), `message`, `field_errors`, `stale`, `progress`. All callbacks run on
the app's event loop. After unmount() nothing a late request or a stale
poller tick delivers changes the screen.
"""

from enum import Enum
from urllib.parse import quote, urlencode

from . import api
from .cache import serve_fresh, serve_stale, store_fetched
from .config import log
from .constants import (
    FAILED_JOB_REDIRECT_MS, KEY_DASHBOARD_DATA, KEY_MY_LIST, SHOPPING_STYLES,
)
from .errors import ApiError, NetworkError, PantryError, ValidationError
from .jobs import JobHandle, JobKind, JobState
from .poller import Poller
from .session import profile_from_register


class ViewState(Enum):
    IDLE = "idle"
    LOADING = "loading"
    AWAITING_JOB = "awaiting_job"
    READY = "ready"
    ERROR = "error"


_ALLOWED = {
    ViewState.IDLE: {ViewState.LOADING},
    ViewState.LOADING: {ViewState.READY, ViewState.ERROR, ViewState.AWAITING_JOB},
    ViewState.AWAITING_JOB: {ViewState.READY, ViewState.ERROR},
    ViewState.READY: {ViewState.LOADING},
    ViewState.ERROR: {ViewState.LOADING},
}


class InvalidTransition(RuntimeError):
    pass


# ─── Form validation ─────────────────────────────────────────────

def _looks_like_email(value):
    return isinstance(value, str) and "@" in value and "." in value


def validate_signup(form):
    errors = {}
    if len((form.get("firstName") or "").strip()) < 2:
        errors["firstName"] = "First name must be at least 2 characters."
    if len((form.get("lastName") or "").strip()) < 2:
        errors["lastName"] = "Last name must be at least 2 characters."
    if not _looks_like_email(form.get("email")):
        errors["email"] = "Please enter a valid email address."
    if len(form.get("password") or "") < 8:
        errors["password"] = "Password must be at least 8 characters."
    if len((form.get("zipCode") or "").strip()) < 5:
        errors["zipCode"] = "Please enter a valid ZIP code."
    if form.get("shoppingStyle", "bulk") not in SHOPPING_STYLES:
        errors["shoppingStyle"] = "Please choose a shopping style."
    return errors


def validate_login(email, password):
    errors = {}
    if not _looks_like_email(email):
        errors["email"] = "Please enter a valid email address."
    if not password:
        errors["password"] = "Password is required."
    return errors


def _error_text(exc, fallback):
    if isinstance(exc, ApiError):
        return exc.message or fallback
    if isinstance(exc, NetworkError):
        return "Cannot reach the server. Check your connection and try again."
    return str(exc) or fallback


# ─── Base screen ─────────────────────────────────────────────────

class Screen:
    """
    Shared plumbing: state transitions, request generations, one poller.

    Subclasses implement _job_completed / _job_failed, which are called at
    most once per armed job.
    """

    name = "screen"

    def __init__(self, app, navigate=None):
        self.app = app
        self._navigate = navigate
        self.state = ViewState.IDLE
        self.data = None
        self.message = None
        self.error = None
        self.field_errors = {}
        self.stale = False
        self.progress = None
        self.job = None
        self.mounted = True

        self._listeners = []
        self._request_gen = 0
        self._redirect_id = None
        self._job_token = None
        self._job_resolved = False
        self.poller = Poller(
            app.loop, app.runner, self._check_job, app.settings,
            on_status=self._on_job_status,
            on_settled=self._on_job_settled,
        )

    # ── Rendering surface ────────────────────────────────────

    @property
    def content(self):
        """Ready content; None in every other state."""
        return self.data if self.state is ViewState.READY else None

    @property
    def busy(self) -> bool:
        return self.state in (ViewState.LOADING, ViewState.AWAITING_JOB)

    def subscribe(self, callback):
        self._listeners.append(callback)

    # ── Lifecycle ────────────────────────────────────────────

    def unmount(self):
        """Cancel the poller and make every outstanding callback a no-op."""
        self.mounted = False
        self._request_gen += 1
        self.poller.cancel()
        self.app.loop.after_cancel(self._redirect_id)
        self._redirect_id = None
        log.info("%s unmounted", self.name)

    # ── State machine ────────────────────────────────────────

    def _transition(self, new):
        if new not in _ALLOWED[self.state]:
            raise InvalidTransition(f"{self.name}: {self.state.value} -> {new.value}")
        log.debug("%s: %s -> %s", self.name, self.state.value, new.value)
        self.state = new
        for callback in list(self._listeners):
            callback(self)

    def _begin(self):
        """Enter LOADING for a new primary action. False when already busy."""
        if not self.mounted:
            return False
        if self.busy:
            log.warning("%s: ignoring action while %s", self.name, self.state.value)
            return False
        self.field_errors = {}
        self.error = None
        self.message = None
        self._transition(ViewState.LOADING)
        return True

    def _ready(self, data=None, message=None, stale=False):
        self.data = data
        self.message = message
        self.stale = stale
        self.error = None
        self._transition(ViewState.READY)

    def _fail(self, message, error=None):
        self.message = message
        self.error = error
        self._transition(ViewState.ERROR)

    def _go(self, route):
        log.info("%s: navigate -> %s", self.name, route)
        if self._navigate is not None:
            self._navigate(route)

    def _redirect_later(self, route, delay_ms=FAILED_JOB_REDIRECT_MS):
        self.app.loop.after_cancel(self._redirect_id)
        self._redirect_id = self.app.loop.after(delay_ms, self._fire_redirect, route)

    def _fire_redirect(self, route):
        self._redirect_id = None
        if self.mounted:
            self._go(route)

    # ── Requests ─────────────────────────────────────────────

    def _run(self, fn, on_result, on_error):
        """Run a blocking call; drop its outcome if a newer request or unmount happened."""
        self._request_gen += 1
        gen = self._request_gen

        def deliver(callback):
            def wrapped(value):
                if gen != self._request_gen or not self.mounted:
                    log.debug("%s: discarding late response", self.name)
                    return
                callback(value)
            return wrapped

        self.app.runner.submit(fn, deliver(on_result), deliver(on_error))

    # ── Jobs ─────────────────────────────────────────────────

    def _await_job(self, handle, token=None, message=None):
        """LOADING -> AWAITING_JOB, then arm the poller."""
        try:
            handle.validate()
        except ValidationError as e:
            log.error("%s: cannot wait on job: %s", self.name, e)
            self._fail("Something went wrong while setting up your account. Please try again.", e)
            return
        self.job = handle
        self._job_token = token
        self._job_resolved = False
        self.progress = None
        self.data = None
        if message is not None:
            self.message = message
        self._transition(ViewState.AWAITING_JOB)
        self.poller.arm(handle)

    def _check_job(self, handle):
        return api.status_checker(self.app.client, self._job_token)(handle)

    def _on_job_status(self, status):
        if status.progress is not None:
            self.progress = status.progress
        if status.state is JobState.PENDING and status.message:
            self.message = status.message

    def _on_job_settled(self, status, error):
        if self._job_resolved or not self.mounted:
            return
        self._job_resolved = True
        if status.state is JobState.COMPLETED:
            self._job_completed(status)
        else:
            self._job_failed(status, error)

    def _job_completed(self, status):
        raise NotImplementedError

    def _job_failed(self, status, error):
        raise NotImplementedError


# ─── Signup ──────────────────────────────────────────────────────

class SignupScreen(Screen):
    """
    Register, then wait for the backend to prepare the account's product data.
    The token from registration is parked as the pending token; the session
    itself starts when the user signs in.
    """

    name = "signup"

    COMPLETED_MESSAGE = "Registration complete! You can now sign in."
    FAILED_MESSAGE = (
        "Data preparation failed. You can still log in, "
        "but some product data may be missing."
    )
    VERIFIED_MESSAGE = "Your email is verified. You can now sign in."

    def __init__(self, app, navigate=None):
        super().__init__(app, navigate)
        self.user = None

    def submit(self, form):
        errors = validate_signup(form)
        if errors:
            self.field_errors = errors
            return False
        if not self._begin():
            return False
        form = dict(form)
        form.setdefault("shoppingStyle", "bulk")
        self._run(lambda: api.register(self.app.client, form), self._on_registered, self._on_action_error)
        return True

    def _on_registered(self, result):
        outcome = self._registration_outcome(result)
        if isinstance(outcome, JobHandle):
            self._await_job(
                outcome,
                token=self.app.session.pending_token,
                message="Setting up your account. This can take a minute...",
            )
        else:
            self._ready(outcome, self.COMPLETED_MESSAGE)
            self._go(self._login_route(self.COMPLETED_MESSAGE))

    def _registration_outcome(self, result):
        """The registered profile, or a JobHandle when data is still being prepared."""
        result = result or {}
        token = result.get("token")
        self.user = profile_from_register(result.get("user") or {})
        if token:
            self.app.session.set_pending_token(token)
        if str(result.get("dataFetchStatus", "pending")).lower() == "completed":
            return self.user
        return JobHandle(self.user.get("id") or "", JobKind.ACCOUNT_DATA_FETCH)

    def verify_email(self, email, code):
        errors = {}
        if not _looks_like_email(email):
            errors["email"] = "Please enter a valid email address."
        if not (code or "").strip():
            errors["code"] = "Please enter the verification code."
        if errors:
            self.field_errors = errors
            return False
        if not self._begin():
            return False
        self._run(
            lambda: api.verify_email(self.app.client, email, code.strip()),
            lambda result: self._on_verified(email, result),
            self._on_action_error,
        )
        return True

    def _on_verified(self, email, result):
        result = result or {}
        if str(result.get("dataFetchStatus", "")).lower() == "pending" or api.is_pending_response(result):
            self._await_job(
                JobHandle(email, JobKind.EMAIL_VERIFICATION),
                message="Email verified. Preparing your account...",
            )
            return
        self._ready(result, self.VERIFIED_MESSAGE)
        self._go(self._login_route(self.VERIFIED_MESSAGE))

    def resend_verification(self, email):
        if not _looks_like_email(email):
            self.field_errors = {"email": "Please enter a valid email address."}
            return False
        if not self._begin():
            return False
        self._run(
            lambda: api.resend_verification(self.app.client, email),
            lambda result: self._ready(
                result, (result or {}).get("message") or "Verification email sent. Check your inbox.",
            ),
            self._on_action_error,
        )
        return True

    def _on_action_error(self, exc):
        log.warning("Signup action failed: %s", exc)
        self._fail(_error_text(exc, "Failed to create account"), exc)

    def _job_completed(self, status):
        self._ready(self.user, self.COMPLETED_MESSAGE)
        self._go(self._login_route(self.COMPLETED_MESSAGE))

    def _job_failed(self, status, error):
        self._fail(self.FAILED_MESSAGE, error)
        self._redirect_later("/login")

    @staticmethod
    def _login_route(message):
        return "/login?" + urlencode({"message": message}, quote_via=quote)


# ─── Login ───────────────────────────────────────────────────────

class LoginScreen(Screen):
    """
    Sign in. When the account is still being prepared the e-mail is parked as
    pendingLoginEmail and the screen waits on the EMAIL_VERIFICATION job; a
    later mount() resumes that wait.
    """

    name = "login"

    SETTING_UP_MESSAGE = "Your account is still being set up. Please wait a moment before signing in."
    READY_MESSAGE = "Your account is ready! You can now sign in."
    SETUP_FAILED_MESSAGE = "We couldn't finish setting up your account. Please try signing in again."

    def __init__(self, app, navigate=None):
        super().__init__(app, navigate)
        self.email = ""

    def mount(self, message=None):
        if message:
            self.message = message
        pending = self.app.session.pending_login_email
        if pending:
            self.email = pending
            if self._begin():
                self._await_job(JobHandle(pending, JobKind.EMAIL_VERIFICATION), message=self.SETTING_UP_MESSAGE)

    def submit(self, email, password):
        errors = validate_login(email, password)
        if errors:
            self.field_errors = errors
            return False
        if not self._begin():
            return False
        self.email = email
        self._run(lambda: self._login_flow(email, password), self._on_login, self._on_login_error)
        return True

    def _login_flow(self, email, password):
        if not api.check_email_verification(self.app.client, email):
            return None
        return api.login(self.app.client, email, password)

    def _on_login(self, result):
        if result is None:
            self._ready(message="Please verify your email address first.")
            self._go("/signup?" + urlencode({"email": self.email, "needsVerification": "true"}))
            return
        token = result.get("token")
        if not token:
            self._fail("Login response did not include a token.")
            return
        self.app.session.clear_pending_login()
        self.app.session.start(token, result.get("user") or {})
        self._ready(result.get("user"))
        self._go("/dashboard")

    def _on_login_error(self, exc):
        if isinstance(exc, ApiError) and str(exc.body.get("dataFetchStatus", "")).lower() == "pending":
            self.app.session.set_pending_login(self.email)
            self._await_job(JobHandle(self.email, JobKind.EMAIL_VERIFICATION), message=self.SETTING_UP_MESSAGE)
            return
        log.warning("Login failed: %s", exc)
        self._fail(_error_text(exc, "Failed to login"), exc)

    def _job_completed(self, status):
        self.app.session.clear_pending_login()
        self._ready(message=self.READY_MESSAGE)

    def _job_failed(self, status, error):
        # A check that never got an answer keeps the pending e-mail for next time.
        if not isinstance(error, (NetworkError, ApiError)):
            self.app.session.clear_pending_login()
        message = self.SETUP_FAILED_MESSAGE
        if status.state is JobState.FAILED and status.message:
            message = status.message
        self._fail(message, error)


# ─── Dashboard ───────────────────────────────────────────────────

def validate_pantry_item(item):
    errors = {}
    if not str(item.get("name") or "").strip():
        errors["name"] = "Please enter an item name."
    try:
        quantity = float(item.get("quantity", 1))
    except (TypeError, ValueError):
        quantity = 0
    if quantity <= 0:
        errors["quantity"] = "Quantity must be greater than zero."
    return errors


class DashboardScreen(Screen):
    """
    Nearby store aggregate + shopping list, served from cache while fresh.

    A failed refresh with a cached copy renders that copy with stale=True
    ("may be outdated") instead of an error. A `{status: "pending"}` body
    means the aggregate is still being built: wait on the job, then refetch.

    Shopping list, search, pantry items and trends are background loads.
    Their failures never change `state`, and their results are dropped once
    the screen is unmounted or the session changes. Cache writes for them
    happen on the loop, after that check.
    """

    name = "dashboard"

    STALE_MESSAGE = "Showing saved data. Prices may be outdated."

    def __init__(self, app, navigate=None):
        super().__init__(app, navigate)
        self.user = None
        self.from_cache = False
        self.my_list = []
        self.list_stale = False
        self.list_error = None
        self.price_trends = []
        self.my_pantry = []
        self.pantry_trends = []
        self.pantry_error = None
        self.search_query = ""
        self.search_results = []
        self.search_error = None
        self.searching = False
        self._list_gen = 0
        self._search_gen = 0

    def mount(self):
        if not self.app.session.is_active:
            self._go("/login")
            return False
        self.user = self.app.session.user
        self.load()
        return True

    def load(self, force=False):
        if not self._begin():
            return False
        token = self.app.session.token
        entry, cached = serve_fresh(self.app.cache, KEY_DASHBOARD_DATA, force=force)
        if cached is not None:
            log.info("Dashboard served from cache (age %.0fs)", entry.age_ms(self.app.cache.now()) / 1000)
            self.from_cache = True
            self._ready(api.format_dashboard(cached.value))
        else:
            self._fetch_dashboard(token, after_job=False)
        self.load_list(force=force)
        self._load_price_trends(token)
        self.load_pantry()
        return True

    def retry(self):
        return self.load(force=True)

    def logout(self):
        self.unmount()
        self.app.session.end()
        self._go("/login")

    # ── Aggregate ────────────────────────────────────────────

    def _fetch_dashboard(self, token, after_job):
        self._run(
            lambda: api.fetch_dashboard(self.app.client, token),
            lambda data: self._on_dashboard(data, after_job),
            self._on_dashboard_error,
        )

    def _on_dashboard(self, data, after_job):
        if api.is_pending_response(data):
            if after_job:
                self._on_dashboard_error(PantryError("Dashboard data is still being prepared."))
                return
            self._await_job(
                JobHandle(str(self.app.session.user_id or "me"), JobKind.DASHBOARD_AGGREGATE),
                token=self.app.session.token,
                message="Gathering prices from stores near you...",
            )
            return
        formatted = api.format_dashboard(data)
        self.app.cache.write(KEY_DASHBOARD_DATA, formatted)
        self.from_cache = False
        self._ready(formatted)

    def _on_dashboard_error(self, exc):
        entry = self.app.cache.read(KEY_DASHBOARD_DATA)
        if entry is not None:
            log.warning("Dashboard refresh failed, using cached copy: %s", exc)
            self.from_cache = True
            self._ready(api.format_dashboard(entry.value), self.STALE_MESSAGE, stale=True)
            return
        log.error("Dashboard fetch failed with nothing cached: %s", exc)
        self._fail(_error_text(exc, "Failed to load dashboard data. Please try again later."), exc)

    def _job_completed(self, status):
        self._fetch_dashboard(self.app.session.token, after_job=True)

    def _job_failed(self, status, error):
        self._on_dashboard_error(error or PantryError(status.message or "Dashboard job failed"))

    # ── Background loads ─────────────────────────────────────

    def _background(self, token, fn, on_result, on_error):
        """Submit a non-critical call whose outcome only lands while mounted under `token`."""

        def guard(callback):
            def wrapped(value):
                if not self.mounted or self.app.session.token != token:
                    log.debug("%s: dropping background result", self.name)
                    return
                callback(value)
            return wrapped

        self.app.runner.submit(fn, guard(on_result), guard(on_error))

    def _token_or_login(self):
        token = self.app.session.token
        if not token:
            self._go("/login")
        return token

    def _stores(self):
        data = self.data if isinstance(self.data, dict) else {}
        return data.get("stores") or []

    # ── Shopping list ────────────────────────────────────────

    def load_list(self, force=False):
        token = self.app.session.token
        cache = self.app.cache
        self._list_gen += 1
        gen = self._list_gen

        entry, cached = serve_fresh(cache, KEY_MY_LIST, force=force)
        if cached is not None:
            self._show_list(cached)
            return

        def on_result(items):
            if gen == self._list_gen:
                self._show_list(store_fetched(cache, KEY_MY_LIST, api.ensure_price_data(items, self._stores())))

        def on_error(exc):
            if gen != self._list_gen:
                return
            if entry is not None:
                self._show_list(serve_stale(KEY_MY_LIST, entry, exc))
                return
            log.warning("Failed to load shopping list: %s", exc)
            self.list_error = "Failed to load your list"

        self._background(token, lambda: api.fetch_my_list(self.app.client, token), on_result, on_error)

    def _show_list(self, result):
        self.my_list = api.ensure_price_data(result.value, self._stores())
        self.list_stale = result.stale
        self.list_error = None

    def add_to_list(self, product_id):
        token = self._token_or_login()
        if not token:
            return False

        def on_error(exc):
            log.warning("Add to list failed: %s", exc)
            self.list_error = "Failed to add item to your list"

        self._background(
            token,
            lambda: api.add_to_list(self.app.client, token, product_id),
            lambda _: self.load_list(force=True),
            on_error,
        )
        return True

    def remove_from_list(self, product_id):
        token = self._token_or_login()
        if not token:
            return False

        def on_result(_):
            self.my_list = [item for item in self.my_list if item.get("id") != product_id]
            self.app.cache.write(KEY_MY_LIST, self.my_list)

        def on_error(exc):
            log.warning("Remove from list failed: %s", exc)
            self.list_error = "Failed to remove item from your list"

        self._background(
            token,
            lambda: api.remove_from_list(self.app.client, token, product_id),
            on_result,
            on_error,
        )
        return True

    # ── Search ───────────────────────────────────────────────

    def search(self, query):
        """Product search. A newer search supersedes one still in flight."""
        query = (query or "").strip()
        if not query:
            return False
        token = self._token_or_login()
        if not token:
            return False
        self._search_gen += 1
        gen = self._search_gen
        self.search_query = query
        self.search_results = []
        self.search_error = None
        self.searching = True

        def on_result(products):
            if gen != self._search_gen:
                return
            self.searching = False
            self.search_results = api.ensure_price_data(products, self._stores())

        def on_error(exc):
            if gen != self._search_gen:
                return
            self.searching = False
            log.warning("Search for %r failed: %s", query, exc)
            self.search_error = "Search failed. Please try again."

        self._background(token, lambda: api.search_products(self.app.client, token, query), on_result, on_error)
        return True

    # ── Pantry ───────────────────────────────────────────────

    def load_pantry(self):
        token = self.app.session.token

        def on_items(items):
            self.my_pantry = list(items or [])

        def on_trends(trends):
            self.pantry_trends = list(trends or [])

        def on_error(exc):
            log.info("Pantry data unavailable: %s", exc)

        self._background(token, lambda: api.fetch_my_pantry(self.app.client, token), on_items, on_error)
        self._background(token, lambda: api.fetch_my_pantry_trends(self.app.client, token), on_trends, on_error)

    def add_pantry_item(self, item):
        errors = validate_pantry_item(item)
        if errors:
            self.field_errors = errors
            return False
        token = self._token_or_login()
        if not token:
            return False
        self.field_errors = {}
        self.pantry_error = None

        def on_error(exc):
            log.warning("Add pantry item failed: %s", exc)
            self.pantry_error = _error_text(exc, "Failed to add item to your pantry")

        self._background(
            token,
            lambda: api.add_pantry_item(self.app.client, token, dict(item)),
            lambda _: self.load_pantry(),
            on_error,
        )
        return True

    # ── Price trends ─────────────────────────────────────────

    def _load_price_trends(self, token):
        def on_result(trends):
            self.price_trends = list(trends or [])

        def on_error(exc):
            log.info("Price trends unavailable: %s", exc)

        self._background(token, lambda: api.fetch_price_trends(self.app.client, token), on_result, on_error)
