"""
Constants: version, poll intervals, cache freshness, storage keys, timeouts.
"""

from .jobs import JobKind

CLIENT_VERSION = "1.0.0"

DEFAULT_API_URL = "http://localhost:5000/api"

# ─── Polling ─────────────────────────────────────────────────────
# One interval and one upper bound per job kind (milliseconds).
POLL_INTERVAL_MS = {
    JobKind.EMAIL_VERIFICATION: 3000,
    JobKind.ACCOUNT_DATA_FETCH: 5000,
    JobKind.DASHBOARD_AGGREGATE: 2000,
}

POLL_MAX_WAIT_MS = {
    JobKind.EMAIL_VERIFICATION: 10 * 60 * 1000,
    JobKind.ACCOUNT_DATA_FETCH: 10 * 60 * 1000,
    JobKind.DASHBOARD_AGGREGATE: 5 * 60 * 1000,
}

# ─── Cache ───────────────────────────────────────────────────────
FRESHNESS_WINDOW_MS = 60 * 60 * 1000   # 1 hour

# ─── Screens ─────────────────────────────────────────────────────
FAILED_JOB_REDIRECT_MS = 3000          # Delay before sending the user back to login

SHOPPING_STYLES = ("bulk", "budget", "convenience", "health")

# ─── Price data ──────────────────────────────────────────────────
# Store names used when a product arrives without one and no nearby store is known.
STORE_VARIETY = (
    "Walmart", "Target", "Kroger", "Costco", "Whole Foods", "Safeway",
    "Trader Joe's", "Publix", "Albertsons", "Ralphs", "Aldi", "Meijer",
    "H-E-B", "Wegmans", "Food Lion", "Stop & Shop", "Giant Eagle",
    "ShopRite", "Sprouts", "Fresh Market",
)
UNKNOWN_STORE = "Unknown Store"
DEFAULT_PRICE_PERIOD = "6 weeks"
RANGE_MIN_FROM_MAX = 0.8               # Missing min price = 80% of max
RANGE_MAX_FROM_MIN = 1.2               # Missing max price = 120% of min

# ─── Network ─────────────────────────────────────────────────────
API_TIMEOUT_SEC = 20                   # Per request (connect + read)
STATUS_TIMEOUT_SEC = 10                # Status checks are small; fail fast

# ─── Storage keys (the persisted client-state schema) ────────────
KEY_TOKEN = "token"
KEY_USER = "user"
KEY_PENDING_LOGIN_EMAIL = "pendingLoginEmail"
KEY_PENDING_TOKEN = "pendingToken"
KEY_DASHBOARD_DATA = "dashboardData"
KEY_MY_LIST = "myList"
KEY_LAST_FETCH_TIME = "lastFetchTime"  # Timestamp field inside each cache record

CACHE_KEYS = (KEY_DASHBOARD_DATA, KEY_MY_LIST)
