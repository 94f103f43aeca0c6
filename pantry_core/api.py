"""
Server API calls: account lifecycle, job status checks, dashboard, list,
search and pantry data.

All functions are blocking. Screens run them through a runner
(see scheduler.py) so the event loop never waits on the network.
"""

from .config import log
from .constants import (
    DEFAULT_PRICE_PERIOD, RANGE_MAX_FROM_MIN, RANGE_MIN_FROM_MAX, STATUS_TIMEOUT_SEC,
    STORE_VARIETY, UNKNOWN_STORE,
)
from .errors import PantryError
from .jobs import JobKind, JobStatus


# ─── Account ─────────────────────────────────────────────────────

def register(client, form):
    return client.post("/users/register", body=form)


def verify_email(client, email, code):
    return client.post("/users/verify-email", body={"email": email, "code": code})


def resend_verification(client, email):
    return client.post("/users/resend-verification", body={"email": email})


def check_email_verification(client, email):
    """
    True when the address is verified. Any failure counts as verified
    so a flaky check never locks the user out of login.
    """
    try:
        result = client.post("/users/check-email-verification", body={"email": email})
    except PantryError as e:
        log.warning("Email verification check failed (assuming verified): %s", e)
        return True
    if isinstance(result, dict) and "verified" in result:
        return bool(result["verified"])
    return True


def login(client, email, password):
    return client.post("/users/login", body={"email": email, "password": password})


# ─── Job status ──────────────────────────────────────────────────

def data_fetch_status_by_email(client, email):
    return client.post(
        "/users/data-fetch-status-by-email",
        body={"email": email},
        timeout=STATUS_TIMEOUT_SEC,
    )


def data_fetch_status_for_user(client, user_id):
    return client.get(f"/users/data-fetch-status/{user_id}", timeout=STATUS_TIMEOUT_SEC)


def data_fetch_status(client, token):
    return client.get("/users/data-fetch-status", auth_token=token, timeout=STATUS_TIMEOUT_SEC)


def status_checker(client, token=None):
    """
    Build the poller's check function: handle -> JobStatus.

      EMAIL_VERIFICATION   POST /users/data-fetch-status-by-email  (key = e-mail)
      ACCOUNT_DATA_FETCH   GET  /users/data-fetch-status[/:userId] (key = user id)
      DASHBOARD_AGGREGATE  GET  /users/data-fetch-status           (bearer)

    Network and API errors propagate; the poller turns them into UNKNOWN.
    """

    def check(handle):
        if handle.kind is JobKind.EMAIL_VERIFICATION:
            body = data_fetch_status_by_email(client, handle.key)
        elif handle.kind is JobKind.ACCOUNT_DATA_FETCH:
            if token:
                body = data_fetch_status(client, token)
            else:
                body = data_fetch_status_for_user(client, handle.key)
        elif handle.kind is JobKind.DASHBOARD_AGGREGATE:
            body = data_fetch_status(client, token)
        else:
            raise ValueError(f"No status endpoint for {handle.kind!r}")
        return JobStatus.from_response(body)

    return check


# ─── Dashboard ───────────────────────────────────────────────────

def fetch_dashboard(client, token):
    return client.get("/dashboard", auth_token=token)


def fetch_price_trends(client, token):
    data = client.get("/dashboard/price-trends", auth_token=token) or {}
    return data.get("trends", [])


# ─── Shopping list and search ────────────────────────────────────

def fetch_my_list(client, token):
    data = client.get("/search/my-list", auth_token=token) or {}
    return data.get("items", [])


def add_to_list(client, token, product_id):
    return client.post("/search/add-to-list", body={"productId": product_id}, auth_token=token)


def remove_from_list(client, token, product_id):
    return client.post("/search/remove-from-list", body={"productId": product_id}, auth_token=token)


def search_products(client, token, query):
    data = client.post("/search/products", body={"query": query}, auth_token=token) or {}
    return data.get("products", [])


# ─── Pantry ──────────────────────────────────────────────────────

def fetch_my_pantry(client, token):
    data = client.get("/pantry-items/my-pantry", auth_token=token) or {}
    return data.get("pantryItems", [])


def fetch_my_pantry_trends(client, token):
    data = client.get("/pantry-items/my-pantry/trends", auth_token=token) or {}
    return data.get("pantryTrends", [])


def add_pantry_item(client, token, item):
    return client.post("/pantry-items/my-pantry", body=item, auth_token=token)


# ─── Bulk buy ────────────────────────────────────────────────────

def save_bulk_calculation(client, token, calculation):
    return client.post("/bulk-buy/save-calculation", body=calculation, auth_token=token)


# ─── Response shaping ────────────────────────────────────────────

def _number(value):
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def _fallback_store(index, stores):
    if stores:
        store = stores[index % len(stores)]
        if isinstance(store, dict) and (store.get("name") or store.get("chainName")):
            return store.get("name") or store.get("chainName")
    return STORE_VARIETY[index % len(STORE_VARIETY)]


def ensure_price_data(products, stores=None):
    """
    Give every product a `lowestPrice {price, store}` and a complete
    `priceRange {min, max, period}`.

    A missing store comes from the nearby stores (by position), else from
    STORE_VARIETY. A missing range bound is derived from the other one; with
    both missing the range collapses onto the lowest price. A price that is
    absent or not positive is reported as None, never invented.
    """
    result = []
    for index, product in enumerate(products or []):
        if not isinstance(product, dict):
            continue
        lowest = product.get("lowestPrice") or {}
        store = lowest.get("store")
        if not store or store == UNKNOWN_STORE:
            store = _fallback_store(index, stores)
        price = _number(lowest.get("price"))
        price = price if price > 0 else None

        price_range = product.get("priceRange") or {}
        low, high = _number(price_range.get("min")), _number(price_range.get("max"))
        if low <= 0 and high > 0:
            low = round(high * RANGE_MIN_FROM_MAX, 2)
        elif high <= 0 and low > 0:
            high = round(low * RANGE_MAX_FROM_MIN, 2)
        elif low <= 0 and high <= 0:
            low = high = price

        result.append({
            **product,
            "lowestPrice": {"price": price, "store": store},
            "priceRange": {
                "min": low,
                "max": high,
                "period": price_range.get("period") or DEFAULT_PRICE_PERIOD,
            },
        })
    return result


def format_dashboard(data):
    """Fill in the collections the screen expects and normalise item prices."""
    data = data or {}
    stores = data.get("stores") or []
    return {
        "stores": stores,
        "pantryItems": ensure_price_data(data.get("pantryItems"), stores),
        "produceItems": ensure_price_data(data.get("produceItems"), stores),
        "buyAlerts": ensure_price_data(data.get("buyAlerts"), stores),
        "newsHighlights": data.get("newsHighlights") or [],
    }


def is_pending_response(data):
    """A 2xx body that says the aggregate is still being prepared."""
    return isinstance(data, dict) and str(data.get("status", "")).lower() == "pending"
