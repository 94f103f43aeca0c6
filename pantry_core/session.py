"""
Session: the stored credential and user profile.

Starts on login, ends on logout. Ending a session wipes the credential, the
profile, any pending-login bookkeeping and every cache entry.
"""

from .config import log
from .constants import (
    KEY_PENDING_LOGIN_EMAIL, KEY_PENDING_TOKEN, KEY_TOKEN, KEY_USER,
)


def profile_from_register(user):
    """Normalise the user object returned by /users/register."""
    first = user.get("firstName", "")
    last = user.get("lastName", "")
    return {
        "id": user.get("_id") or user.get("id"),
        "firstName": first,
        "lastName": last,
        "fullName": f"{first} {last}".strip(),
        "email": user.get("email"),
        "zipCode": user.get("zipCode"),
        "shoppingStyle": user.get("shoppingStyle"),
    }


class Session:
    def __init__(self, store, cache):
        self._store = store
        self._cache = cache

    @property
    def token(self):
        return self._store.get(KEY_TOKEN)

    @property
    def user(self):
        return self._store.get(KEY_USER)

    @property
    def user_id(self):
        user = self.user or {}
        return user.get("id") or user.get("_id")

    @property
    def is_active(self) -> bool:
        return bool(self.token and self.user)

    def start(self, token, user):
        if not token:
            raise ValueError("token is required to start a session")
        self._store.set(KEY_TOKEN, token)
        self._store.set(KEY_USER, user or {})
        self._store.remove(KEY_PENDING_TOKEN)
        log.info("Session started for %s", (user or {}).get("email", "<unknown>"))

    def end(self):
        email = (self.user or {}).get("email", "<unknown>")
        for key in (KEY_TOKEN, KEY_USER, KEY_PENDING_LOGIN_EMAIL, KEY_PENDING_TOKEN):
            self._store.remove(key)
        self._cache.invalidate_all()
        log.info("Session ended for %s", email)

    # ── Pending login (account still being prepared) ─────────

    @property
    def pending_login_email(self):
        return self._store.get(KEY_PENDING_LOGIN_EMAIL)

    def set_pending_login(self, email):
        self._store.set(KEY_PENDING_LOGIN_EMAIL, email)

    def clear_pending_login(self):
        self._store.remove(KEY_PENDING_LOGIN_EMAIL)

    # ── Pending token (registered, data still being fetched) ─

    @property
    def pending_token(self):
        return self._store.get(KEY_PENDING_TOKEN)

    def set_pending_token(self, token):
        self._store.set(KEY_PENDING_TOKEN, token)
