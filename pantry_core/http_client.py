"""
HTTP session with connection pooling and CA bundle, plus the JSON API client.

Retries are switched off at the adapter: a status check or fetch is issued
exactly once, and the poller / cache decide what happens after a failure.
"""

import os

import certifi
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import log
from .constants import API_TIMEOUT_SEC
from .errors import ApiError, NetworkError

_retry_strategy = Retry(
    total=0,
    connect=0,
    read=0,
    raise_on_status=False,
)


def _get_ca_bundle():
    """CA bundle path: env override first, then certifi."""
    env_ca = os.environ.get("REQUESTS_CA_BUNDLE") or os.environ.get("SSL_CERT_FILE")
    if env_ca and os.path.isfile(env_ca):
        return env_ca
    return certifi.where()


def create_session():
    """Create a new requests.Session with connection pooling and SSL."""
    session = requests.Session()
    adapter = HTTPAdapter(
        pool_connections=1,
        pool_maxsize=4,
        max_retries=_retry_strategy,
    )
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    session.verify = _get_ca_bundle()
    session.headers.update({"Accept": "application/json"})
    return session


def _error_message(resp):
    """Best-effort message from an error body; never raises."""
    fallback = f"Request failed with status {resp.status_code}"
    try:
        body = resp.json()
    except ValueError:
        return fallback, {}
    if isinstance(body, dict):
        message = body.get("message") or body.get("error")
        return (str(message) if message else fallback), body
    return fallback, {}


class ApiClient:
    """
    Thin JSON client over one pooled session.

    request() returns the parsed body for any 2xx, raises NetworkError when
    no response arrives and ApiError(status, message, body) otherwise.
    """

    def __init__(self, base_url, session=None, timeout=API_TIMEOUT_SEC, session_factory=create_session):
        self.base_url = base_url.rstrip("/")
        self._session_factory = session_factory
        self.session = session if session is not None else session_factory()
        self.timeout = timeout

    def url_for(self, path):
        return f"{self.base_url}{path if path.startswith('/') else '/' + path}"

    def request(self, method, path, body=None, auth_token=None, timeout=None):
        url = self.url_for(path)
        headers = {}
        if auth_token:
            headers["Authorization"] = f"Bearer {auth_token}"

        kwargs = {"headers": headers, "timeout": timeout or self.timeout}
        if body is not None:
            kwargs["json"] = body

        try:
            resp = self.session.request(method.upper(), url, **kwargs)
        except requests.RequestException as e:
            log.warning("%s %s network error: %s", method.upper(), path, e)
            if isinstance(e, requests.ConnectionError):
                self.reset()
            raise NetworkError(str(e)) from e

        if 200 <= resp.status_code < 300:
            if not resp.content:
                return None
            try:
                return resp.json()
            except ValueError as e:
                raise ApiError(resp.status_code, "Response was not valid JSON") from e

        message, err_body = _error_message(resp)
        log.warning("%s %s failed: HTTP %d: %s", method.upper(), path, resp.status_code, message)
        raise ApiError(resp.status_code, message, err_body)

    def get(self, path, auth_token=None, **kwargs):
        return self.request("GET", path, auth_token=auth_token, **kwargs)

    def post(self, path, body=None, auth_token=None, **kwargs):
        return self.request("POST", path, body=body, auth_token=auth_token, **kwargs)

    def reset(self):
        """Close and recreate the HTTP session (drops stale pooled connections)."""
        try:
            self.session.close()
        except requests.RequestException as e:
            log.debug("Session close failed: %s", e)
        self.session = self._session_factory()
