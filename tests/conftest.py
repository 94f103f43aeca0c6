import json
from collections import defaultdict
from urllib.parse import urlparse

import pytest
import requests

from pantry_core.app import PantryApp
from pantry_core.config import Settings
from pantry_core.http_client import ApiClient
from pantry_core.scheduler import EventLoop, InlineRunner, ManualClock
from pantry_core.storage import MemoryStore

API_URL = "http://api.test/api"
T0 = 1_700_000_000_000.0


def make_response(status=200, body=None, text=None):
    """A real requests.Response with a canned body."""
    resp = requests.Response()
    resp.status_code = status
    resp.encoding = "utf-8"
    if body is not None:
        resp._content = json.dumps(body).encode("utf-8")
        resp.headers["Content-Type"] = "application/json"
    elif text is not None:
        resp._content = text.encode("utf-8")
    else:
        resp._content = b""
    return resp


class FakeHttpSession:
    """
    Stands in for requests.Session. Routes are keyed by (METHOD, path) with
    the path relative to API_URL. Each route holds a list of responses (or
    exceptions to raise); the last one repeats once the list runs out.
    """

    def __init__(self):
        self.routes = defaultdict(list)
        self.calls = []

    def add(self, method, path, *responses):
        self.routes[(method.upper(), path)].extend(responses)
        return self

    def request(self, method, url, **kwargs):
        path = urlparse(url).path[len(urlparse(API_URL).path):]
        self.calls.append({"method": method, "path": path, "url": url, **kwargs})
        queue = self.routes.get((method, path))
        if not queue:
            return make_response(404, {"message": f"no route for {method} {path}"})
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, BaseException):
            raise item
        return item

    def count(self, method, path):
        return sum(1 for c in self.calls if c["method"] == method and c["path"] == path)

    def close(self):
        pass


class DeferredRunner:
    """Holds submitted calls until the test completes them, one at a time."""

    def __init__(self, loop):
        self._loop = loop
        self.pending = []
        self.submitted = 0
        self.max_outstanding = 0

    def submit(self, fn, on_result, on_error):
        self.pending.append((fn, on_result, on_error))
        self.submitted += 1
        self.max_outstanding = max(self.max_outstanding, len(self.pending))

    def complete_next(self):
        fn, on_result, on_error = self.pending.pop(0)
        try:
            result = fn()
        except Exception as e:
            self._loop.call_soon(on_error, e)
        else:
            self._loop.call_soon(on_result, result)
        self._loop.run_pending()


@pytest.fixture(autouse=True)
def pantry_home(tmp_path, monkeypatch):
    monkeypatch.setenv("PANTRY_HOME", str(tmp_path / "pantry-home"))
    monkeypatch.delenv("PANTRY_API_URL", raising=False)
    monkeypatch.delenv("PANTRY_FRESHNESS_SEC", raising=False)
    return tmp_path / "pantry-home"


@pytest.fixture
def clock():
    return ManualClock(T0)


@pytest.fixture
def loop(clock):
    return EventLoop(clock)


@pytest.fixture
def http():
    return FakeHttpSession()


@pytest.fixture
def client(http):
    return ApiClient(API_URL, session=http, session_factory=lambda: http)


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def settings():
    return Settings(api_url=API_URL)


@pytest.fixture
def app(settings, store, loop, client, clock):
    return PantryApp(
        settings=settings,
        store=store,
        loop=loop,
        runner=InlineRunner(loop),
        client=client,
        wall_clock=clock,
    )


@pytest.fixture
def routes():
    return []
