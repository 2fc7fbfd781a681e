import json
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Ensure the repository root is importable when pytest runs from elsewhere.
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))


class FakeResponse:
    def __init__(self, status, body):
        self.status = status
        if body is None:
            self._text = ""
        elif isinstance(body, str):
            self._text = body
        else:
            self._text = json.dumps(body)

    async def text(self, errors="strict"):
        return self._text

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class Call:
    def __init__(self, method, url, kwargs):
        self.method = method
        self.url = url
        self.headers = kwargs.get("headers") or {}
        self.params = kwargs.get("params") or {}
        self.json = kwargs.get("json")
        self.data = kwargs.get("data")


class FakeSession:
    """Stands in for aiohttp.ClientSession at the transport boundary.

    Routes match on method + URL substring. Each route holds a queue of
    responses; the last one repeats. A response is a dict body (HTTP 200),
    a ``(status, body)`` tuple, an exception to raise, or a callable taking
    the ``Call`` and returning one of those.
    """

    def __init__(self):
        self.routes = []
        self.calls = []

    def add(self, method, fragment, *responses):
        self.routes.append([method.upper(), fragment, list(responses)])
        return self

    def calls_to(self, fragment):
        return [c for c in self.calls if fragment in c.url]

    def request(self, method, url, **kwargs):
        call = Call(method.upper(), url, kwargs)
        self.calls.append(call)
        for route in self.routes:
            m, fragment, queue = route
            if m == call.method and fragment in url:
                resp = queue.pop(0) if len(queue) > 1 else queue[0]
                if callable(resp) and not isinstance(resp, BaseException):
                    resp = resp(call)
                if isinstance(resp, BaseException):
                    raise resp
                if isinstance(resp, tuple):
                    return FakeResponse(*resp)
                return FakeResponse(200, resp)
        raise AssertionError(f"unexpected request {method} {url}")


class ManualClock:
    def __init__(self, start=None):
        self.now = start or datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kw):
        self.now += timedelta(**kw)


class RecordingSleep:
    def __init__(self, events=None):
        self.calls = []
        self.events = events if events is not None else []

    async def __call__(self, seconds):
        self.calls.append(seconds)
        self.events.append(("sleep", seconds))


OAUTH_OK = {
    "basic": {"status": 0, "data": {"hgId": "hg-1", "nickname": "Doc", "email": "x@y"}},
    "grant": {"status": 0, "data": {"uid": "u1", "code": "grant-code-1"}},
    "cred": {"code": 0, "message": "OK", "data": {"cred": "cred-abc", "token": "salt-xyz", "userId": "777"}},
}


def add_oauth_routes(session, basic=None, grant=None, cred=None):
    session.add("GET", "/user/info/v1/basic", basic or OAUTH_OK["basic"])
    session.add("POST", "/user/oauth2/v2/grant", grant or OAUTH_OK["grant"])
    session.add("POST", "/generate_cred_by_code", cred or OAUTH_OK["cred"])
    return session


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def oauth_session():
    return add_oauth_routes(FakeSession())


@pytest.fixture
def tmp_store(tmp_path):
    from dailyclaim.store import AccountStore
    s = AccountStore(str(tmp_path / "claims.db"))
    s.init_db()
    return s
