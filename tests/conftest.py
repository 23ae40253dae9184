import json

import pytest
import requests

from sfrest.session import Session, SessionConfig

INSTANCE_URL = "https://example.my.salesforce.com"


def _make_response(status=200, body=b"", headers=None, url=INSTANCE_URL):
    if isinstance(body, (dict, list)):
        body = json.dumps(body)
    if isinstance(body, str):
        body = body.encode("utf-8")
    r = requests.Response()
    r.status_code = status
    r._content = body
    r._content_consumed = True
    r.headers.update(headers or {})
    r.url = url
    r.encoding = "utf-8"
    return r


@pytest.fixture
def make_response():
    """Factory for real requests.Response objects with a canned body."""
    return _make_response


@pytest.fixture
def session():
    """Return a Session that is already logged in (no network)."""
    s = Session(SessionConfig(api_version="v60.0"))
    s.set_session("00DFAKE-TOKEN", INSTANCE_URL)
    return s


@pytest.fixture
def cli_session(monkeypatch, session):
    """Make every CLI command use the logged-in ``session`` fixture."""

    def fake_connected_session(tooling=False):
        return session.tooling() if tooling else session

    monkeypatch.setattr("sfrest.cli.connected_session", fake_connected_session)
    monkeypatch.setattr("sfrest.command_objects.connected_session", fake_connected_session)
    return session
