import json

import pytest
import requests

import server


class FakeUpstream:
    """Stands in for requests.get and records every outbound URL."""

    def __init__(self):
        self.calls = []
        self.replies = []

    def reply(self, status=200, body=None, raw=None, reason="OK"):
        resp = requests.Response()
        resp.status_code = status
        resp.reason = reason
        resp._content = raw if raw is not None else json.dumps(body).encode()
        resp.headers["Content-Type"] = "application/json"
        self.replies.append(resp)

    def fail(self, exc):
        self.replies.append(exc)

    def __call__(self, url, timeout=None):
        self.calls.append((url, timeout))
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        reply.url = url
        return reply


@pytest.fixture
def base():
    return "https://fpl.test/api"


@pytest.fixture
def origin():
    return "https://front.example"


@pytest.fixture
def config(base, origin):
    return server.RelayConfig(
        port=0, upstream_base=base, allowed_origin=origin, upstream_timeout=2.5
    )


@pytest.fixture
def upstream(monkeypatch):
    fake = FakeUpstream()
    monkeypatch.setattr(server.requests, "get", fake)
    return fake


@pytest.fixture
def client(config):
    app = server.create_app(config)
    app.config["TESTING"] = True
    return app.test_client()
