"""Tests for the push API backend, against a stand-in HTTP session."""

import aiohttp
import pytest

from studynudge.backends.push_api import PushApiBackend
from studynudge.db.models import NotificationPayload
from studynudge.utils.errors import BackendUnavailable


class FakeResponse:
    def __init__(self, status=200, body=None):
        self.status = status
        self._body = body if body is not None else {}

    async def json(self):
        return self._body

    async def text(self):
        return str(self._body)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    """Records requests and answers with canned responses."""

    closed = False

    def __init__(self, response=None, error=None):
        self.response = response or FakeResponse(200, {"id": "notif-1", "recipients": 1})
        self.error = error
        self.requests = []

    def _request(self, method, url, **kwargs):
        self.requests.append((method, url, kwargs))
        if self.error:
            raise self.error
        return self.response

    def post(self, url, **kwargs):
        return self._request("POST", url, **kwargs)

    def delete(self, url, **kwargs):
        return self._request("DELETE", url, **kwargs)


PAYLOAD = NotificationPayload(
    title="📋 Task Reminder",
    body='🚨 Last call! "Essay draft" is due in 10 minutes!',
    data={"taskId": "task-1", "url": "/dashboard"},
    priority=8,
)


def make_backend(session) -> PushApiBackend:
    return PushApiBackend(
        api_url="https://push.example.com/api/v1/",
        app_id="app-123",
        api_key="secret",
        session=session,
        timeout_seconds=2,
    )


def test_build_body():
    """Test the request body sent to the push service."""
    body = make_backend(FakeSession()).build_body("user-1", PAYLOAD)

    assert body["app_id"] == "app-123"
    assert body["include_external_user_ids"] == ["user-1"]
    assert body["contents"] == {"en": PAYLOAD.body}
    assert body["headings"] == {"en": "📋 Task Reminder"}
    assert body["data"]["taskId"] == "task-1"
    assert body["url"] == "/dashboard"
    assert body["priority"] == 8
    assert body["ttl"] == 259200
    assert "send_after" not in body


def test_parse_response():
    """Test which answers count as acknowledgements."""
    ok = PushApiBackend.parse_response({"id": "abc", "recipients": 1})
    assert ok.success and ok.delivery_id == "abc"

    assert not PushApiBackend.parse_response({}).success
    refused = PushApiBackend.parse_response(
        {"id": "", "errors": ["All included players are not subscribed"]}
    )
    assert not refused.success
    assert "not subscribed" in refused.error


async def test_send():
    """Test an immediate send."""
    session = FakeSession()
    receipt = await make_backend(session).send("user-1", PAYLOAD)

    assert receipt.success
    assert receipt.delivery_id == "notif-1"
    method, url, kwargs = session.requests[0]
    assert method == "POST"
    assert url == "https://push.example.com/api/v1/notifications"
    assert kwargs["headers"]["Authorization"] == "Basic secret"


async def test_schedule_at():
    """Test a scheduled send carries send_after."""
    session = FakeSession()
    await make_backend(session).schedule_at("user-1", PAYLOAD, "2026-03-02T14:50:00+00:00")

    body = session.requests[0][2]["json"]
    assert body["send_after"] == "2026-03-02T14:50:00+00:00"


async def test_http_error_is_backend_unavailable():
    """Test that non-200 answers raise BackendUnavailable."""
    session = FakeSession(FakeResponse(500, {"errors": ["internal"]}))

    with pytest.raises(BackendUnavailable) as exc_info:
        await make_backend(session).send("user-1", PAYLOAD)
    assert exc_info.value.backend == "push_api"


async def test_connection_error_is_backend_unavailable():
    """Test that network errors raise BackendUnavailable."""
    session = FakeSession(error=aiohttp.ClientConnectionError("connection refused"))

    with pytest.raises(BackendUnavailable):
        await make_backend(session).send("user-1", PAYLOAD)


async def test_unconfigured_backend_is_unavailable():
    """Test that a backend without credentials never makes a request."""
    session = FakeSession()
    backend = make_backend(session)
    backend.app_id = ""
    backend.api_key = ""

    with pytest.raises(BackendUnavailable):
        await backend.send("user-1", PAYLOAD)
    assert session.requests == []


async def test_cancel():
    """Test withdrawing a scheduled notification."""
    session = FakeSession(FakeResponse(200, {"success": True}))

    assert await make_backend(session).cancel("notif-1")
    method, url, kwargs = session.requests[0]
    assert method == "DELETE"
    assert url == "https://push.example.com/api/v1/notifications/notif-1"
    assert kwargs["params"] == {"app_id": "app-123"}


async def test_cancel_rejected():
    """Test a cancel the service refuses."""
    session = FakeSession(FakeResponse(404, {"errors": ["not found"]}))

    assert await make_backend(session).cancel("notif-1") is False
