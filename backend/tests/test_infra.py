"""Retry deadline, access tokens, OneSignal wire format and the row-change stream."""
import json
from datetime import datetime, timezone

import httpx
import pytest

from wakti_realtime.core.errors import AuthenticationError, ConfigurationError
from wakti_realtime.core.retry import wait_until
from wakti_realtime.core.security import bearer_token, create_access_token, decode_access_token
from wakti_realtime.db.events import install_change_stream
from wakti_realtime.models.contact import Contact
from wakti_realtime.models.message import Message
from wakti_realtime.services.onesignal import OneSignalClient, OneSignalConfig, PushMessage


class FakeTimer:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def monotonic(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def test_wait_until_ready_after_a_few_polls():
    timer = FakeTimer()
    answers = iter([False, False, True])

    assert wait_until(lambda: next(answers), timeout=1, interval=0.1, sleep=timer.sleep, monotonic=timer.monotonic)
    assert timer.sleeps == [0.1, 0.1]


def test_wait_until_gives_up_at_deadline():
    timer = FakeTimer()

    assert wait_until(lambda: False, timeout=0.5, interval=0.25, sleep=timer.sleep, monotonic=timer.monotonic) is False
    assert timer.sleeps == [0.25, 0.25]


def test_wait_until_backoff_and_raising_predicate():
    timer = FakeTimer()

    def flaky():
        raise RuntimeError("not yet")

    assert wait_until(flaky, timeout=10, interval=1, backoff=2, max_interval=3, sleep=timer.sleep, monotonic=timer.monotonic) is False
    assert timer.sleeps[:4] == [1, 2, 3, 3]


def test_access_token_round_trip():
    user = decode_access_token(create_access_token("user-1"))

    assert user.id == "user-1"
    assert user.role == "authenticated"


def test_bad_tokens_are_unauthorized():
    with pytest.raises(AuthenticationError):
        decode_access_token(create_access_token("user-1", secret="other-secret"))
    with pytest.raises(AuthenticationError):
        decode_access_token(create_access_token("user-1", expires_in=-10))
    with pytest.raises(AuthenticationError):
        decode_access_token("")


def test_missing_secret_is_configuration_error():
    with pytest.raises(ConfigurationError):
        decode_access_token("abc", secret="")


@pytest.mark.parametrize("header,token", [("Bearer abc", "abc"), ("bearer  abc ", "abc"), ("Basic abc", ""), (None, "")])
def test_bearer_token(header, token):
    assert bearer_token(header) == token


def _client(handler, **config):
    config = {"app_id": "app-1", "rest_api_key": "rest-1", "base_url": "https://onesignal.test/api/v1", **config}
    return OneSignalClient(OneSignalConfig(**config), transport=httpx.MockTransport(handler))


def test_send_payload_shape():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "notif-1", "external_id": None})

    when = datetime(2030, 5, 15, 9, 0, tzinfo=timezone.utc)
    result = _client(handler).send(PushMessage(["u1", "u2"], "Hi", "There", data={"k": "v"}, send_after=when))

    assert result.ok is True
    assert result.notification_id == "notif-1"
    assert seen["url"] == "https://onesignal.test/api/v1/notifications"
    assert seen["auth"] == "key rest-1"
    body = seen["body"]
    assert body["app_id"] == "app-1"
    assert body["include_aliases"] == {"external_id": ["u1", "u2"]}
    assert body["headings"] == {"en": "Hi"}
    assert body["contents"] == {"en": "There"}
    assert body["data"] == {"k": "v"}
    assert body["send_after"] == "2030-05-15T09:00:00+00:00"


def test_success_without_id_is_a_failure():
    result = _client(lambda request: httpx.Response(200, json={"id": "", "errors": ["All included players are not subscribed"]})).send(
        PushMessage(["u1"], "Hi", "There")
    )

    assert result.ok is False
    assert result.error == "All included players are not subscribed"


def test_provider_error_status():
    result = _client(lambda request: httpx.Response(400, json={"errors": {"invalid_aliases": ["x"]}})).send(
        PushMessage(["u1"], "Hi", "There")
    )

    assert result.ok is False
    assert result.status_code == 400
    assert result.error.startswith("invalid_aliases")


def test_network_error_does_not_raise():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    result = _client(handler).send(PushMessage(["u1"], "Hi", "There"))

    assert result.ok is False
    assert "refused" in result.error


def test_cancel_uses_delete_with_app_id():
    seen = {}

    def handler(request):
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["app_id"] = request.url.params["app_id"]
        return httpx.Response(200, json={"success": True})

    result = _client(handler).cancel("notif-9")

    assert result.ok is True
    assert seen == {"method": "DELETE", "path": "/api/v1/notifications/notif-9", "app_id": "app-1"}


def test_unconfigured_client_makes_no_request():
    def handler(request):
        raise AssertionError("no request expected")

    client = _client(handler, rest_api_key="")

    assert client.is_configured() is False
    assert client.send(PushMessage(["u1"], "Hi", "There")).error == "OneSignal not configured"
    assert client.cancel("notif-1").ok is False


def test_change_stream_publishes_only_committed_inserts(session_factory, broker):
    received = []
    channel = broker.channel("watch")
    channel.on_change("messages", received.append, filter={"recipient_id": "bob"})
    channel.on_change("contacts", received.append, filter={"contact_id": "bob"})
    channel.subscribe()
    install_change_stream(session_factory, broker)
    install_change_stream(session_factory, broker)
    db = session_factory()

    db.add(Message(sender_id="alice", recipient_id="bob", content="rolled back"))
    db.flush()
    db.rollback()
    assert received == []

    db.add(Message(sender_id="alice", recipient_id="bob", content="hello"))
    db.add(Contact(user_id="alice", contact_id="bob"))
    db.commit()

    assert sorted(r["table"] for r in received) == ["contacts", "messages"]
    message = next(r["new"] for r in received if r["table"] == "messages")
    assert message["content"] == "hello"
    assert isinstance(message["created_at"], str)
    db.close()
