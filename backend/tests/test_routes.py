"""HTTP surface: credential checks, {"error"} bodies and the happy paths through each router."""
from datetime import date, timedelta

import pytest

from wakti_realtime.core.clock import utcnow
from wakti_realtime.models.notification_history import NotificationHistory
from wakti_realtime.models.notification_queue import NotificationQueue
from wakti_realtime.models.user_document import UserDocument


def _in(minutes):
    return (utcnow() + timedelta(minutes=minutes)).isoformat()


def _history(db, user_id="u1", **kwargs):
    row = NotificationHistory(user_id=user_id, type=kwargs.pop("type", "ai_reminder"), title="t", body="b", **kwargs)
    db.add(row)
    db.commit()
    return row.id


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_missing_token_is_401(client):
    resp = client.post("/functions/send-push-notification", json={"user_ids": ["u2"], "title": "t", "body": "b"})

    assert resp.status_code == 401
    assert resp.json() == {"error": "Unauthorized"}


def test_unconfigured_push_is_500_before_anything_else(client, push_client):
    push_client.configured = False

    resp = client.post("/functions/process-notification-queue")

    assert resp.status_code == 500
    assert resp.json() == {"error": "OneSignal not configured"}
    assert push_client.sent == []


def test_send_push_notification(client, push_client, auth):
    resp = client.post(
        "/functions/send-push-notification",
        json={"userIds": ["u2", " ", "u3"], "title": "Hello", "body": "World", "data": {"x": 1}},
        headers=auth("u1"),
    )

    assert resp.status_code == 200
    assert resp.json() == {"success": True, "notification_id": "os-1", "recipients": 2}
    assert push_client.sent[0].user_ids == ["u2", "u3"]


@pytest.mark.parametrize(
    "payload,error",
    [
        ({"user_ids": ["u2"], "title": "Hello"}, "Missing required fields: title and body are required"),
        ({"user_ids": [], "title": "Hello", "body": "World"}, "No user ids provided"),
    ],
)
def test_send_push_notification_validation(client, auth, payload, error):
    resp = client.post("/functions/send-push-notification", json=payload, headers=auth("u1"))

    assert resp.status_code == 400
    assert resp.json() == {"error": error}


def test_send_push_provider_failure_is_502(client, push_client, auth):
    push_client.error = "All included players are not subscribed"

    resp = client.post("/functions/send-push-notification", json={"user_ids": ["u2"], "title": "t", "body": "b"}, headers=auth("u1"))

    assert resp.status_code == 502
    assert resp.json() == {"error": "All included players are not subscribed"}


def test_process_notification_queue_drains(client, push_client, db):
    db.add(NotificationQueue(user_id="u1", notification_type="messages", title="t", body="b", scheduled_for=utcnow()))
    db.commit()

    resp = client.post("/functions/process-notification-queue")

    assert resp.status_code == 200
    body = resp.json()
    assert (body["sent"], body["failed"], body["total"]) == (1, 0, 1)
    assert push_client.sent[0].data["deep_link"] == "/contacts"


def test_schedule_reminder_push(client, push_client, db, auth):
    notification_id = _history(db)

    resp = client.post(
        "/functions/schedule-reminder-push",
        json={"user_id": "u1", "notification_id": notification_id, "reminder_text": "Stretch", "scheduled_for": _in(30)},
        headers=auth("u1"),
    )

    assert resp.status_code == 200
    assert resp.json()["onesignal_id"] == "os-1"
    assert push_client.sent[0].send_after is not None


def test_schedule_reminder_push_for_someone_else(client, db, auth):
    notification_id = _history(db)

    resp = client.post(
        "/functions/schedule-reminder-push",
        json={"user_id": "u1", "notification_id": notification_id, "reminder_text": "x", "scheduled_for": _in(30)},
        headers=auth("u2"),
    )

    assert resp.status_code == 401


def test_schedule_reminder_push_missing_fields(client, auth):
    resp = client.post("/functions/schedule-reminder-push", json={"user_id": "u1"}, headers=auth("u1"))

    assert resp.status_code == 400
    assert resp.json()["error"].startswith("Missing required fields")


def test_schedule_doc_expiry_push_checks(client, db, auth):
    doc = UserDocument(user_id="u1", title="Passport", expiry_date=date(2030, 6, 15))
    db.add(doc)
    db.commit()
    notification_id = _history(db, type="doc_expiry")
    payload = {"user_id": "u1", "notification_id": notification_id, "doc_id": doc.id}

    assert client.post("/functions/schedule-doc-expiry-push", json=payload, headers=auth("u2")).status_code == 401
    missing = client.post("/functions/schedule-doc-expiry-push", json={**payload, "doc_id": "nope"}, headers=auth("u1"))
    assert missing.status_code == 404
    assert missing.json() == {"error": "Document not found"}

    ok = client.post("/functions/schedule-doc-expiry-push", json=payload, headers=auth("u1"))
    assert ok.status_code == 200
    assert ok.json()["scheduled_for"].startswith("2030-05-15T09:00:00")


def test_schedule_tr_push_invalid_kind(client, auth):
    resp = client.post(
        "/functions/schedule-tr-push",
        json={
            "user_id": "u1",
            "kind": "tr_whatever",
            "item_id": "i1",
            "notification_id": "n1",
            "reminder_text": "x",
            "scheduled_for": _in(30),
        },
        headers=auth("u1"),
    )

    assert resp.status_code == 400
    assert resp.json() == {"error": "Invalid kind"}


def test_queue_endpoints(client, push_client, auth):
    queued = client.post(
        "/notifications/queue",
        json={"notification_type": "event_rsvps", "title": "RSVP", "body": "Someone replied", "data": {"event_id": "e1"}},
        headers=auth("u1"),
    )
    assert queued.status_code == 200
    assert queued.json()["deep_link"] == "/maw3d/manage/e1"

    status = client.get("/notifications/queue/status", headers=auth("u1")).json()
    assert status["queue"]["pending"] == 1

    fixed = client.post("/notifications/queue/fix-stuck", headers=auth("u1")).json()
    assert fixed["process_result"]["sent"] == 1
    assert push_client.sent[0].user_ids == ["u1"]


def test_queue_rejects_missing_title(client, auth):
    resp = client.post("/notifications/queue", json={"body": "b"}, headers=auth("u1"))

    assert resp.status_code == 400
    assert "error" in resp.json()


def test_test_notification(client, push_client, auth):
    resp = client.post("/notifications/test", headers=auth("u1"))

    assert resp.json()["success"] is True
    assert push_client.sent[0].title == "Test Notification"


def test_history_read_flow(client, db, auth):
    first = _history(db)
    _history(db)
    _history(db, user_id="u2")

    listing = client.get("/notifications/history", headers=auth("u1")).json()
    assert len(listing["notifications"]) == 2
    assert listing["unread_count"] == 2

    assert client.patch(f"/notifications/history/{first}/read", headers=auth("u1")).json() == {"ok": True, "id": first}
    unread = client.get("/notifications/history", params={"unread_only": "true"}, headers=auth("u1")).json()
    assert first not in [n["id"] for n in unread["notifications"]]
    assert unread["unread_count"] == 1

    assert client.post("/notifications/history/mark-all-read", headers=auth("u1")).json() == {"ok": True, "marked_count": 1}
    assert client.patch("/notifications/history/missing/read", headers=auth("u1")).status_code == 404


def test_reminders_flow(client, push_client, auth):
    created = client.post("/reminders", json={"reminder_text": "Pay rent", "scheduled_for": _in(60)}, headers=auth("u1")).json()
    assert created["success"] is True

    pending = client.get("/reminders/pending", headers=auth("u1")).json()["reminders"]
    assert [r["id"] for r in pending] == [created["id"]]

    push_client.cancel_ok = False
    refused = client.delete(f"/reminders/{created['id']}", headers=auth("u1"))
    assert refused.status_code == 502

    push_client.cancel_ok = True
    cancelled = client.delete(f"/reminders/{created['id']}", headers=auth("u1"))
    assert cancelled.json()["cancelled"] is True
    assert client.get("/reminders/pending", headers=auth("u1")).json() == {"reminders": []}


def test_reminder_in_the_past(client, auth):
    resp = client.post("/reminders", json={"reminder_text": "Too late", "scheduled_for": _in(-10)}, headers=auth("u1"))

    assert resp.status_code == 400
    assert resp.json() == {"error": "Cannot schedule reminder in the past"}


def test_document_expiry_reminder_flow(client, push_client, db, auth):
    doc = UserDocument(user_id="u1", title="Visa", expiry_date=date(2030, 6, 15))
    db.add(doc)
    db.commit()
    url = f"/documents/{doc.id}/expiry-reminder"

    scheduled = client.post(url, headers=auth("u1"))
    assert scheduled.status_code == 200
    assert scheduled.json()["scheduled_for"].startswith("2030-05-15T09:00:00")

    moved = client.put(url, json={"expiry_date": "2030-10-01"}, headers=auth("u1")).json()
    assert moved["previous_notification_id"] == scheduled.json()["notification_id"]
    assert moved["scheduled_for"].startswith("2030-09-01T09:00:00")
    assert push_client.cancelled == [scheduled.json()["onesignal_id"]]

    cancelled = client.delete(url, headers=auth("u1")).json()
    assert cancelled == {"success": True, "cancelled": True, "notification_id": moved["notification_id"]}

    assert client.post(url, headers=auth("u2")).status_code == 404


def test_queue_ops_only_touch_the_callers_rows(client, push_client, db, auth):
    stale = utcnow() - timedelta(hours=1)
    db.add(NotificationQueue(user_id="u2", notification_type="messages", title="Secret from Bob", body="b", scheduled_for=stale))
    db.add(NotificationHistory(user_id="u2", type="ai_reminder", title="Private reminder", body="b"))
    db.commit()

    status = client.get("/notifications/queue/status", headers=auth("u1")).json()
    assert status["queue"]["total"] == 0
    assert status["queue"]["items"] == []
    assert status["history"]["recent"] == []

    fixed = client.post("/notifications/queue/fix-stuck", headers=auth("u1")).json()
    assert fixed["fixed_count"] == 0
    assert fixed["process_result"]["total"] == 0
    assert push_client.sent == []
