"""Notification queue: producer, drainer state machine, lease claims and ops."""
from datetime import timedelta

import pytest

from conftest import FakePushClient
from wakti_realtime.core.clock import as_utc, utcnow
from wakti_realtime.core.errors import ValidationError
from wakti_realtime.models.notification_queue import NotificationQueue
from wakti_realtime.services.notification_queue_service import (
    claim,
    fix_stuck_notifications,
    generate_deep_link,
    get_queue_status,
    process_notification_queue,
    queue_notification,
    record_result,
    send_test_notification,
)
from wakti_realtime.services.onesignal import PushResult


def _row(db, **overrides):
    now = utcnow()
    values = dict(
        user_id="u1",
        notification_type="messages",
        title="New Message",
        body="Hi",
        data={},
        deep_link="/contacts",
        scheduled_for=now - timedelta(minutes=1),
        status="pending",
        attempts=0,
    )
    values.update(overrides)
    row = NotificationQueue(**values)
    db.add(row)
    db.commit()
    return row.id


def _get(db, row_id):
    db.expire_all()
    return db.get(NotificationQueue, row_id)


def test_success_marks_row_sent(db, push_client):
    row_id = _row(db, data={"message_id": "m1"})

    result = process_notification_queue(db, push_client)

    assert result == {"success": True, "sent": 1, "failed": 0, "total": 1, "results": [{"id": row_id, "success": True}]}
    row = _get(db, row_id)
    assert row.status == "sent"
    assert row.attempts == 1
    assert row.sent_at is not None
    assert row.claimed_by is None
    assert row.data["onesignal_notification_id"] == "os-1"
    message = push_client.sent[0]
    assert message.user_ids == ["u1"]
    assert message.data["type"] == "messages"
    assert message.data["notification_id"] == row_id
    assert message.data["deep_link"] == "/contacts"
    assert message.data["message_id"] == "m1"


def test_third_failure_is_terminal(db, push_client):
    row_id = _row(db, attempts=2)
    push_client.error = "OneSignal API error: 500"

    result = process_notification_queue(db, push_client)

    assert result["failed"] == 1
    assert result["results"][0]["status"] == "failed"
    row = _get(db, row_id)
    assert row.status == "failed"
    assert row.attempts == 3
    assert row.error_message == "OneSignal API error: 500"


def test_attempts_after_n_passes_is_min_n_3(db, push_client):
    row_id = _row(db)
    push_client.error = "OneSignal API error: 503"
    seen = []
    for n in range(1, 6):
        process_notification_queue(db, push_client)
        row = _get(db, row_id)
        seen.append(row.attempts)
        assert row.attempts == min(n, 3)
    assert seen == sorted(seen)
    assert _get(db, row_id).status == "failed"
    assert len(push_client.sent) == 3


def test_failure_below_limit_goes_back_to_pending(db, push_client):
    row_id = _row(db)
    push_client.error = "All included players are not subscribed"

    process_notification_queue(db, push_client)

    row = _get(db, row_id)
    assert row.status == "pending"
    assert row.attempts == 1
    assert row.claimed_by is None and row.claim_expires_at is None


def test_zero_eligible_rows_performs_no_writes(db, push_client):
    future_id = _row(db, scheduled_for=utcnow() + timedelta(hours=1))
    before = _get(db, future_id)
    snapshot = (before.status, before.attempts, before.updated_at)

    result = process_notification_queue(db, push_client)

    assert result == {"success": True, "sent": 0, "failed": 0, "total": 0, "results": []}
    after = _get(db, future_id)
    assert (after.status, after.attempts, after.updated_at) == snapshot
    assert push_client.sent == []


def test_empty_queue_is_idempotent(db, push_client):
    for _ in range(2):
        assert process_notification_queue(db, push_client)["total"] == 0


def test_very_late_rows_are_still_sent(db, push_client):
    row_id = _row(db, scheduled_for=utcnow() - timedelta(days=3))

    process_notification_queue(db, push_client)

    assert _get(db, row_id).status == "sent"


def test_one_failure_does_not_stop_the_batch(db, push_client):
    first = _row(db, created_at=utcnow() - timedelta(minutes=5))
    second = _row(db, created_at=utcnow() - timedelta(minutes=4))
    push_client.send_results = [PushResult(ok=False, status_code=400, error="bad"), PushResult(ok=True, notification_id="os-x")]

    result = process_notification_queue(db, push_client)

    assert (result["sent"], result["failed"], result["total"]) == (1, 1, 2)
    assert [r["id"] for r in result["results"]] == [first, second]
    assert _get(db, first).status == "pending"
    assert _get(db, second).status == "sent"


def test_send_that_raises_counts_as_failure(db):
    class ExplodingClient(FakePushClient):
        def send(self, message):
            raise RuntimeError("connection reset")

    row_id = _row(db)

    result = process_notification_queue(db, ExplodingClient())

    assert result["results"][0] == {"id": row_id, "success": False, "error": "connection reset", "status": "pending"}
    assert _get(db, row_id).attempts == 1


def test_batch_size_caps_selection(db, push_client):
    for i in range(4):
        _row(db, created_at=utcnow() - timedelta(minutes=10 - i))

    result = process_notification_queue(db, push_client, batch_size=3)

    assert result["total"] == 3
    assert db.query(NotificationQueue).filter(NotificationQueue.status == "pending").count() == 1


def test_row_claimed_by_live_invocation_is_skipped(db, push_client):
    now = utcnow()
    _row(db, status="processing", claimed_by="other", claim_expires_at=now + timedelta(seconds=90))

    result = process_notification_queue(db, push_client, now=now)

    assert result["total"] == 0
    assert push_client.sent == []


def test_expired_lease_is_eligible_again(db, push_client):
    now = utcnow()
    row_id = _row(db, status="processing", claimed_by="crashed", claim_expires_at=now - timedelta(seconds=1), attempts=1)

    result = process_notification_queue(db, push_client, now=now)

    assert result["sent"] == 1
    row = _get(db, row_id)
    assert row.status == "sent"
    assert row.attempts == 2


def test_claim_is_exclusive(db):
    now = utcnow()
    row_id = _row(db)

    assert claim(db, row_id, "inv-a", now, 120) is True
    assert claim(db, row_id, "inv-b", now, 120) is False
    row = _get(db, row_id)
    assert row.claimed_by == "inv-a"
    assert as_utc(row.claim_expires_at) == now + timedelta(seconds=120)


def test_result_for_a_lost_claim_is_dropped(db, push_client):
    now = utcnow()
    row_id = _row(db)
    claim(db, row_id, "inv-a", now, 120)

    # inv-b takes over after the lease expired; inv-a's late result must not touch the row
    later = now + timedelta(seconds=121)
    assert claim(db, row_id, "inv-b", later, 120) is True
    assert record_result(db, row_id, "inv-a", PushResult(ok=True, notification_id="late"), later, 3) is None
    row = _get(db, row_id)
    assert row.status == "processing"
    assert row.claimed_by == "inv-b"
    assert row.attempts == 0


def test_queue_notification_defaults(db):
    row = queue_notification(db, "u2", "event_rsvps", "RSVP", "Sara is going", data={"event_id": "e9"})

    assert row.status == "pending"
    assert row.attempts == 0
    assert row.deep_link == "/maw3d/manage/e9"
    assert as_utc(row.scheduled_for) <= utcnow()


def test_queue_notification_requires_fields(db):
    with pytest.raises(ValidationError):
        queue_notification(db, "u1", "messages", "", "body")
    assert db.query(NotificationQueue).count() == 0


@pytest.mark.parametrize(
    "notification_type,data,expected",
    [
        ("messages", None, "/contacts"),
        ("task_updates", None, "/tr"),
        ("contact_requests", None, "/contacts"),
        ("event_rsvps", {"event_id": "e1"}, "/maw3d/manage/e1"),
        ("event_rsvps", {}, "/maw3d/events"),
        ("calendar_reminders", None, "/calendar"),
        ("something_else", None, "/dashboard"),
    ],
)
def test_generate_deep_link(notification_type, data, expected):
    assert generate_deep_link(notification_type, data) == expected


def test_fix_stuck_resets_and_drains(db, push_client):
    stuck = _row(db, scheduled_for=utcnow() - timedelta(hours=2))

    result = fix_stuck_notifications(db, push_client)

    assert result["fixed_count"] == 1
    assert result["process_result"]["sent"] == 1
    assert _get(db, stuck).status == "sent"


def test_queue_status_counts(db, push_client):
    _row(db)
    _row(db, status="failed", attempts=3)
    _row(db, status="sent", attempts=1)

    status = get_queue_status(db)

    assert status["queue"]["total"] == 3
    assert (status["queue"]["pending"], status["queue"]["failed"], status["queue"]["sent"]) == (1, 1, 1)
    assert len(status["queue"]["items"]) == 3


def test_send_test_notification(db, push_client):
    result = send_test_notification(db, push_client, "u5")

    assert result["success"] is True
    assert result["message"] == "Test notification sent successfully"
    assert push_client.sent[0].title == "Test Notification"
    assert push_client.sent[0].user_ids == ["u5"]


def test_row_without_deep_link_gets_the_type_default(db, push_client):
    _row(db, notification_type="messages", deep_link=None)
    _row(db, notification_type="event_rsvps", deep_link=None, data={"event_id": "e4"})

    process_notification_queue(db, push_client)

    assert [m.data["deep_link"] for m in push_client.sent] == ["/contacts", "/maw3d/manage/e4"]


def test_claim_lost_during_send_is_left_out_of_the_counts(db):
    now = utcnow()
    row_id = _row(db)

    class SlowPushClient(FakePushClient):
        def send(self, message):
            # the lease runs out while the provider call is in flight and another pass takes the row
            assert claim(db, row_id, "inv-b", now + timedelta(seconds=121), 120) is True
            return super().send(message)

    result = process_notification_queue(db, SlowPushClient(), now=now, invocation_id="inv-a")

    assert result == {"success": True, "sent": 0, "failed": 0, "total": 0, "results": []}
    row = _get(db, row_id)
    assert row.claimed_by == "inv-b"
    assert row.attempts == 0


def test_queue_ops_can_be_limited_to_one_user(db, push_client):
    mine = _row(db, user_id="u1", scheduled_for=utcnow() - timedelta(hours=2))
    theirs = _row(db, user_id="u2", scheduled_for=utcnow() - timedelta(hours=2))

    status = get_queue_status(db, "u1")
    assert status["queue"]["total"] == 1
    assert [item["user_id"] for item in status["queue"]["items"]] == ["u1"]

    result = fix_stuck_notifications(db, push_client, user_id="u1")

    assert result["fixed_count"] == 1
    assert result["process_result"]["sent"] == 1
    assert _get(db, mine).status == "sent"
    assert _get(db, theirs).status == "pending"
    assert [m.user_ids for m in push_client.sent] == [["u1"]]
