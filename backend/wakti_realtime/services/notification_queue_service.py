"""
Notification queue: producers insert "send roughly now" rows; the drainer pushes due rows in bounded batches.

Drainer contract (one invocation = one pass):
  - select up to batch_size due rows, oldest first (expired claims are due again);
  - claim each with a conditional update so two overlapping invocations never send the same row;
  - attempts += 1 per pass; sent on success, failed once attempts reach max_attempts, else back to pending.
Retries happen on the next invocation, never inside one. Late rows are still sent.
"""
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Session

from wakti_realtime.config import settings
from wakti_realtime.core.clock import isoformat, utcnow
from wakti_realtime.core.constants import (
    DEFAULT_DEEP_LINK,
    QUEUE_STATUS_FAILED,
    QUEUE_STATUS_PENDING,
    QUEUE_STATUS_PROCESSING,
    QUEUE_STATUS_SENT,
)
from wakti_realtime.core.errors import ValidationError
from wakti_realtime.models.notification_history import NotificationHistory
from wakti_realtime.models.notification_queue import NotificationQueue
from wakti_realtime.services.onesignal import OneSignalClient, PushMessage, PushResult

logger = logging.getLogger(__name__)

QUEUE_NOTIFICATION_TYPES = ("messages", "task_updates", "contact_requests", "event_rsvps", "calendar_reminders")

_DEEP_LINKS = {
    "messages": "/contacts",
    "task_updates": "/tr",
    "contact_requests": "/contacts",
    "calendar_reminders": "/calendar",
}


def generate_deep_link(notification_type: str, data: dict[str, Any] | None = None) -> str:
    data = data or {}
    if notification_type == "event_rsvps":
        event_id = data.get("event_id")
        return f"/maw3d/manage/{event_id}" if event_id else "/maw3d/events"
    return _DEEP_LINKS.get(notification_type, DEFAULT_DEEP_LINK)


def queue_notification(
    db: Session,
    user_id: str,
    notification_type: str,
    title: str,
    body: str,
    *,
    data: dict[str, Any] | None = None,
    deep_link: str | None = None,
    scheduled_for: datetime | None = None,
) -> NotificationQueue:
    """Insert a pending row. scheduled_for defaults to now (send on the next drain)."""
    user_id = (user_id or "").strip()
    title = (title or "").strip()
    body = (body or "").strip()
    if not user_id or not title or not body:
        raise ValidationError("Missing required fields: user_id, title and body are required")
    row = NotificationQueue(
        user_id=user_id,
        notification_type=notification_type,
        title=title,
        body=body,
        data=dict(data or {}),
        deep_link=deep_link or generate_deep_link(notification_type, data),
        scheduled_for=scheduled_for or utcnow(),
        status=QUEUE_STATUS_PENDING,
        attempts=0,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    logger.info("Queued %s notification %s for user %s", notification_type, row.id, user_id)
    return row


def build_queue_message(row: NotificationQueue) -> PushMessage:
    data = dict(row.data or {})
    data.update({
        "type": row.notification_type,
        "notification_id": row.id,
        "deep_link": row.deep_link or generate_deep_link(row.notification_type, row.data),
    })
    return PushMessage(user_ids=[row.user_id], title=row.title, body=row.body, data=data)


def _eligible(now: datetime):
    return or_(
        and_(NotificationQueue.status == QUEUE_STATUS_PENDING, NotificationQueue.scheduled_for <= now),
        and_(NotificationQueue.status == QUEUE_STATUS_PROCESSING, NotificationQueue.claim_expires_at < now),
    )


def select_due(db: Session, now: datetime, limit: int, *, user_id: str | None = None) -> list[NotificationQueue]:
    q = db.query(NotificationQueue).filter(_eligible(now))
    if user_id:
        q = q.filter(NotificationQueue.user_id == user_id)
    return q.order_by(NotificationQueue.created_at.asc(), NotificationQueue.id.asc()).limit(limit).all()


def claim(db: Session, row_id: str, invocation_id: str, now: datetime, lease_seconds: int) -> bool:
    """Atomically move one due row to processing for this invocation. False when another invocation holds it."""
    updated = (
        db.query(NotificationQueue)
        .filter(NotificationQueue.id == row_id, _eligible(now))
        .update(
            {
                NotificationQueue.status: QUEUE_STATUS_PROCESSING,
                NotificationQueue.claimed_by: invocation_id,
                NotificationQueue.claim_expires_at: now + timedelta(seconds=lease_seconds),
                NotificationQueue.updated_at: now,
            },
            synchronize_session=False,
        )
    )
    db.commit()
    return updated == 1


def record_result(
    db: Session,
    row_id: str,
    invocation_id: str,
    result: PushResult,
    now: datetime,
    max_attempts: int,
) -> str | None:
    """Apply one send outcome to a row still claimed by this invocation. Returns the new status."""
    row = (
        db.query(NotificationQueue)
        .filter(NotificationQueue.id == row_id, NotificationQueue.claimed_by == invocation_id)
        .first()
    )
    if row is None:
        logger.warning("Queue row %s no longer claimed by %s; result dropped", row_id, invocation_id)
        return None
    row.attempts = (row.attempts or 0) + 1
    row.claimed_by = None
    row.claim_expires_at = None
    row.updated_at = now
    if result.ok:
        row.status = QUEUE_STATUS_SENT
        row.sent_at = now
        row.error_message = None
        row.data = {**(row.data or {}), "onesignal_notification_id": result.notification_id}
    else:
        row.status = QUEUE_STATUS_FAILED if row.attempts >= max_attempts else QUEUE_STATUS_PENDING
        row.error_message = result.error
    db.commit()
    return row.status


def process_notification_queue(
    db: Session,
    push_client: OneSignalClient,
    *,
    now: datetime | None = None,
    batch_size: int | None = None,
    max_attempts: int | None = None,
    lease_seconds: int | None = None,
    invocation_id: str | None = None,
    user_id: str | None = None,
) -> dict[str, Any]:
    """
    One drainer pass. Returns {success, sent, failed, total, results: [{id, success, error?}]}.
    A provider failure on one row never stops the rest of the batch. user_id limits the pass to that
    recipient's rows; a row whose claim was lost mid-send is left out of the counts.
    """
    now = now or utcnow()
    batch_size = batch_size or settings.notification_queue_batch_size
    max_attempts = max_attempts or settings.notification_queue_max_attempts
    lease_seconds = lease_seconds or settings.notification_queue_lease_seconds
    invocation_id = invocation_id or uuid.uuid4().hex

    due = select_due(db, now, batch_size, user_id=user_id)
    if not due:
        return {"success": True, "sent": 0, "failed": 0, "total": 0, "results": []}

    results: list[dict[str, Any]] = []
    sent = failed = 0
    for row in due:
        row_id = row.id
        if not claim(db, row_id, invocation_id, now, lease_seconds):
            logger.info("Queue row %s claimed by another invocation; skipping", row_id)
            continue
        row = db.get(NotificationQueue, row_id)
        try:
            result = push_client.send(build_queue_message(row))
        except Exception as e:
            logger.exception("Queue row %s: push send raised", row_id)
            result = PushResult(ok=False, error=str(e) or type(e).__name__)
        status = record_result(db, row_id, invocation_id, result, now, max_attempts)
        if status is None:
            continue
        if result.ok:
            sent += 1
            results.append({"id": row_id, "success": True})
        else:
            failed += 1
            results.append({"id": row_id, "success": False, "error": result.error, "status": status})
    logger.info("Notification queue pass %s: sent=%s failed=%s total=%s", invocation_id, sent, failed, len(results))
    return {"success": True, "sent": sent, "failed": failed, "total": len(results), "results": results}


def _queue_item(row: NotificationQueue) -> dict[str, Any]:
    return {
        "id": row.id,
        "user_id": row.user_id,
        "notification_type": row.notification_type,
        "title": row.title,
        "status": row.status,
        "attempts": row.attempts,
        "scheduled_for": isoformat(row.scheduled_for),
        "sent_at": isoformat(row.sent_at),
        "error_message": row.error_message,
    }


def get_queue_status(db: Session, user_id: str | None = None) -> dict[str, Any]:
    """Totals by status, the 5 newest queue rows and the 10 newest history rows. user_id=None covers every user (ops scripts)."""
    counts_q = db.query(NotificationQueue.status, func.count(NotificationQueue.id))
    queue_q = db.query(NotificationQueue)
    history_q = db.query(NotificationHistory)
    if user_id:
        counts_q = counts_q.filter(NotificationQueue.user_id == user_id)
        queue_q = queue_q.filter(NotificationQueue.user_id == user_id)
        history_q = history_q.filter(NotificationHistory.user_id == user_id)
    counts = dict(counts_q.group_by(NotificationQueue.status).all())
    newest = queue_q.order_by(NotificationQueue.created_at.desc()).limit(5).all()
    history = history_q.order_by(NotificationHistory.created_at.desc()).limit(10).all()
    return {
        "queue": {
            "total": sum(counts.values()),
            "pending": counts.get(QUEUE_STATUS_PENDING, 0),
            "processing": counts.get(QUEUE_STATUS_PROCESSING, 0),
            "sent": counts.get(QUEUE_STATUS_SENT, 0),
            "failed": counts.get(QUEUE_STATUS_FAILED, 0),
            "items": [_queue_item(r) for r in newest],
        },
        "history": {
            "total": len(history),
            "recent": [
                {"id": h.id, "type": h.type, "title": h.title, "push_sent": h.push_sent, "push_state": h.push_state}
                for h in history
            ],
        },
        "timestamp": utcnow().isoformat(),
    }


def fix_stuck_notifications(
    db: Session,
    push_client: OneSignalClient,
    *,
    user_id: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Pull past-due pending rows up to now, then run a drain pass. user_id=None covers every user."""
    now = now or utcnow()
    q = db.query(NotificationQueue).filter(
        NotificationQueue.status == QUEUE_STATUS_PENDING,
        NotificationQueue.scheduled_for < now,
    )
    if user_id:
        q = q.filter(NotificationQueue.user_id == user_id)
    fixed = q.update({NotificationQueue.scheduled_for: now, NotificationQueue.updated_at: now}, synchronize_session=False)
    db.commit()
    result = process_notification_queue(db, push_client, now=now, user_id=user_id)
    return {"success": True, "fixed_count": fixed, "process_result": result}


def send_immediate_notification(
    db: Session,
    push_client: OneSignalClient,
    user_id: str,
    notification_type: str,
    title: str,
    body: str,
    *,
    data: dict[str, Any] | None = None,
    deep_link: str | None = None,
) -> dict[str, Any]:
    """Queue for now and drain right away; the row stays in the queue for retry if the push fails."""
    row = queue_notification(db, user_id, notification_type, title, body, data=data, deep_link=deep_link)
    result = process_notification_queue(db, push_client, user_id=row.user_id)
    mine = next((r for r in result["results"] if r["id"] == row.id), None)
    return {"success": bool(mine and mine["success"]), "notification_id": row.id, "process_result": result}


def send_test_notification(db: Session, push_client: OneSignalClient, user_id: str) -> dict[str, Any]:
    result = send_immediate_notification(
        db,
        push_client,
        user_id,
        "task_updates",
        "Test Notification",
        "This is a test notification to verify the pipeline is working",
        data={"test": True, "timestamp": utcnow().isoformat()},
        deep_link=DEFAULT_DEEP_LINK,
    )
    result["message"] = "Test notification sent successfully" if result["success"] else "Failed to send test notification"
    return result
