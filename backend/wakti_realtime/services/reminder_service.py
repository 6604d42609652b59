"""
AI-chat reminders: a notification_history row of type ai_reminder plus a provider-scheduled push.
"""
import logging
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from wakti_realtime.core.clock import isoformat, utcnow
from wakti_realtime.core.constants import (
    HISTORY_TYPE_AI_REMINDER,
    PUSH_STATE_CANCELLED,
    PUSH_STATE_PENDING,
    PUSH_STATE_SCHEDULED,
)
from wakti_realtime.core.errors import NotFoundError, ServiceError
from wakti_realtime.models.notification_history import NotificationHistory
from wakti_realtime.services.onesignal import OneSignalClient
from wakti_realtime.services.scheduled_push_service import (
    ensure_not_past,
    parse_scheduled_for,
    require_fields,
    schedule_reminder_push,
)

logger = logging.getLogger(__name__)

REMINDER_TITLE = "Wakti Reminder"
REMINDER_SOURCE = "wakti_ai_chat"


def reminder_to_dict(row: NotificationHistory) -> dict[str, Any]:
    return {
        "id": row.id,
        "user_id": row.user_id,
        "title": row.title,
        "body": row.body,
        "scheduled_for": isoformat(row.scheduled_for),
        "push_sent": row.push_sent,
        "push_state": row.push_state,
        "onesignal_notification_id": (row.data or {}).get("onesignal_notification_id"),
        "created_at": isoformat(row.created_at),
    }


def create_scheduled_reminder(
    db: Session,
    push_client: OneSignalClient,
    user_id: str,
    reminder_text: str,
    scheduled_for: datetime | str,
    context: str | None = None,
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Save the reminder, then hand it to OneSignal.
    Invalid or past times raise before anything is written. A scheduling failure keeps the row and
    returns {"success": True, "id", "error"} so the reminder still shows in-app.
    """
    require_fields(user_id=user_id, reminder_text=reminder_text, scheduled_for=scheduled_for)
    now = now or utcnow()
    when = parse_scheduled_for(scheduled_for)
    ensure_not_past(when, now)

    row = NotificationHistory(
        user_id=user_id,
        type=HISTORY_TYPE_AI_REMINDER,
        title=REMINDER_TITLE,
        body=reminder_text,
        scheduled_for=when,
        push_sent=False,
        push_state=PUSH_STATE_PENDING,
        is_read=False,
        data={"source": REMINDER_SOURCE, "context": context, "created_at": now.isoformat()},
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    notification_id = row.id

    try:
        result = schedule_reminder_push(
            db,
            push_client,
            user_id=user_id,
            notification_id=notification_id,
            reminder_text=reminder_text,
            scheduled_for=when,
            now=now,
        )
    except ServiceError as e:
        db.rollback()
        logger.warning("Reminder %s saved but push scheduling failed: %s", notification_id, e.message)
        return {"success": True, "id": notification_id, "error": f"Push scheduling failed: {e.message}"}
    return {"success": True, "id": notification_id, "onesignal_id": result["onesignal_id"], "scheduled_for": result["scheduled_for"]}


def get_pending_reminders(db: Session, user_id: str, *, now: datetime | None = None) -> list[dict[str, Any]]:
    """Future ai_reminder rows that are not cancelled, soonest first."""
    now = now or utcnow()
    rows = (
        db.query(NotificationHistory)
        .filter(
            NotificationHistory.user_id == user_id,
            NotificationHistory.type == HISTORY_TYPE_AI_REMINDER,
            NotificationHistory.push_state != PUSH_STATE_CANCELLED,
            NotificationHistory.scheduled_for.isnot(None),
            NotificationHistory.scheduled_for >= now,
        )
        .order_by(NotificationHistory.scheduled_for.asc())
        .all()
    )
    return [reminder_to_dict(r) for r in rows]


def cancel_reminder(db: Session, push_client: OneSignalClient, reminder_id: str, user_id: str) -> dict[str, Any]:
    """
    Unscheduled reminders are deleted. Scheduled ones are cancelled at OneSignal first and the row is
    kept with push_state="cancelled"; if OneSignal refuses, the row is left untouched.
    """
    row = (
        db.query(NotificationHistory)
        .filter(
            NotificationHistory.id == reminder_id,
            NotificationHistory.user_id == user_id,
            NotificationHistory.type == HISTORY_TYPE_AI_REMINDER,
        )
        .first()
    )
    if row is None:
        raise NotFoundError("Reminder not found")

    if row.push_state != PUSH_STATE_SCHEDULED:
        db.delete(row)
        db.commit()
        logger.info("Reminder %s deleted", reminder_id)
        return {"success": True, "id": reminder_id, "deleted": True}

    onesignal_id = (row.data or {}).get("onesignal_notification_id")
    result = push_client.cancel(onesignal_id)
    if not result.ok:
        logger.warning("Reminder %s: OneSignal cancel of %s failed: %s", reminder_id, onesignal_id, result.error)
        return {"success": False, "id": reminder_id, "error": result.error or "Failed to cancel scheduled push"}
    row.push_sent = False
    row.push_state = PUSH_STATE_CANCELLED
    db.commit()
    logger.info("Reminder %s cancelled at OneSignal (%s)", reminder_id, onesignal_id)
    return {"success": True, "id": reminder_id, "deleted": False, "cancelled": True}
