"""
Notifications API: queue producer and ops, plus the signed-in user's notification history.

Queue: enqueue, status overview, fix stuck rows, test push.
History: list (with unread filter), mark one read, mark all read.
"""
import logging
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from wakti_realtime.api.deps import require_push_client
from wakti_realtime.core.clock import isoformat
from wakti_realtime.core.errors import NotFoundError
from wakti_realtime.core.security import AuthUser, get_current_user
from wakti_realtime.db.session import get_db
from wakti_realtime.models.notification_history import NotificationHistory
from wakti_realtime.services.notification_queue_service import (
    fix_stuck_notifications,
    get_queue_status,
    queue_notification,
    send_test_notification,
)
from wakti_realtime.services.onesignal import OneSignalClient
from wakti_realtime.services.scheduled_push_service import parse_scheduled_for

router = APIRouter()
logger = logging.getLogger(__name__)


# --- Queue ---


class QueueNotificationBody(BaseModel):
    user_id: str | None = Field(None, description="Recipient; defaults to the caller")
    notification_type: str = Field("messages", max_length=64)
    title: str | None = None
    body: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    deep_link: str | None = None
    scheduled_for: str | None = None


@router.post("/queue")
def enqueue_notification(
    body: QueueNotificationBody,
    user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    """Insert a pending queue row; the drainer sends it on its next pass at or after scheduled_for."""
    scheduled_for = parse_scheduled_for(body.scheduled_for) if body.scheduled_for else None
    row = queue_notification(
        db,
        body.user_id or user.id,
        body.notification_type,
        body.title,
        body.body,
        data=body.data,
        deep_link=body.deep_link,
        scheduled_for=scheduled_for,
    )
    return {"success": True, "id": row.id, "scheduled_for": isoformat(row.scheduled_for), "deep_link": row.deep_link}


@router.get("/queue/status")
def queue_status(
    user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    return get_queue_status(db, user.id)


@router.post("/queue/fix-stuck")
def fix_stuck(
    client: OneSignalClient = Depends(require_push_client),
    user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    """Pull the caller's past-due pending rows up to now and drain them once."""
    result = fix_stuck_notifications(db, client, user_id=user.id)
    logger.info("fix-stuck by %s: %s row(s) reset", user.id, result["fixed_count"])
    return result


@router.post("/test")
def test_notification(
    client: OneSignalClient = Depends(require_push_client),
    user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    """Queue and immediately drain a test push to the caller."""
    return send_test_notification(db, client, user.id)


# --- History ---


def _history_item(r: NotificationHistory) -> dict[str, Any]:
    return {
        "id": r.id,
        "type": r.type,
        "title": r.title,
        "body": r.body,
        "data": r.data or {},
        "deep_link": r.deep_link,
        "is_read": bool(r.is_read),
        "push_sent": bool(r.push_sent),
        "push_state": r.push_state,
        "scheduled_for": isoformat(r.scheduled_for),
        "created_at": isoformat(r.created_at),
    }


@router.get("/history")
def list_history(
    user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    limit: int = Query(50, ge=1, le=200),
    unread_only: bool = Query(False),
) -> dict[str, Any]:
    """Newest first. unread_only=true for the badge view."""
    q = db.query(NotificationHistory).filter(NotificationHistory.user_id == user.id)
    if unread_only:
        q = q.filter(NotificationHistory.is_read.is_(False))
    rows = q.order_by(NotificationHistory.created_at.desc()).limit(limit).all()
    unread_count = (
        db.query(NotificationHistory)
        .filter(NotificationHistory.user_id == user.id, NotificationHistory.is_read.is_(False))
        .count()
    )
    return {"notifications": [_history_item(r) for r in rows], "unread_count": unread_count}


@router.patch("/history/{notification_id}/read")
def mark_history_read(
    notification_id: str,
    user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    row = (
        db.query(NotificationHistory)
        .filter(NotificationHistory.id == notification_id, NotificationHistory.user_id == user.id)
        .first()
    )
    if not row:
        raise NotFoundError("Notification not found")
    if not row.is_read:
        row.is_read = True
        db.commit()
    return {"ok": True, "id": notification_id}


@router.post("/history/mark-all-read")
def mark_all_history_read(
    user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    updated = (
        db.query(NotificationHistory)
        .filter(NotificationHistory.user_id == user.id, NotificationHistory.is_read.is_(False))
        .update({NotificationHistory.is_read: True}, synchronize_session=False)
    )
    db.commit()
    return {"ok": True, "marked_count": updated}
