"""
Provider-scheduled pushes: hand exact-time delivery to OneSignal (send_after) and remember its handle.

After a successful handoff the history row gets push_sent=True, push_state="scheduled" and
data.onesignal_notification_id. That means "OneSignal holds it", not "a device received it".
"""
import calendar
import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.orm import Session

from wakti_realtime.config import settings
from wakti_realtime.core.clock import utcnow
from wakti_realtime.core.constants import (
    DEFAULT_DEEP_LINK,
    DOC_EXPIRY_MONTHS_BEFORE,
    DOC_EXPIRY_REMINDER_HOUR,
    HISTORY_TYPE_AI_REMINDER,
    HISTORY_TYPE_DOC_EXPIRY,
    PUSH_STATE_SCHEDULED,
    SCHEDULE_PAST_TOLERANCE_SECONDS,
    TR_KINDS,
)
from wakti_realtime.core.errors import (
    MSG_UNAUTHORIZED,
    AuthenticationError,
    ConflictError,
    NotFoundError,
    ProviderError,
    ValidationError,
)
from wakti_realtime.models.notification_history import NotificationHistory
from wakti_realtime.models.tr_item import TRReminder, TRTask
from wakti_realtime.models.user_document import UserDocument
from wakti_realtime.services.onesignal import OneSignalClient, PushMessage

logger = logging.getLogger(__name__)

DOC_EXPIRY_DEEP_LINK = "/my-warranty"
TR_DEEP_LINK = "/tr"


def require_fields(**fields: Any) -> None:
    missing = [name for name, value in fields.items() if value in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


def _zone(tz_name: str | None) -> ZoneInfo:
    name = tz_name or settings.reminder_timezone or "UTC"
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValidationError(f"Unknown timezone {name}") from e


def parse_scheduled_for(value: datetime | str, *, tz_name: str | None = None) -> datetime:
    """ISO instant -> aware UTC. A timestamp without offset is local time in the reminder timezone."""
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        except ValueError as e:
            raise ValidationError("Invalid scheduled_for date") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=_zone(tz_name))
    return parsed.astimezone(timezone.utc)


def ensure_not_past(when: datetime, now: datetime, *, tolerance_seconds: int = SCHEDULE_PAST_TOLERANCE_SECONDS) -> None:
    if when < now - timedelta(seconds=tolerance_seconds):
        raise ValidationError("Cannot schedule reminder in the past")


def parse_expiry_date(value: date | str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value or "").strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError as e:
        raise ValidationError(f"Invalid expiry_date {text}. Use YYYY-MM-DD.") from e


def subtract_months(d: date, months: int) -> date:
    """Calendar months back; the day is clamped to the target month's length (Mar 31 -> Feb 28/29)."""
    index = d.year * 12 + (d.month - 1) - months
    year, month0 = divmod(index, 12)
    month = month0 + 1
    return date(year, month, min(d.day, calendar.monthrange(year, month)[1]))


def doc_expiry_reminder_time(expiry: date, *, tz_name: str | None = None) -> datetime:
    """One month before expiry at 09:00 local time, as UTC."""
    target = subtract_months(expiry, DOC_EXPIRY_MONTHS_BEFORE)
    local = datetime.combine(target, time(hour=DOC_EXPIRY_REMINDER_HOUR), tzinfo=_zone(tz_name))
    return local.astimezone(timezone.utc)


def schedule_history_push(
    db: Session,
    push_client: OneSignalClient,
    *,
    user_id: str,
    notification_id: str,
    title: str,
    body: str,
    scheduled_for: datetime | str,
    data: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Schedule one history row's push at OneSignal. Raises ValidationError (past / bad instant),
    NotFoundError (row missing or not the user's), ConflictError (already handed off), ProviderError.
    """
    now = now or utcnow()
    when = parse_scheduled_for(scheduled_for)
    ensure_not_past(when, now)

    row = db.query(NotificationHistory).filter(NotificationHistory.id == notification_id).first()
    if row is None or row.user_id != user_id:
        raise NotFoundError("Notification not found")
    if row.push_sent:
        raise ConflictError("Notification already scheduled")

    push_data = {**(data or {}), "notification_id": notification_id, "scheduled_for": when.isoformat()}
    result = push_client.send(
        PushMessage(user_ids=[user_id], title=title, body=body, data=push_data, send_after=when)
    )
    if not result.ok:
        logger.error("OneSignal schedule failed for notification %s: %s", notification_id, result.error)
        raise ProviderError(result.error or "Failed to schedule push")

    row.data = {
        **(row.data or {}),
        "onesignal_notification_id": result.notification_id,
        "scheduled_delivery": True,
    }
    row.push_sent = True
    row.push_sent_at = now
    row.push_state = PUSH_STATE_SCHEDULED
    row.scheduled_for = when
    db.commit()
    logger.info("Scheduled push %s for notification %s at %s", result.notification_id, notification_id, when.isoformat())
    return {
        "success": True,
        "onesignal_id": result.notification_id,
        "notification_id": notification_id,
        "scheduled_for": when.isoformat(),
    }


def schedule_reminder_push(
    db: Session,
    push_client: OneSignalClient,
    *,
    user_id: str,
    notification_id: str,
    reminder_text: str,
    scheduled_for: datetime | str,
    title: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    require_fields(user_id=user_id, notification_id=notification_id, reminder_text=reminder_text, scheduled_for=scheduled_for)
    return schedule_history_push(
        db,
        push_client,
        user_id=user_id,
        notification_id=notification_id,
        title=title or "Wakti Reminder",
        body=reminder_text,
        scheduled_for=scheduled_for,
        data={"type": HISTORY_TYPE_AI_REMINDER, "deep_link": DEFAULT_DEEP_LINK},
        now=now,
    )


def schedule_doc_expiry_push(
    db: Session,
    push_client: OneSignalClient,
    *,
    auth_user_id: str | None,
    user_id: str,
    notification_id: str,
    doc_id: str,
    expiry_date: date | str | None = None,
    scheduled_for: datetime | str | None = None,
    title: str | None = None,
    body: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """The caller must be the row owner and the document must be theirs; this runs with full DB access."""
    require_fields(user_id=user_id, notification_id=notification_id, doc_id=doc_id)
    if not auth_user_id or auth_user_id != user_id:
        raise AuthenticationError(MSG_UNAUTHORIZED)
    doc = db.query(UserDocument).filter(UserDocument.id == doc_id).first()
    if doc is None or doc.user_id != user_id:
        raise NotFoundError("Document not found")

    expiry = parse_expiry_date(expiry_date) if expiry_date else doc.expiry_date
    if scheduled_for is None:
        if expiry is None:
            raise ValidationError("Missing required fields: expiry_date or scheduled_for")
        scheduled_for = doc_expiry_reminder_time(expiry)
    data = {
        "type": HISTORY_TYPE_DOC_EXPIRY,
        "doc_id": doc_id,
        "expiry_date": expiry.isoformat() if expiry else None,
        "deep_link": DOC_EXPIRY_DEEP_LINK,
    }
    return schedule_history_push(
        db,
        push_client,
        user_id=user_id,
        notification_id=notification_id,
        title=title or "Document Expiring Soon",
        body=body or doc_expiry_body(doc.title, expiry),
        scheduled_for=scheduled_for,
        data=data,
        now=now,
    )


def doc_expiry_body(doc_title: str | None, expiry: date | None) -> str:
    name = (doc_title or "").strip() or "Your document"
    if expiry is None:
        return f"{name} is expiring soon"
    return f"{name} expires on {expiry.isoformat()}"


def schedule_tr_push(
    db: Session,
    push_client: OneSignalClient,
    *,
    auth_user_id: str | None,
    user_id: str,
    kind: str,
    item_id: str,
    notification_id: str,
    reminder_text: str,
    scheduled_for: datetime | str,
    title: str | None = None,
    deep_link: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Task / reminder due push; ownership is checked against tr_tasks or tr_reminders."""
    require_fields(
        user_id=user_id,
        kind=kind,
        item_id=item_id,
        notification_id=notification_id,
        reminder_text=reminder_text,
        scheduled_for=scheduled_for,
    )
    if not auth_user_id or auth_user_id != user_id:
        raise AuthenticationError(MSG_UNAUTHORIZED)
    if kind not in TR_KINDS:
        raise ValidationError("Invalid kind")

    is_task = kind == "tr_task_due"
    model = TRTask if is_task else TRReminder
    item = db.query(model).filter(model.id == item_id).first()
    if item is None or item.user_id != user_id:
        raise NotFoundError("Task not found" if is_task else "Reminder not found")

    data = {
        "type": kind,
        "deep_link": deep_link or TR_DEEP_LINK,
        ("tr_task_id" if is_task else "tr_reminder_id"): item_id,
    }
    return schedule_history_push(
        db,
        push_client,
        user_id=user_id,
        notification_id=notification_id,
        title=title or ("Task Due" if is_task else "Reminder"),
        body=reminder_text,
        scheduled_for=scheduled_for,
        data=data,
        now=now,
    )
