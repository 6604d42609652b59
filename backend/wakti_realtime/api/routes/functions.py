"""
Function endpoints: queue drain, immediate push and the provider-scheduled push variants.

Bodies are validated by the services so missing fields come back as
400 {"error": "Missing required fields: ..."}.
"""
import logging
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import AliasChoices, BaseModel, Field
from sqlalchemy.orm import Session

from wakti_realtime.api.deps import require_push_client
from wakti_realtime.core.errors import MSG_UNAUTHORIZED, AuthenticationError, ProviderError, ValidationError
from wakti_realtime.core.security import AuthUser, get_current_user
from wakti_realtime.db.session import get_db
from wakti_realtime.services.notification_queue_service import process_notification_queue
from wakti_realtime.services.onesignal import OneSignalClient, send_push_to_users
from wakti_realtime.services.scheduled_push_service import (
    schedule_doc_expiry_push,
    schedule_reminder_push,
    schedule_tr_push,
)

router = APIRouter()
logger = logging.getLogger(__name__)


# --- Queue drain ---


@router.post("/process-notification-queue")
def process_queue(
    client: OneSignalClient = Depends(require_push_client),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    """One drainer pass (also run by the scheduler every NOTIFICATION_QUEUE_POLL_SECONDS)."""
    return process_notification_queue(db, client)


# --- Immediate push ---


class SendPushBody(BaseModel):
    user_ids: list[str] | None = Field(None, validation_alias=AliasChoices("user_ids", "userIds"))
    title: str | None = None
    body: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    url: str | None = None


@router.post("/send-push-notification")
def send_push_notification(
    body: SendPushBody,
    client: OneSignalClient = Depends(require_push_client),
    user: AuthUser = Depends(get_current_user),
) -> dict[str, Any]:
    if not (body.title or "").strip() or not (body.body or "").strip():
        raise ValidationError("Missing required fields: title and body are required")
    user_ids = [u.strip() for u in (body.user_ids or []) if u and u.strip()]
    if not user_ids:
        raise ValidationError("No user ids provided")
    result = send_push_to_users(client, user_ids, body.title, body.body, data=body.data, url=body.url)
    if not result.ok:
        raise ProviderError(result.error or "Failed to send push notification")
    logger.info("Immediate push %s from %s to %s user(s)", result.notification_id, user.id, len(user_ids))
    return {"success": True, "notification_id": result.notification_id, "recipients": len(user_ids)}


# --- Scheduled pushes ---


class ScheduleReminderBody(BaseModel):
    user_id: str | None = None
    notification_id: str | None = None
    reminder_text: str | None = None
    scheduled_for: str | None = None
    title: str | None = None


@router.post("/schedule-reminder-push")
def schedule_reminder(
    body: ScheduleReminderBody,
    client: OneSignalClient = Depends(require_push_client),
    user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    if body.user_id and body.user_id != user.id:
        raise AuthenticationError(MSG_UNAUTHORIZED)
    return schedule_reminder_push(
        db,
        client,
        user_id=body.user_id,
        notification_id=body.notification_id,
        reminder_text=body.reminder_text,
        scheduled_for=body.scheduled_for,
        title=body.title,
    )


class ScheduleDocExpiryBody(BaseModel):
    user_id: str | None = None
    notification_id: str | None = None
    doc_id: str | None = None
    expiry_date: str | None = None
    scheduled_for: str | None = None
    title: str | None = None
    body: str | None = None


@router.post("/schedule-doc-expiry-push")
def schedule_doc_expiry(
    body: ScheduleDocExpiryBody,
    client: OneSignalClient = Depends(require_push_client),
    user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    return schedule_doc_expiry_push(
        db,
        client,
        auth_user_id=user.id,
        user_id=body.user_id,
        notification_id=body.notification_id,
        doc_id=body.doc_id,
        expiry_date=body.expiry_date,
        scheduled_for=body.scheduled_for,
        title=body.title,
        body=body.body,
    )


class ScheduleTRBody(BaseModel):
    user_id: str | None = None
    kind: str | None = None
    item_id: str | None = None
    notification_id: str | None = None
    reminder_text: str | None = None
    scheduled_for: str | None = None
    title: str | None = None
    deep_link: str | None = None


@router.post("/schedule-tr-push")
def schedule_tr(
    body: ScheduleTRBody,
    client: OneSignalClient = Depends(require_push_client),
    user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    return schedule_tr_push(
        db,
        client,
        auth_user_id=user.id,
        user_id=body.user_id,
        kind=body.kind,
        item_id=body.item_id,
        notification_id=body.notification_id,
        reminder_text=body.reminder_text,
        scheduled_for=body.scheduled_for,
        title=body.title,
        deep_link=body.deep_link,
    )
