"""AI reminders for the signed-in user: create (saved + provider-scheduled), list pending, cancel."""
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from wakti_realtime.api.deps import require_push_client
from wakti_realtime.core.errors import ProviderError
from wakti_realtime.core.security import AuthUser, get_current_user
from wakti_realtime.db.session import get_db
from wakti_realtime.services.onesignal import OneSignalClient
from wakti_realtime.services.reminder_service import cancel_reminder, create_scheduled_reminder, get_pending_reminders

router = APIRouter()


class CreateReminderBody(BaseModel):
    reminder_text: str | None = None
    scheduled_for: str | None = None
    context: str | None = None


@router.post("")
def create_reminder(
    body: CreateReminderBody,
    client: OneSignalClient = Depends(require_push_client),
    user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    return create_scheduled_reminder(db, client, user.id, body.reminder_text, body.scheduled_for, body.context)


@router.get("/pending")
def pending_reminders(
    user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    return {"reminders": get_pending_reminders(db, user.id)}


@router.delete("/{reminder_id}")
def delete_reminder(
    reminder_id: str,
    client: OneSignalClient = Depends(require_push_client),
    user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    result = cancel_reminder(db, client, reminder_id, user.id)
    if not result["success"]:
        raise ProviderError(result["error"])
    return result
