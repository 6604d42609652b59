"""
Expiry reminder for one of the caller's documents.

POST schedules, PUT reschedules to a new expiry date (old push cancelled best effort), DELETE cancels.
"""
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from wakti_realtime.api.deps import require_push_client
from wakti_realtime.core.errors import ProviderError
from wakti_realtime.core.security import AuthUser, get_current_user
from wakti_realtime.db.session import get_db
from wakti_realtime.services.doc_expiry_reminder_service import DocumentExpiryReminderService
from wakti_realtime.services.onesignal import OneSignalClient

router = APIRouter()


class ExpiryReminderBody(BaseModel):
    expiry_date: str | None = None


def _service(
    client: OneSignalClient = Depends(require_push_client),
    db: Session = Depends(get_db),
) -> DocumentExpiryReminderService:
    return DocumentExpiryReminderService(db, client)


@router.post("/{doc_id}/expiry-reminder")
def schedule_expiry_reminder(
    doc_id: str,
    body: ExpiryReminderBody | None = None,
    service: DocumentExpiryReminderService = Depends(_service),
    user: AuthUser = Depends(get_current_user),
) -> dict[str, Any]:
    """expiry_date defaults to the document's stored expiry."""
    return service.schedule(user.id, doc_id, body.expiry_date if body else None)


@router.put("/{doc_id}/expiry-reminder")
def reschedule_expiry_reminder(
    doc_id: str,
    body: ExpiryReminderBody,
    service: DocumentExpiryReminderService = Depends(_service),
    user: AuthUser = Depends(get_current_user),
) -> dict[str, Any]:
    return service.reschedule(user.id, doc_id, body.expiry_date)


@router.delete("/{doc_id}/expiry-reminder")
def cancel_expiry_reminder(
    doc_id: str,
    service: DocumentExpiryReminderService = Depends(_service),
    user: AuthUser = Depends(get_current_user),
) -> dict[str, Any]:
    result = service.cancel(user.id, doc_id)
    if not result["success"]:
        raise ProviderError(result["error"])
    return result
