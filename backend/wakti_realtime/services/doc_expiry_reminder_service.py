"""
Document expiry reminders: schedule, find, cancel and reschedule the provider push for one user document.

Rescheduling is cancel-then-schedule with no transaction across the two provider calls. A failed cancel is
logged and does not block the new schedule, so the user may get two pushes; the old row then keeps
push_state="scheduled" so the leftover is visible.
"""
import logging
from datetime import date
from typing import Any

from sqlalchemy.orm import Session

from wakti_realtime.core.constants import (
    DOC_EXPIRY_LOOKBACK_ROWS,
    HISTORY_TYPE_DOC_EXPIRY,
    PUSH_STATE_CANCELLED,
    PUSH_STATE_PENDING,
)
from wakti_realtime.core.errors import NotFoundError, ServiceError
from wakti_realtime.models.notification_history import NotificationHistory
from wakti_realtime.models.user_document import UserDocument
from wakti_realtime.services.onesignal import OneSignalClient, PushResult
from wakti_realtime.services.scheduled_push_service import (
    doc_expiry_body,
    doc_expiry_reminder_time,
    parse_expiry_date,
    require_fields,
    schedule_doc_expiry_push,
)

logger = logging.getLogger(__name__)

DOC_EXPIRY_TITLE = "Document Expiring Soon"


class DocumentExpiryReminderService:
    def __init__(self, db: Session, push_client: OneSignalClient) -> None:
        self.db = db
        self.push_client = push_client

    def _get_document(self, user_id: str, doc_id: str) -> UserDocument:
        doc = self.db.query(UserDocument).filter(UserDocument.id == doc_id).first()
        if doc is None or doc.user_id != user_id:
            raise NotFoundError("Document not found")
        return doc

    def schedule(self, user_id: str, doc_id: str, expiry_date: date | str | None = None) -> dict[str, Any]:
        """
        Insert a doc_expiry history row and schedule its push one month before expiry.
        If scheduling fails the new row is removed and the error propagates.
        """
        require_fields(user_id=user_id, doc_id=doc_id)
        doc = self._get_document(user_id, doc_id)
        expiry = parse_expiry_date(expiry_date) if expiry_date else doc.expiry_date
        if expiry is None:
            require_fields(expiry_date=None)

        row = NotificationHistory(
            user_id=user_id,
            type=HISTORY_TYPE_DOC_EXPIRY,
            title=DOC_EXPIRY_TITLE,
            body=doc_expiry_body(doc.title, expiry),
            scheduled_for=doc_expiry_reminder_time(expiry),
            push_sent=False,
            push_state=PUSH_STATE_PENDING,
            data={"doc_id": doc_id, "expiry_date": expiry.isoformat()},
        )
        self.db.add(row)
        self.db.commit()
        self.db.refresh(row)
        notification_id = row.id

        try:
            return schedule_doc_expiry_push(
                self.db,
                self.push_client,
                auth_user_id=user_id,
                user_id=user_id,
                notification_id=notification_id,
                doc_id=doc_id,
                expiry_date=expiry,
            )
        except ServiceError:
            self.db.rollback()
            self.db.query(NotificationHistory).filter(NotificationHistory.id == notification_id).delete(
                synchronize_session=False
            )
            self.db.commit()
            raise

    def find_scheduled(self, user_id: str, doc_id: str) -> NotificationHistory | None:
        """Newest handed-off doc_expiry row for this document, among the user's most recent ones."""
        rows = (
            self.db.query(NotificationHistory)
            .filter(
                NotificationHistory.user_id == user_id,
                NotificationHistory.type == HISTORY_TYPE_DOC_EXPIRY,
                NotificationHistory.push_sent.is_(True),
            )
            .order_by(NotificationHistory.created_at.desc())
            .limit(DOC_EXPIRY_LOOKBACK_ROWS)
            .all()
        )
        for row in rows:
            if (row.data or {}).get("doc_id") == doc_id:
                return row
        return None

    def _cancel_row(self, row: NotificationHistory) -> PushResult:
        onesignal_id = (row.data or {}).get("onesignal_notification_id")
        if not onesignal_id:
            return PushResult(ok=False, error="No OneSignal notification id stored")
        result = self.push_client.cancel(onesignal_id)
        if result.ok:
            row.push_sent = False
            row.push_state = PUSH_STATE_CANCELLED
            self.db.commit()
            logger.info("Doc expiry push %s cancelled (notification %s)", onesignal_id, row.id)
        else:
            logger.warning("Doc expiry push %s cancel failed: %s", onesignal_id, result.error)
        return result

    def cancel(self, user_id: str, doc_id: str) -> dict[str, Any]:
        row = self.find_scheduled(user_id, doc_id)
        if row is None:
            return {"success": True, "cancelled": False}
        result = self._cancel_row(row)
        if not result.ok:
            return {"success": False, "cancelled": False, "notification_id": row.id, "error": result.error}
        return {"success": True, "cancelled": True, "notification_id": row.id}

    def reschedule(self, user_id: str, doc_id: str, new_expiry_date: date | str) -> dict[str, Any]:
        """Cancel the existing push (best effort), then always schedule for the new expiry."""
        require_fields(user_id=user_id, doc_id=doc_id, expiry_date=new_expiry_date)
        expiry = parse_expiry_date(new_expiry_date)
        self._get_document(user_id, doc_id)

        previous = self.find_scheduled(user_id, doc_id)
        previous_cancelled = False
        previous_id = None
        if previous is not None:
            previous_id = previous.id
            previous_cancelled = self._cancel_row(previous).ok

        result = self.schedule(user_id, doc_id, expiry)
        return {**result, "previous_notification_id": previous_id, "previous_cancelled": previous_cancelled}
