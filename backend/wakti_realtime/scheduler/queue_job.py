"""
Drain the notification queue: every NOTIFICATION_QUEUE_POLL_SECONDS, push due rows through OneSignal.

Overlapping runs (a slow pass, a manual /functions/process-notification-queue call) are safe: rows are
claimed with a lease before sending.
"""
import logging

from wakti_realtime.db.session import SessionLocal
from wakti_realtime.services.notification_queue_service import process_notification_queue
from wakti_realtime.services.onesignal import get_push_client

logger = logging.getLogger(__name__)


def run_notification_queue_job() -> None:
    client = get_push_client()
    if not client.is_configured():
        logger.debug("Queue job: OneSignal not configured; skipping")
        return
    db = SessionLocal()
    try:
        result = process_notification_queue(db, client)
        if result["total"]:
            logger.info("Queue job: sent %s, failed %s of %s", result["sent"], result["failed"], result["total"])
    except Exception as e:
        logger.exception("Queue job failed: %s", e)
        db.rollback()
    finally:
        db.close()
