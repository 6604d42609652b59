#!/usr/bin/env python3
"""
Run one notification queue pass by hand (same as the scheduler job / POST /functions/process-notification-queue).
Run: cd backend && python scripts/process_queue_once.py [--fix-stuck]
"""
import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from wakti_realtime.db.session import SessionLocal
from wakti_realtime.services.notification_queue_service import (
    fix_stuck_notifications,
    get_queue_status,
    process_notification_queue,
)
from wakti_realtime.services.onesignal import get_push_client


def main():
    client = get_push_client()
    if not client.is_configured():
        print("OneSignal not configured (ONESIGNAL_APP_ID / ONESIGNAL_REST_API_KEY)")
        return 1
    db = SessionLocal()
    try:
        if "--fix-stuck" in sys.argv[1:]:
            result = fix_stuck_notifications(db, client)
        else:
            result = process_notification_queue(db, client)
        print(json.dumps(result, indent=2, default=str))
        queue = get_queue_status(db)["queue"]
        print(f"Queue now: pending={queue['pending']} processing={queue['processing']} sent={queue['sent']} failed={queue['failed']}")
    finally:
        db.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
