"""
Single source of truth for database tables that exist after migrations.

alembic/env.py asserts the registered models match this list.
"""
ALL_TABLE_NAMES = (
    "profiles",
    "messages",
    "contacts",
    "user_documents",
    "tr_tasks",
    "tr_reminders",
    "notification_queue",
    "notification_history",
)

# Tables whose committed inserts are published on the realtime change stream
CHANGE_STREAM_TABLE_NAMES = (
    "messages",
    "contacts",
)
