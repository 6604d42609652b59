"""
Centralized constants for scheduler jobs, presence and push delivery.

Change job IDs, windows or channel names here instead of scattering literals across modules.
Queue batch size / attempts / lease come from settings (env-driven).
"""

# Scheduler job IDs (must match ids used in main.py add_job)
NOTIFICATION_QUEUE_JOB_ID = "process_notification_queue"
PRESENCE_HEARTBEAT_JOB_PREFIX = "presence_heartbeat"

# Presence channel
PRESENCE_CHANNEL = "online-users"
TYPING_EVENT = "typing"
PRESENCE_HEARTBEAT_SECONDS = 30
# A present user whose last_seen is older than this is not online
PRESENCE_FRESHNESS_SECONDS = 60
# last_seen within this window renders as "Active recently"
PRESENCE_RECENT_SECONDS = 5 * 60

# Realtime event router: poll interval and deadline while waiting for the push client
ROUTER_READY_POLL_SECONDS = 0.1
ROUTER_READY_TIMEOUT_SECONDS = 10.0
ROUTER_FALLBACK_ACTOR_NAME = "Someone"

# Schedulers: reject instants further than this in the past
SCHEDULE_PAST_TOLERANCE_SECONDS = 60
# Doc-expiry reminders fire this many months before expiry, at this local hour
DOC_EXPIRY_MONTHS_BEFORE = 1
DOC_EXPIRY_REMINDER_HOUR = 9
# Rescheduler scans this many recent scheduled doc-expiry rows
DOC_EXPIRY_LOOKBACK_ROWS = 10

# Notification types
HISTORY_TYPE_AI_REMINDER = "ai_reminder"
HISTORY_TYPE_DOC_EXPIRY = "doc_expiry"
TR_KINDS = ("tr_reminder_due", "tr_task_due")

# Queue status values
QUEUE_STATUS_PENDING = "pending"
QUEUE_STATUS_PROCESSING = "processing"
QUEUE_STATUS_SENT = "sent"
QUEUE_STATUS_FAILED = "failed"

# History push_state values; push_sent=True only says "handed to the provider"
PUSH_STATE_PENDING = "pending"
PUSH_STATE_SCHEDULED = "scheduled"
PUSH_STATE_CANCELLED = "cancelled"

DEFAULT_DEEP_LINK = "/dashboard"
