"""Notification history: in-app record and handle for provider-scheduled pushes.

push_sent: True once the push was handed to OneSignal (for future sends that means scheduled, not delivered).
push_state: pending | scheduled | cancelled, the unambiguous version of the same fact.
data.onesignal_notification_id: provider handle used to cancel/reschedule.
"""
from sqlalchemy import Boolean, Column, DateTime, Index, String, Text, false
from sqlalchemy.sql import func

from wakti_realtime.core.clock import utcnow
from wakti_realtime.db.base import Base, JSONType, new_id


class NotificationHistory(Base):
    __tablename__ = "notification_history"
    __table_args__ = (
        Index("ix_notification_history_user_type_created", "user_id", "type", "created_at"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), nullable=False, index=True)
    type = Column(String(64), nullable=False)
    title = Column(String(256), nullable=False)
    body = Column(Text, nullable=False)
    data = Column(JSONType, nullable=False, default=dict)
    deep_link = Column(String(512), nullable=True)
    scheduled_for = Column(DateTime(timezone=True), nullable=True)
    push_sent = Column(Boolean, nullable=False, default=False, server_default=false())
    push_sent_at = Column(DateTime(timezone=True), nullable=True)
    push_state = Column(String(16), nullable=False, default="pending", server_default="pending")
    is_read = Column(Boolean, nullable=False, default=False, server_default=false())
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
