"""Queued notification: "send this, roughly now". Drained in batches by the queue job.

status: pending -> processing (claimed by one drainer invocation until claim_expires_at) -> sent | failed | pending.
attempts: incremented once per drainer pass over the row; failed after max attempts.
"""
from sqlalchemy import Column, DateTime, Index, Integer, String, Text
from sqlalchemy.sql import func

from wakti_realtime.core.clock import utcnow
from wakti_realtime.db.base import Base, JSONType, new_id


class NotificationQueue(Base):
    __tablename__ = "notification_queue"
    __table_args__ = (
        Index("ix_notification_queue_status_scheduled", "status", "scheduled_for"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), nullable=False, index=True)
    notification_type = Column(String(64), nullable=False)
    title = Column(String(256), nullable=False)
    body = Column(Text, nullable=False)
    data = Column(JSONType, nullable=False, default=dict)
    deep_link = Column(String(512), nullable=True)
    scheduled_for = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    status = Column(String(16), nullable=False, default="pending", server_default="pending")
    attempts = Column(Integer, nullable=False, default=0, server_default="0")
    claimed_by = Column(String(64), nullable=True)
    claim_expires_at = Column(DateTime(timezone=True), nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
