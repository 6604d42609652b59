"""Direct message between two users. Committed inserts go out on the realtime change stream."""
from sqlalchemy import Column, DateTime, String, Text
from sqlalchemy.sql import func

from wakti_realtime.core.clock import utcnow
from wakti_realtime.db.base import Base, new_id


class Message(Base):
    __tablename__ = "messages"

    id = Column(String(36), primary_key=True, default=new_id)
    sender_id = Column(String(36), nullable=False, index=True)
    recipient_id = Column(String(36), nullable=False, index=True)
    content = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
