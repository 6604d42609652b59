"""Contact request: user_id asked contact_id to connect. status: pending | approved | blocked."""
from sqlalchemy import Column, DateTime, String
from sqlalchemy.sql import func

from wakti_realtime.core.clock import utcnow
from wakti_realtime.db.base import Base, new_id


class Contact(Base):
    __tablename__ = "contacts"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), nullable=False, index=True)
    contact_id = Column(String(36), nullable=False, index=True)
    status = Column(String(16), nullable=False, default="pending", server_default="pending")
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
