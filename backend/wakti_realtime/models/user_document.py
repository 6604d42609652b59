"""Tracked document (ID card, passport, ...) with an expiry date; target of doc-expiry reminders."""
from sqlalchemy import Column, Date, DateTime, String
from sqlalchemy.sql import func

from wakti_realtime.db.base import Base, new_id


class UserDocument(Base):
    __tablename__ = "user_documents"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), nullable=False, index=True)
    title = Column(String(256), nullable=False)
    expiry_date = Column(Date, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
