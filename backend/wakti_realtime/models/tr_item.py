"""Tasks & reminders ("TR") rows; due pushes are scheduled against them."""
from sqlalchemy import Column, DateTime, String
from sqlalchemy.sql import func

from wakti_realtime.db.base import Base, new_id


class TRTask(Base):
    __tablename__ = "tr_tasks"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), nullable=False, index=True)
    title = Column(String(256), nullable=False)
    due_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class TRReminder(Base):
    __tablename__ = "tr_reminders"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), nullable=False, index=True)
    title = Column(String(256), nullable=False)
    due_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
