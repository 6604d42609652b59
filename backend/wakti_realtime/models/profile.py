"""User profile: display name for notification copy, last_seen_at for presence fallback."""
from sqlalchemy import Column, DateTime, String
from sqlalchemy.sql import func

from wakti_realtime.db.base import Base


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True)  # same id as the auth user
    display_name = Column(String(128), nullable=True)
    email = Column(String(256), nullable=True)
    last_seen_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
