from wakti_realtime.db.base import Base
from wakti_realtime.db.session import get_db, engine, SessionLocal
from wakti_realtime.db.tables import ALL_TABLE_NAMES, CHANGE_STREAM_TABLE_NAMES

__all__ = ["get_db", "engine", "SessionLocal", "Base", "ALL_TABLE_NAMES", "CHANGE_STREAM_TABLE_NAMES"]
