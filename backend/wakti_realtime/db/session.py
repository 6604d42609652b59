"""
Database session and engine.
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from wakti_realtime.config import settings
from wakti_realtime.db.base import Base  # noqa: F401

_pool_kwargs = {}
if not settings.database_url.startswith("sqlite"):
    _pool_kwargs = dict(
        pool_size=8,
        max_overflow=10,
        pool_pre_ping=True,
        pool_recycle=300,
        pool_timeout=30,
    )

engine = create_engine(settings.database_url, **_pool_kwargs)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
