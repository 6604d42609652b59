"""Test configuration: env for Settings, in-memory SQLite, fake push client, controllable clock."""
import itertools
import os
from datetime import datetime, timedelta, timezone

# Settings are read at import time; set env before importing the app package.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SUPABASE_JWT_SECRET"] = "test-jwt-secret"
os.environ["ONESIGNAL_APP_ID"] = "test-app-id"
os.environ["ONESIGNAL_REST_API_KEY"] = "test-rest-key"
os.environ["REMINDER_TIMEZONE"] = "UTC"
os.environ["SCHEDULER_ENABLED"] = "false"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import wakti_realtime.models  # noqa: E402,F401
from wakti_realtime.api.routes.realtime import get_broker  # noqa: E402
from wakti_realtime.core.security import create_access_token  # noqa: E402
from wakti_realtime.db.base import Base  # noqa: E402
from wakti_realtime.db.session import get_db  # noqa: E402
from wakti_realtime.main import app  # noqa: E402
from wakti_realtime.realtime.broker import RealtimeBroker  # noqa: E402
from wakti_realtime.services.onesignal import PushMessage, PushResult, get_push_client  # noqa: E402


class FakePushClient:
    """Stands in for OneSignalClient. Records sends/cancels; set `error` to make every send fail."""

    def __init__(self, *, configured: bool = True, ready: bool = True) -> None:
        self.configured = configured
        self.ready = ready
        self.error: str | None = None
        self.cancel_ok = True
        self.send_results: list[PushResult] = []
        self.sent: list[PushMessage] = []
        self.cancelled: list[str] = []
        self._ids = itertools.count(1)

    def is_configured(self) -> bool:
        return self.configured

    def is_ready(self) -> bool:
        return self.ready

    def send(self, message: PushMessage) -> PushResult:
        self.sent.append(message)
        if self.send_results:
            return self.send_results.pop(0)
        if self.error:
            return PushResult(ok=False, status_code=500, error=self.error)
        return PushResult(ok=True, notification_id=f"os-{next(self._ids)}", status_code=200)

    def cancel(self, notification_id: str) -> PushResult:
        self.cancelled.append(notification_id)
        if self.cancel_ok:
            return PushResult(ok=True, notification_id=notification_id, status_code=200)
        return PushResult(ok=False, notification_id=notification_id, status_code=400, error="Notification not found")


class FakeClock:
    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def engine():
    eng = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(eng)
    yield eng
    Base.metadata.drop_all(eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def push_client():
    return FakePushClient()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def broker():
    return RealtimeBroker()


@pytest.fixture
def client(session_factory, push_client, broker):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_push_client] = lambda: push_client
    app.dependency_overrides[get_broker] = lambda: broker
    with_client = TestClient(app)
    yield with_client
    app.dependency_overrides.clear()


def auth_headers(user_id: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


@pytest.fixture
def auth():
    return auth_headers
