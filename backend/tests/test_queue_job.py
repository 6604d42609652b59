from wakti_realtime.core.clock import utcnow
from wakti_realtime.models.notification_queue import NotificationQueue
from wakti_realtime.scheduler import queue_job

from conftest import FakePushClient


def test_job_drains_due_rows(monkeypatch, session_factory, db, push_client):
    db.add(NotificationQueue(user_id="u1", notification_type="task_updates", title="t", body="b", scheduled_for=utcnow()))
    db.commit()
    monkeypatch.setattr(queue_job, "SessionLocal", session_factory)
    monkeypatch.setattr(queue_job, "get_push_client", lambda: push_client)

    queue_job.run_notification_queue_job()

    db.expire_all()
    assert db.query(NotificationQueue).one().status == "sent"
    assert len(push_client.sent) == 1


def test_job_skips_without_credentials(monkeypatch):
    def no_session():
        raise AssertionError("no session expected")

    monkeypatch.setattr(queue_job, "SessionLocal", no_session)
    monkeypatch.setattr(queue_job, "get_push_client", lambda: FakePushClient(configured=False))

    queue_job.run_notification_queue_job()


def test_job_survives_database_errors(monkeypatch, push_client):
    class BrokenSession:
        closed = False
        rolled_back = False

        def query(self, *args):
            raise RuntimeError("connection reset")

        def execute(self, *args, **kwargs):
            raise RuntimeError("connection reset")

        def rollback(self):
            BrokenSession.rolled_back = True

        def close(self):
            BrokenSession.closed = True

    monkeypatch.setattr(queue_job, "SessionLocal", BrokenSession)
    monkeypatch.setattr(queue_job, "get_push_client", lambda: push_client)

    queue_job.run_notification_queue_job()

    assert BrokenSession.rolled_back and BrokenSession.closed
