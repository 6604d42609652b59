"""
Row-change stream: inserts on CHANGE_STREAM_TABLE_NAMES are published to the realtime broker after commit.

Rows are collected at flush and only published once the transaction commits, so rolled-back inserts never
reach subscribers.
"""
import logging
from datetime import date, datetime
from typing import Any

from sqlalchemy import event, inspect

from wakti_realtime.db.tables import CHANGE_STREAM_TABLE_NAMES
from wakti_realtime.realtime.broker import RealtimeBroker

logger = logging.getLogger(__name__)

_PENDING_KEY = "realtime_pending_changes"
_INSTALLED_ATTR = "_realtime_change_stream"


def _jsonable(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def row_to_record(obj: Any) -> dict[str, Any]:
    mapper = inspect(obj).mapper
    return {attr.key: _jsonable(getattr(obj, attr.key)) for attr in mapper.column_attrs}


def install_change_stream(target: Any, broker: RealtimeBroker, tables: tuple[str, ...] = CHANGE_STREAM_TABLE_NAMES) -> None:
    """Attach the listeners to a sessionmaker or Session class. Installing twice on one target is a no-op."""
    if getattr(target, _INSTALLED_ATTR, False):
        return
    setattr(target, _INSTALLED_ATTR, True)

    def _collect(session, flush_context) -> None:
        for obj in session.new:
            table = getattr(getattr(obj, "__table__", None), "name", None)
            if table in tables:
                session.info.setdefault(_PENDING_KEY, []).append((table, row_to_record(obj)))

    def _publish(session) -> None:
        changes = session.info.pop(_PENDING_KEY, [])
        for table, record in changes:
            try:
                broker.publish_change(table, "INSERT", record)
            except Exception:
                logger.exception("Publishing %s insert %s failed", table, record.get("id"))

    def _discard(session, previous_transaction=None) -> None:
        session.info.pop(_PENDING_KEY, None)

    event.listen(target, "after_flush", _collect)
    event.listen(target, "after_commit", _publish)
    event.listen(target, "after_soft_rollback", _discard)
