"""
In-process realtime hub: named topics with a keyed presence registry, broadcast events and a row-change stream.

Every client joins a topic through its own Channel handle (one per socket / per hook instance). The presence
registry holds one entry per (presence key, channel), so two tabs of the same user show up as two metas under
one key. Handlers run on the publishing thread after the hub lock is released; a handler that raises is logged
and the remaining handlers still run.
"""
import itertools
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable

logger = logging.getLogger(__name__)

SUBSCRIBED = "SUBSCRIBED"
CLOSED = "CLOSED"

PRESENCE_SYNC = "sync"
PRESENCE_JOIN = "join"
PRESENCE_LEAVE = "leave"
PRESENCE_EVENTS = (PRESENCE_SYNC, PRESENCE_JOIN, PRESENCE_LEAVE)
# on_broadcast(ANY_EVENT, cb) receives every broadcast on the topic
ANY_EVENT = "*"

# key -> list of presence payloads (one per joined channel tracking that key)
PresenceState = dict[str, list[dict[str, Any]]]
Handler = Callable[[dict[str, Any]], None]


@dataclass
class _ChangeHandler:
    table: str
    event: str
    filter: dict[str, Any]
    callback: Handler

    def matches(self, table: str, event: str, record: dict[str, Any]) -> bool:
        if table != self.table:
            return False
        if self.event != "*" and event != self.event:
            return False
        return all(record.get(col) == value for col, value in self.filter.items())


@dataclass
class _Topic:
    name: str
    members: dict[int, "Channel"] = field(default_factory=dict)
    presences: dict[str, dict[int, dict[str, Any]]] = field(default_factory=dict)

    def state(self) -> PresenceState:
        return {
            key: [dict(meta) for meta in metas.values()]
            for key, metas in self.presences.items()
            if metas
        }


class Channel:
    """One client's membership of a topic. Register handlers, then subscribe()."""

    def __init__(self, broker: "RealtimeBroker", topic: str, ref: int, presence_key: str | None) -> None:
        self._broker = broker
        self.topic = topic
        self.ref = ref
        self.presence_key = presence_key
        self.status = CLOSED
        self._presence_handlers: dict[str, list[Handler]] = {e: [] for e in PRESENCE_EVENTS}
        self._broadcast_handlers: dict[str, list[Handler]] = {}
        self._change_handlers: list[_ChangeHandler] = []

    @property
    def is_subscribed(self) -> bool:
        return self.status == SUBSCRIBED

    def on_presence(self, event: str, callback: Handler) -> "Channel":
        if event not in PRESENCE_EVENTS:
            raise ValueError(f"Unknown presence event {event!r}")
        self._presence_handlers[event].append(callback)
        return self

    def on_broadcast(self, event: str, callback: Handler) -> "Channel":
        self._broadcast_handlers.setdefault(event, []).append(callback)
        return self

    def on_change(
        self,
        table: str,
        callback: Handler,
        *,
        event: str = "INSERT",
        filter: dict[str, Any] | None = None,
    ) -> "Channel":
        """Row-change handler. filter is column -> required value (equality only)."""
        self._change_handlers.append(_ChangeHandler(table=table, event=event, filter=dict(filter or {}), callback=callback))
        return self

    def subscribe(self, callback: Callable[[str], None] | None = None) -> str:
        if not self.is_subscribed:
            self._broker._join(self)
            self.status = SUBSCRIBED
        if callback is not None:
            callback(self.status)
        return self.status

    def track(self, payload: dict[str, Any]) -> None:
        if not self.is_subscribed:
            raise RuntimeError(f"Channel {self.topic!r} is not subscribed")
        if not self.presence_key:
            raise RuntimeError(f"Channel {self.topic!r} has no presence key")
        self._broker._track(self, dict(payload))

    def untrack(self) -> None:
        if self.is_subscribed:
            self._broker._untrack(self)

    def send_broadcast(self, event: str, payload: dict[str, Any]) -> None:
        if not self.is_subscribed:
            raise RuntimeError(f"Channel {self.topic!r} is not subscribed")
        self._broker._broadcast(self, event, dict(payload))

    def presence_state(self) -> PresenceState:
        return self._broker.presence_state(self.topic)

    def unsubscribe(self) -> None:
        if self.is_subscribed:
            self.status = CLOSED
            self._broker._leave(self)

    # handler lookup used by the broker
    def _presence(self, event: str) -> list[Handler]:
        return list(self._presence_handlers.get(event, ()))

    def _broadcasts(self, event: str) -> list[Handler]:
        handlers = list(self._broadcast_handlers.get(event, ()))
        if event != ANY_EVENT:
            handlers += self._broadcast_handlers.get(ANY_EVENT, ())
        return handlers

    def _changes(self, table: str, event: str, record: dict[str, Any]) -> list[Handler]:
        return [h.callback for h in self._change_handlers if h.matches(table, event, record)]


class RealtimeBroker:
    """Thread-safe topic registry. Use channel() to join, publish_change() to feed the row-change stream."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._topics: dict[str, _Topic] = {}
        self._refs = itertools.count(1)

    def channel(self, topic: str, *, presence_key: str | None = None) -> Channel:
        with self._lock:
            ref = next(self._refs)
        return Channel(self, topic, ref, presence_key)

    def remove_channel(self, channel: Channel) -> None:
        channel.unsubscribe()

    def presence_state(self, topic: str) -> PresenceState:
        with self._lock:
            t = self._topics.get(topic)
            return t.state() if t else {}

    def member_count(self, topic: str) -> int:
        with self._lock:
            t = self._topics.get(topic)
            return len(t.members) if t else 0

    def publish_change(self, table: str, event: str, record: dict[str, Any]) -> int:
        """Deliver a row change to every subscribed channel whose filter matches. Returns handler count."""
        with self._lock:
            calls = [
                cb
                for t in self._topics.values()
                for ch in t.members.values()
                for cb in ch._changes(table, event, record)
            ]
        message = {"table": table, "event_type": event, "new": dict(record)}
        return _dispatch(calls, message, what=f"change {table}.{event}")

    # --- internals (called by Channel) ---

    def _join(self, channel: Channel) -> None:
        with self._lock:
            topic = self._topics.setdefault(channel.topic, _Topic(channel.topic))
            topic.members[channel.ref] = channel

    def _leave(self, channel: Channel) -> None:
        with self._lock:
            topic = self._topics.get(channel.topic)
            if topic is None:
                return
            topic.members.pop(channel.ref, None)
            left = self._remove_presence(topic, channel)
            state = topic.state()
            others = list(topic.members.values())
            if not topic.members and not topic.presences:
                del self._topics[channel.topic]
        if left is not None:
            self._emit_presence(others, PRESENCE_LEAVE, {"key": channel.presence_key, "left_presences": [left], "state": state})
            self._emit_presence(others, PRESENCE_SYNC, {"state": state})

    def _track(self, channel: Channel, payload: dict[str, Any]) -> None:
        with self._lock:
            topic = self._topics.setdefault(channel.topic, _Topic(channel.topic))
            topic.presences.setdefault(channel.presence_key, {})[channel.ref] = payload
            state = topic.state()
            members = list(topic.members.values())
        self._emit_presence(members, PRESENCE_JOIN, {"key": channel.presence_key, "new_presences": [dict(payload)], "state": state})
        self._emit_presence(members, PRESENCE_SYNC, {"state": state})

    def _untrack(self, channel: Channel) -> None:
        with self._lock:
            topic = self._topics.get(channel.topic)
            if topic is None:
                return
            left = self._remove_presence(topic, channel)
            state = topic.state()
            members = list(topic.members.values())
        if left is not None:
            self._emit_presence(members, PRESENCE_LEAVE, {"key": channel.presence_key, "left_presences": [left], "state": state})
            self._emit_presence(members, PRESENCE_SYNC, {"state": state})

    def _broadcast(self, sender: Channel, event: str, payload: dict[str, Any]) -> None:
        with self._lock:
            topic = self._topics.get(sender.topic)
            receivers = [ch for ref, ch in topic.members.items() if ref != sender.ref] if topic else []
            calls = [cb for ch in receivers for cb in ch._broadcasts(event)]
        _dispatch(calls, {"event": event, "payload": payload}, what=f"broadcast {sender.topic}/{event}")

    @staticmethod
    def _remove_presence(topic: _Topic, channel: Channel) -> dict[str, Any] | None:
        if not channel.presence_key:
            return None
        metas = topic.presences.get(channel.presence_key)
        if not metas or channel.ref not in metas:
            return None
        left = metas.pop(channel.ref)
        if not metas:
            del topic.presences[channel.presence_key]
        return left

    @staticmethod
    def _emit_presence(members: list[Channel], event: str, message: dict[str, Any]) -> None:
        calls = [cb for ch in members for cb in ch._presence(event)]
        _dispatch(calls, message, what=f"presence {event}")


def _dispatch(callbacks: list[Handler], message: dict[str, Any], *, what: str) -> int:
    for cb in callbacks:
        try:
            cb(message)
        except Exception:
            logger.exception("Realtime handler for %s failed", what)
    return len(callbacks)


# Process-wide hub used by the app (websocket route, change stream, event routers)
broker = RealtimeBroker()
