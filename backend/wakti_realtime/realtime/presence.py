"""
Presence for the shared "online-users" channel: who is online, who is typing, and when someone was last seen.

State is a PresenceSnapshot replaced wholesale by reduce_presence(). Every presence sync/join/leave carries the
complete registry, so the online set is re-derived from scratch each time (last snapshot wins, nothing
incremental to drift). Typing is edge-triggered from "typing" broadcasts and is independent of the registry.
"""
import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Union

from wakti_realtime.core.clock import as_utc, utcnow
from wakti_realtime.core.constants import (
    PRESENCE_CHANNEL,
    PRESENCE_FRESHNESS_SECONDS,
    PRESENCE_HEARTBEAT_JOB_PREFIX,
    PRESENCE_HEARTBEAT_SECONDS,
    PRESENCE_RECENT_SECONDS,
    TYPING_EVENT,
)
from wakti_realtime.realtime.broker import PRESENCE_EVENTS, SUBSCRIBED, Channel, PresenceState, RealtimeBroker
from wakti_realtime.realtime.broker import broker as default_broker

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class PresenceRecord:
    user_id: str
    typing: bool = False
    last_seen: datetime | None = None


@dataclass(frozen=True)
class PresenceSnapshot:
    records: Mapping[str, PresenceRecord] = field(default_factory=dict)
    typing: frozenset = frozenset()

    @property
    def online_user_ids(self) -> frozenset:
        return frozenset(self.records)


@dataclass(frozen=True)
class PresenceSync:
    """Full registry as delivered with a sync/join/leave event."""

    state: PresenceState


@dataclass(frozen=True)
class TypingEvent:
    user_id: str
    typing: bool


PresenceEvent = Union[PresenceSync, TypingEvent]


def parse_timestamp(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    try:
        return as_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except ValueError:
        return None


def records_from_state(state: PresenceState) -> dict[str, PresenceRecord]:
    """One record per key; with several metas (tabs) the freshest last_seen wins."""
    records: dict[str, PresenceRecord] = {}
    for key, metas in state.items():
        best: PresenceRecord | None = None
        for meta in metas:
            record = PresenceRecord(
                user_id=str(meta.get("user_id") or key),
                typing=bool(meta.get("typing", False)),
                last_seen=parse_timestamp(meta.get("last_seen")),
            )
            if best is None or (record.last_seen or _EPOCH) > (best.last_seen or _EPOCH):
                best = record
        if best is not None:
            records[key] = best
    return records


def reduce_presence(state: PresenceSnapshot, event: PresenceEvent) -> PresenceSnapshot:
    if isinstance(event, PresenceSync):
        return replace(state, records=records_from_state(event.state))
    if isinstance(event, TypingEvent):
        if event.typing:
            return replace(state, typing=state.typing | {event.user_id})
        return replace(state, typing=state.typing - {event.user_id})
    raise TypeError(f"Unknown presence event {event!r}")


def format_ago(seconds: float) -> str:
    minutes = int(seconds // 60)
    if minutes < 60:
        return f"{max(minutes, 1)}m ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h ago"
    return f"{hours // 24}d ago"


class PresenceClient:
    """
    One user's view of the shared presence channel.

    connect() joins the channel keyed by current_user_id and tracks own presence once subscribed.
    start_heartbeat() re-tracks every 30s on an APScheduler scheduler while the client is visible.
    """

    def __init__(
        self,
        current_user_id: str,
        *,
        broker: RealtimeBroker | None = None,
        clock: Callable[[], datetime] = utcnow,
        channel_name: str = PRESENCE_CHANNEL,
        freshness_seconds: float = PRESENCE_FRESHNESS_SECONDS,
        recent_seconds: float = PRESENCE_RECENT_SECONDS,
        heartbeat_seconds: float = PRESENCE_HEARTBEAT_SECONDS,
    ) -> None:
        if not current_user_id:
            raise ValueError("current_user_id is required")
        self.current_user_id = current_user_id
        self._broker = broker or default_broker
        self._clock = clock
        self._channel_name = channel_name
        self._freshness = freshness_seconds
        self._recent = recent_seconds
        self._heartbeat_seconds = heartbeat_seconds
        self._lock = threading.Lock()
        self._snapshot = PresenceSnapshot()
        self._external_last_seen: dict[str, datetime] = {}
        self._channel: Channel | None = None
        self._visible = True
        self._typing = False
        self._scheduler = None
        self._job_id: str | None = None

    # --- lifecycle ---

    def connect(self) -> Channel:
        """Join (or reuse) the presence channel."""
        if self._channel is not None and self._channel.is_subscribed:
            return self._channel
        channel = self._broker.channel(self._channel_name, presence_key=self.current_user_id)
        for event in PRESENCE_EVENTS:
            channel.on_presence(event, self._on_presence)
        channel.on_broadcast(TYPING_EVENT, self._on_typing)
        self._channel = channel
        channel.subscribe(self._on_status)
        return channel

    def close(self) -> None:
        self.stop_heartbeat()
        if self._channel is not None:
            self._broker.remove_channel(self._channel)
            self._channel = None
        with self._lock:
            self._snapshot = PresenceSnapshot()

    def start_heartbeat(self, scheduler) -> str:
        """Register the 30s heartbeat as an interval job; returns the job id."""
        self.stop_heartbeat()
        job_id = f"{PRESENCE_HEARTBEAT_JOB_PREFIX}:{self.current_user_id}:{id(self)}"
        scheduler.add_job(
            self.heartbeat,
            "interval",
            seconds=self._heartbeat_seconds,
            id=job_id,
            replace_existing=True,
        )
        self._scheduler = scheduler
        self._job_id = job_id
        return job_id

    def stop_heartbeat(self) -> None:
        if self._scheduler is not None and self._job_id is not None:
            try:
                self._scheduler.remove_job(self._job_id)
            except Exception as e:
                logger.debug("Heartbeat job %s already gone: %s", self._job_id, e)
        self._scheduler = None
        self._job_id = None

    def heartbeat(self) -> bool:
        """Re-track own presence. Skipped while hidden; a failed tick is logged, never raised."""
        if not self._visible or self._channel is None or not self._channel.is_subscribed:
            return False
        try:
            self._track()
            return True
        except Exception as e:
            logger.warning("Presence heartbeat for %s failed: %s", self.current_user_id, e)
            return False

    def set_visibility(self, visible: bool) -> None:
        self._visible = visible
        if visible:
            self.heartbeat()

    # --- own state ---

    def set_user_typing(self, typing: bool) -> None:
        self._typing = bool(typing)
        channel = self.connect()
        self._track()
        channel.send_broadcast(TYPING_EVENT, {"user_id": self.current_user_id, "typing": self._typing})

    def set_external_last_seen(self, user_id: str, last_seen: datetime | str | None) -> None:
        """Last-seen from outside the channel (e.g. profiles.last_seen_at) for users with no fresh presence."""
        ts = parse_timestamp(last_seen)
        with self._lock:
            if ts is None:
                self._external_last_seen.pop(user_id, None)
            else:
                self._external_last_seen[user_id] = ts

    # --- queries ---

    @property
    def snapshot(self) -> PresenceSnapshot:
        return self._snapshot

    @property
    def online_user_ids(self) -> frozenset:
        """Registry membership only; is_online() also applies the freshness window."""
        return self._snapshot.online_user_ids

    def is_online(self, user_id: str) -> bool:
        record = self._snapshot.records.get(user_id)
        if record is None or record.last_seen is None:
            return False
        return (self._clock() - record.last_seen).total_seconds() <= self._freshness

    def is_typing(self, user_id: str) -> bool:
        return user_id in self._snapshot.typing

    def last_seen_at(self, user_id: str) -> datetime | None:
        record = self._snapshot.records.get(user_id)
        candidates = [ts for ts in (record.last_seen if record else None, self._external_last_seen.get(user_id)) if ts]
        return max(candidates) if candidates else None

    def get_last_seen(self, user_id: str) -> str:
        if self.is_online(user_id):
            return "Active now"
        ts = self.last_seen_at(user_id)
        if ts is None:
            return "Offline"
        age = max((self._clock() - ts).total_seconds(), 0)
        if age <= self._recent:
            return "Active recently"
        return f"Last seen {format_ago(age)}"

    # --- channel callbacks ---

    def _on_status(self, status: str) -> None:
        if status == SUBSCRIBED:
            self._track()

    def _track(self) -> None:
        self._channel.track({
            "user_id": self.current_user_id,
            "typing": self._typing,
            "last_seen": self._clock().isoformat(),
        })

    def _on_presence(self, message: dict[str, Any]) -> None:
        self._apply(PresenceSync(message.get("state") or {}))

    def _on_typing(self, message: dict[str, Any]) -> None:
        payload = message.get("payload") or {}
        user_id = payload.get("user_id")
        if not user_id:
            return
        self._apply(TypingEvent(str(user_id), bool(payload.get("typing"))))

    def _apply(self, event: PresenceEvent) -> None:
        with self._lock:
            self._snapshot = reduce_presence(self._snapshot, event)
