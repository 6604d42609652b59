"""
Realtime WebSocket: /realtime/ws?token=<access token>.

Client frames:
  {"type": "join", "topic": "online-users"}
  {"type": "track", "topic": ..., "payload": {...}}
  {"type": "broadcast", "topic": ..., "event": "typing", "payload": {...}}
  {"type": "leave", "topic": ...}
Presence is keyed by the token's user id and broadcast payloads carry it as user_id; clients cannot choose either.
Server frames: joined, presence (sync/join/leave with full state), broadcast, error.

Each socket also runs a RealtimeEventRouter for its user, so message / contact-request pushes start when the
user connects and stop on disconnect.
"""
import asyncio
import logging
from typing import Any, Callable

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status

from wakti_realtime.core.errors import ServiceError
from wakti_realtime.core.security import decode_access_token
from wakti_realtime.realtime.broker import ANY_EVENT, PRESENCE_EVENTS, Channel, RealtimeBroker, broker
from wakti_realtime.realtime.event_router import RealtimeEventRouter
from wakti_realtime.services.onesignal import OneSignalClient, get_push_client

router = APIRouter()
logger = logging.getLogger(__name__)


def get_broker() -> RealtimeBroker:
    return broker


class SocketSession:
    """Channels joined by one socket. Frames to send go through `emit` (thread-safe)."""

    def __init__(self, user_id: str, hub: RealtimeBroker, emit: Callable[[dict[str, Any]], None]) -> None:
        self.user_id = user_id
        self.hub = hub
        self.emit = emit
        self.channels: dict[str, Channel] = {}

    def handle(self, frame: dict[str, Any]) -> None:
        kind = frame.get("type")
        topic = (frame.get("topic") or "").strip()
        if kind not in ("join", "track", "broadcast", "leave"):
            self.emit({"type": "error", "error": f"Unknown frame type {kind!r}"})
            return
        if not topic:
            self.emit({"type": "error", "error": "topic is required"})
            return
        if kind == "join":
            self.join(topic)
            return
        channel = self.channels.get(topic)
        if channel is None:
            self.emit({"type": "error", "topic": topic, "error": "Not joined"})
            return
        if kind == "track":
            channel.track({**(frame.get("payload") or {}), "user_id": self.user_id})
        elif kind == "broadcast":
            event = frame.get("event")
            if not event:
                self.emit({"type": "error", "topic": topic, "error": "event is required"})
                return
            channel.send_broadcast(event, {**(frame.get("payload") or {}), "user_id": self.user_id})
        else:
            self.leave(topic)

    def join(self, topic: str) -> None:
        if topic in self.channels:
            self.emit({"type": "joined", "topic": topic, "status": self.channels[topic].status})
            return
        channel = self.hub.channel(topic, presence_key=self.user_id)
        for event in PRESENCE_EVENTS:
            channel.on_presence(event, self._presence_relay(topic, event))
        channel.on_broadcast(
            ANY_EVENT,
            lambda message: self.emit({"type": "broadcast", "topic": topic, **message}),
        )
        self.channels[topic] = channel
        channel_status = channel.subscribe()
        self.emit({"type": "joined", "topic": topic, "status": channel_status})
        self.emit({"type": "presence", "topic": topic, "event": "sync", "state": channel.presence_state()})

    def _presence_relay(self, topic: str, event: str) -> Callable[[dict[str, Any]], None]:
        def relay(message: dict[str, Any]) -> None:
            self.emit({"type": "presence", "topic": topic, "event": event, **message})

        return relay

    def leave(self, topic: str) -> None:
        channel = self.channels.pop(topic, None)
        if channel is not None:
            self.hub.remove_channel(channel)

    def close(self) -> None:
        for topic in list(self.channels):
            self.leave(topic)


@router.websocket("/ws")
async def realtime_socket(
    websocket: WebSocket,
    token: str | None = Query(None),
    push_client: OneSignalClient = Depends(get_push_client),
    hub: RealtimeBroker = Depends(get_broker),
) -> None:
    try:
        user = decode_access_token(token or "")
    except ServiceError as e:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=e.message)
        return
    await websocket.accept()

    loop = asyncio.get_running_loop()
    outbox: asyncio.Queue = asyncio.Queue()

    def emit(frame: dict[str, Any]) -> None:
        loop.call_soon_threadsafe(outbox.put_nowait, frame)

    async def pump() -> None:
        while True:
            frame = await outbox.get()
            await websocket.send_json(frame)

    session = SocketSession(user.id, hub, emit)
    event_router = RealtimeEventRouter(lambda: user.id, push_client=push_client, broker=hub)
    router_ready = loop.run_in_executor(None, event_router.init)
    sender = asyncio.create_task(pump())
    logger.info("Realtime socket opened for user %s", user.id)
    try:
        while True:
            frame = await websocket.receive_json()
            if not isinstance(frame, dict):
                emit({"type": "error", "error": "Frame must be a JSON object"})
                continue
            try:
                session.handle(frame)
            except RuntimeError as e:
                emit({"type": "error", "topic": frame.get("topic"), "error": str(e)})
    except WebSocketDisconnect:
        pass
    finally:
        sender.cancel()
        session.close()
        await router_ready
        event_router.cleanup()
        logger.info("Realtime socket closed for user %s", user.id)
