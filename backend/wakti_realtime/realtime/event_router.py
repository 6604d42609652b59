"""
Live push nudges for one signed-in session: new message and new contact request.

Listens to committed inserts on messages (recipient_id = me) and contacts (contact_id = me) and pushes
straight through OneSignal, bypassing the queue. Best-effort: any failure is logged and dropped; the
durable delivery paths are the notification queue and provider-scheduled pushes.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable

from wakti_realtime.core.constants import (
    ROUTER_FALLBACK_ACTOR_NAME,
    ROUTER_READY_POLL_SECONDS,
    ROUTER_READY_TIMEOUT_SECONDS,
)
from wakti_realtime.core.retry import wait_until
from wakti_realtime.db.session import SessionLocal
from wakti_realtime.models.profile import Profile
from wakti_realtime.realtime.broker import Channel, RealtimeBroker
from wakti_realtime.realtime.broker import broker as default_broker
from wakti_realtime.services.onesignal import OneSignalClient, PushResult, get_push_client, send_push_to_users

logger = logging.getLogger(__name__)

CONTACTS_DEEP_LINK = "/contacts"

_executor: ThreadPoolExecutor | None = None
_executor_lock = threading.Lock()


def _get_executor() -> ThreadPoolExecutor:
    global _executor
    with _executor_lock:
        if _executor is None:
            _executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="event_router")
    return _executor


def background_dispatch(fn: Callable[[], Any]) -> None:
    """Run fn off the publishing thread so inserts never wait on OneSignal."""
    _get_executor().submit(fn)


def inline_dispatch(fn: Callable[[], Any]) -> None:
    fn()


class RealtimeEventRouter:
    """
    init(): resolve the current user, wait (bounded) for the push client, subscribe.
    cleanup(): unsubscribe everything; call on logout so no channel stays bound to a stale user id.
    """

    def __init__(
        self,
        get_current_user_id: Callable[[], str | None],
        *,
        push_client: OneSignalClient | None = None,
        broker: RealtimeBroker | None = None,
        session_factory: Callable = SessionLocal,
        dispatch: Callable[[Callable[[], Any]], None] = background_dispatch,
        ready_timeout: float = ROUTER_READY_TIMEOUT_SECONDS,
        ready_poll_interval: float = ROUTER_READY_POLL_SECONDS,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self._get_current_user_id = get_current_user_id
        self._push_client = push_client or get_push_client()
        self._broker = broker or default_broker
        self._session_factory = session_factory
        self._dispatch = dispatch
        self._ready_timeout = ready_timeout
        self._ready_poll_interval = ready_poll_interval
        self._sleep = sleep
        self._channels: list[Channel] = []
        self.user_id: str | None = None
        self.is_initialized = False

    def init(self) -> bool:
        """Subscribe for the current user. Returns False when no user or the push client never became ready."""
        if self.is_initialized:
            return True
        try:
            user_id = self._get_current_user_id()
        except Exception as e:
            logger.warning("Event router: could not resolve current user: %s", e)
            return False
        if not user_id:
            logger.debug("Event router: no signed-in user; not subscribing")
            return False
        wait_kwargs = {"timeout": self._ready_timeout, "interval": self._ready_poll_interval}
        if self._sleep is not None:
            wait_kwargs["sleep"] = self._sleep
        if not wait_until(self._push_client.is_ready, **wait_kwargs):
            logger.warning("Event router: push client not ready after %ss; live pushes disabled for %s", self._ready_timeout, user_id)
            return False
        self.user_id = user_id
        self._subscribe(user_id)
        self.is_initialized = True
        logger.info("Event router subscribed for user %s", user_id)
        return True

    def cleanup(self) -> None:
        for channel in self._channels:
            try:
                self._broker.remove_channel(channel)
            except Exception as e:
                logger.warning("Event router: removing channel %s failed: %s", channel.topic, e)
        self._channels = []
        self.user_id = None
        self.is_initialized = False

    def _subscribe(self, user_id: str) -> None:
        messages = self._broker.channel(f"router-messages:{user_id}")
        messages.on_change("messages", self._on_message, event="INSERT", filter={"recipient_id": user_id})
        messages.subscribe()
        contacts = self._broker.channel(f"router-contacts:{user_id}")
        contacts.on_change("contacts", self._on_contact, event="INSERT", filter={"contact_id": user_id})
        contacts.subscribe()
        self._channels = [messages, contacts]

    # --- change handlers ---

    def _on_message(self, change: dict[str, Any]) -> None:
        record = change.get("new") or {}
        self._dispatch(lambda: self.handle_new_message(record))

    def _on_contact(self, change: dict[str, Any]) -> None:
        record = change.get("new") or {}
        self._dispatch(lambda: self.handle_contact_request(record))

    def handle_new_message(self, record: dict[str, Any]) -> PushResult | None:
        try:
            name = self.resolve_actor_name(record.get("sender_id"))
            return send_push_to_users(
                self._push_client,
                [record["recipient_id"]],
                "New Message",
                f"{name} sent you a message",
                data={
                    "type": "message_received",
                    "message_id": record.get("id"),
                    "sender_id": record.get("sender_id"),
                    "deep_link": CONTACTS_DEEP_LINK,
                },
            )
        except Exception:
            logger.exception("Event router: message push failed for %s", record.get("id"))
            return None

    def handle_contact_request(self, record: dict[str, Any]) -> PushResult | None:
        if record.get("status") != "pending":
            return None
        try:
            name = self.resolve_actor_name(record.get("user_id"))
            return send_push_to_users(
                self._push_client,
                [record["contact_id"]],
                "Contact Request",
                f"{name} wants to connect with you",
                data={
                    "type": "contact_request",
                    "contact_id": record.get("id"),
                    "requester_id": record.get("user_id"),
                    "deep_link": CONTACTS_DEEP_LINK,
                },
            )
        except Exception:
            logger.exception("Event router: contact push failed for %s", record.get("id"))
            return None

    def resolve_actor_name(self, user_id: str | None) -> str:
        if not user_id:
            return ROUTER_FALLBACK_ACTOR_NAME
        db = None
        try:
            db = self._session_factory()
            row = db.query(Profile.display_name).filter(Profile.id == user_id).first()
            name = (row.display_name if row else None) or ""
            return name.strip() or ROUTER_FALLBACK_ACTOR_NAME
        except Exception as e:
            logger.warning("Event router: profile lookup for %s failed: %s", user_id, e)
            return ROUTER_FALLBACK_ACTOR_NAME
        finally:
            if db is not None:
                db.close()
