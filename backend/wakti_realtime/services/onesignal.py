"""
Send and cancel push notifications via the OneSignal REST API.
Requires ONESIGNAL_APP_ID and ONESIGNAL_REST_API_KEY in env.

Users are addressed by external id (our user id); OneSignal fans out to that user's devices.
Passing send_after hands exact-time delivery to OneSignal's own scheduler.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import httpx

from wakti_realtime.config import settings
from wakti_realtime.core.clock import as_utc

logger = logging.getLogger(__name__)

NOTIFICATIONS_PATH = "/notifications"


@dataclass(frozen=True)
class PushMessage:
    user_ids: list[str]
    title: str
    body: str
    data: dict[str, Any] = field(default_factory=dict)
    url: str | None = None
    send_after: datetime | None = None


@dataclass(frozen=True)
class PushResult:
    ok: bool
    notification_id: str | None = None
    status_code: int | None = None
    error: str | None = None
    raw: Any = None


class OneSignalConfig:
    """App id, REST key and base URL for OneSignal."""

    __slots__ = ("app_id", "rest_api_key", "base_url", "timeout")

    def __init__(
        self,
        *,
        app_id: str | None = None,
        rest_api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self.app_id = (app_id if app_id is not None else settings.onesignal_app_id).strip()
        self.rest_api_key = (rest_api_key if rest_api_key is not None else settings.onesignal_rest_api_key).strip()
        self.base_url = (base_url or settings.onesignal_api_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.onesignal_timeout_seconds

    def is_configured(self) -> bool:
        return bool(self.app_id and self.rest_api_key)

    def headers(self) -> dict[str, str]:
        return {
            "Authorization": f"key {self.rest_api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }


def build_payload(app_id: str, message: PushMessage) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "app_id": app_id,
        "include_aliases": {"external_id": list(message.user_ids)},
        "target_channel": "push",
        "headings": {"en": message.title},
        "contents": {"en": message.body},
        "data": dict(message.data),
    }
    if message.url:
        payload["url"] = message.url
    if message.send_after is not None:
        payload["send_after"] = as_utc(message.send_after).isoformat()
    return payload


def _error_text(status_code: int, body: Any) -> str:
    """OneSignal reports failures as {"errors": [...]} (list of strings or dict)."""
    if isinstance(body, dict):
        errors = body.get("errors")
        if isinstance(errors, list):
            strs = [e for e in errors if isinstance(e, str)]
            if strs:
                return ", ".join(strs)
        if isinstance(errors, dict) and errors:
            return ", ".join(f"{k}: {v}" for k, v in errors.items())
    return f"OneSignal API error: {status_code}"


def _json_or_raw(resp: httpx.Response) -> Any:
    try:
        return resp.json() if resp.content else {}
    except ValueError:
        return {"raw": resp.text[:2000] if resp.text else ""}


class OneSignalClient:
    """OneSignal REST client. Never raises for provider or network errors; inspect PushResult.ok."""

    def __init__(self, config: OneSignalConfig | None = None, *, transport: httpx.BaseTransport | None = None) -> None:
        self._config = config or OneSignalConfig()
        self._transport = transport

    @property
    def config(self) -> OneSignalConfig:
        return self._config

    def is_configured(self) -> bool:
        return self._config.is_configured()

    def is_ready(self) -> bool:
        return self.is_configured()

    def _client(self) -> httpx.Client:
        return httpx.Client(base_url=self._config.base_url, timeout=self._config.timeout, transport=self._transport)

    def send(self, message: PushMessage) -> PushResult:
        """
        Create a notification. ok=True only when OneSignal answers 2xx with a notification id;
        a 2xx without id (e.g. no subscribed devices for the external id) is a failure.
        """
        if not self.is_configured():
            return PushResult(ok=False, error="OneSignal not configured")
        if not message.user_ids:
            return PushResult(ok=False, error="No user ids provided")
        payload = build_payload(self._config.app_id, message)
        try:
            with self._client() as client:
                resp = client.post(NOTIFICATIONS_PATH, json=payload, headers=self._config.headers())
        except httpx.HTTPError as e:
            logger.warning("OneSignal request failed: %s", e)
            return PushResult(ok=False, error=str(e))
        body = _json_or_raw(resp)
        notification_id = body.get("id") if isinstance(body, dict) else None
        if resp.is_success and isinstance(notification_id, str) and notification_id:
            return PushResult(ok=True, notification_id=notification_id, status_code=resp.status_code, raw=body)
        error = _error_text(resp.status_code, body)
        logger.warning("OneSignal returned %s for %s recipient(s): %s", resp.status_code, len(message.user_ids), error)
        return PushResult(ok=False, status_code=resp.status_code, error=error, raw=body)

    def cancel(self, notification_id: str) -> PushResult:
        """Cancel a scheduled (not yet delivered) notification."""
        if not self.is_configured():
            return PushResult(ok=False, error="OneSignal not configured")
        if not notification_id:
            return PushResult(ok=False, error="notification_id is required")
        try:
            with self._client() as client:
                resp = client.delete(
                    f"{NOTIFICATIONS_PATH}/{notification_id}",
                    params={"app_id": self._config.app_id},
                    headers=self._config.headers(),
                )
        except httpx.HTTPError as e:
            logger.warning("OneSignal cancel %s failed: %s", notification_id, e)
            return PushResult(ok=False, notification_id=notification_id, error=str(e))
        body = _json_or_raw(resp)
        if resp.is_success:
            return PushResult(ok=True, notification_id=notification_id, status_code=resp.status_code, raw=body)
        error = _error_text(resp.status_code, body)
        logger.warning("OneSignal cancel %s returned %s: %s", notification_id, resp.status_code, error)
        return PushResult(ok=False, notification_id=notification_id, status_code=resp.status_code, error=error, raw=body)


def send_push_to_users(
    client: OneSignalClient,
    user_ids: list[str],
    title: str,
    body: str,
    *,
    data: dict[str, Any] | None = None,
    url: str | None = None,
) -> PushResult:
    """Immediate push to one or more users by external id."""
    return client.send(PushMessage(user_ids=list(user_ids), title=title, body=body, data=data or {}, url=url))


_default_client: OneSignalClient | None = None


def get_push_client() -> OneSignalClient:
    """Process-wide client (FastAPI dependency; override in tests)."""
    global _default_client
    if _default_client is None:
        _default_client = OneSignalClient()
    return _default_client
