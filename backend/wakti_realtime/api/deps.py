"""Shared route dependencies: credentials are checked here, before a handler has any side effect."""
from fastapi import Depends

from wakti_realtime.core.errors import MSG_PUSH_NOT_CONFIGURED, ConfigurationError
from wakti_realtime.services.onesignal import OneSignalClient, get_push_client


def require_push_client(client: OneSignalClient = Depends(get_push_client)) -> OneSignalClient:
    if not client.is_configured():
        raise ConfigurationError(MSG_PUSH_NOT_CONFIGURED)
    return client
