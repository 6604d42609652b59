from wakti_realtime.realtime.broker import Channel, RealtimeBroker, broker
from wakti_realtime.realtime.presence import PresenceClient, PresenceSnapshot, reduce_presence

__all__ = ["Channel", "RealtimeBroker", "broker", "PresenceClient", "PresenceSnapshot", "reduce_presence"]
