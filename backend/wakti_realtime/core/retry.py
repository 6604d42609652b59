"""
Bounded waiting: poll a readiness predicate until it holds or a deadline passes.

Replaces open-ended "check again in 100ms" loops; callers get an explicit False on timeout.
"""
import logging
import time
from typing import Callable

logger = logging.getLogger(__name__)


def wait_until(
    predicate: Callable[[], bool],
    *,
    timeout: float,
    interval: float = 0.1,
    max_interval: float | None = None,
    backoff: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
    monotonic: Callable[[], float] = time.monotonic,
) -> bool:
    """
    Call predicate() until it returns True or `timeout` seconds elapse.
    Interval grows by `backoff` each round (capped at max_interval). A predicate that raises counts as not ready.
    Returns True when ready, False on deadline.
    """
    deadline = monotonic() + timeout
    delay = interval
    while True:
        try:
            if predicate():
                return True
        except Exception as e:
            logger.debug("Readiness check raised: %s", e)
        remaining = deadline - monotonic()
        if remaining <= 0:
            return False
        sleep(min(delay, remaining))
        delay = delay * backoff
        if max_interval is not None:
            delay = min(delay, max_interval)
