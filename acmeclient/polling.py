"""
Bounded fixed-interval polling.

The wait is counted, not clocked: each iteration adds one ``interval`` to the
waited total after the check, so slow round-trips can stretch the real wait
past ``timeout`` by up to one request per iteration.
"""
from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

POLL_INTERVAL = 1


def poll(
    check: Callable[[], T],
    is_pending: Callable[[T], bool],
    initial: T,
    timeout: int,
    interval: float = POLL_INTERVAL,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call *check* until *is_pending* is false for its result or *timeout*
    seconds have been waited, sleeping *interval* between calls.

    Returns the last result (*initial* if the loop never ran).  Callers decide
    what a still-pending result means; *check* may raise to abort early.
    """
    result = initial
    waited = 0.0
    while waited < timeout:
        result = check()
        if not is_pending(result):
            break
        waited += interval
        logger.debug("Still pending after %gs of %ds", waited, timeout)
        sleep(interval)
    return result
