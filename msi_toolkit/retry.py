"""Bounded polling used while Windows releases a file lock."""
from __future__ import annotations

import logging
import time
from typing import Callable

from msi_toolkit.errors import ResourceReleaseTimeout

logger = logging.getLogger(__name__)


def wait_until(
    predicate: Callable[[], bool],
    *,
    timeout: float = 0.1,
    interval: float = 0.01,
    backoff: float = 1.0,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Call ``predicate`` until it returns True or ``timeout`` seconds pass.

    The delay between attempts starts at ``interval`` and is multiplied by
    ``backoff`` after every failed attempt. No sleep ever overshoots the
    deadline.

    Returns the number of attempts made. Raises ResourceReleaseTimeout when
    the bound is exhausted.
    """

    start = clock()
    deadline = start + timeout
    delay = interval
    attempts = 0
    while True:
        attempts += 1
        if predicate():
            if attempts > 1:
                logger.debug("Condition met after %d attempts", attempts)
            return attempts
        remaining = deadline - clock()
        if remaining <= 0:
            raise ResourceReleaseTimeout(attempts, clock() - start)
        sleep(min(delay, remaining))
        delay *= backoff
