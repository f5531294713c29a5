"""Polling primitive used by every wait loop of the join workflow.

SQL Server offers no push notification for availability-database state, so
the workflow sleeps and re-reads state. The interval and timeout are always
explicit, and cancellation is checked on every iteration.
"""

from __future__ import annotations

import threading
import time
from typing import Callable

from sqlops.core.errors import AgErrorKind, AgJoinError


def wait_until(
    predicate: Callable[[], bool],
    *,
    timeout: float,
    interval: float,
    cancel: threading.Event | None = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> bool:
    """
    Block until a predicate returns True or the timeout elapses.

    The predicate is evaluated at least once, even with a zero timeout.

    Args:
        predicate: Callable that re-reads remote state and returns True when done.
        timeout: Maximum number of seconds to wait.
        interval: Seconds to sleep between two evaluations.
        cancel: Optional event; when set, the wait stops at the next iteration.
        sleep: Sleep function (injectable for tests).
        clock: Monotonic clock (injectable for tests).

    Returns:
        True if the predicate succeeded, False if the timeout elapsed.

    Raises:
        AgJoinError: With kind CANCELLED when the cancel event is set.
    """
    deadline = clock() + timeout
    while True:
        if cancel is not None and cancel.is_set():
            raise AgJoinError(AgErrorKind.CANCELLED, "Wait cancelled by caller.")
        if predicate():
            return True
        if clock() >= deadline:
            return False
        sleep(interval)
