"""Fixed-interval readiness polling with a deadline and cancellation."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from sandctl.exceptions import OperationCancelledError, ReadinessTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 5.0


class ReadinessPoller:
    """
    Repeatedly evaluates a predicate until it reports ready.

    The predicate returns truthy when the resource is ready and falsy when it
    should be asked again. Any exception it raises is a hard failure and is
    propagated at once.

    Usage:
        poller = ReadinessPoller(interval=5.0)
        poller.wait_until_ready(lambda: vm_is_up(), timeout=300, cancel=stop)
    """

    def __init__(
        self,
        interval: float = DEFAULT_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.interval = interval
        self._clock = clock

    def wait_until_ready(
        self,
        predicate: Callable[[], object],
        timeout: float,
        *,
        cancel: Optional[threading.Event] = None,
        description: str = "resource",
    ) -> None:
        """
        Block until predicate() is truthy.

        Raises:
            ReadinessTimeoutError: If the deadline passes first.
            OperationCancelledError: If cancel is set while waiting.
            Exception: Whatever predicate() raises.
        """
        waiter = cancel if cancel is not None else threading.Event()
        deadline = self._clock() + timeout
        attempt = 0

        while True:
            if cancel is not None and cancel.is_set():
                raise OperationCancelledError(
                    f"cancelled while waiting for {description}"
                )

            attempt += 1
            if predicate():
                logger.debug("%s ready after %d attempt(s)", description, attempt)
                return

            remaining = deadline - self._clock()
            if remaining <= 0:
                raise ReadinessTimeoutError(description, timeout)

            if waiter.wait(min(self.interval, remaining)):
                raise OperationCancelledError(
                    f"cancelled while waiting for {description}"
                )
