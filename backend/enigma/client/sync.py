import logging
from typing import Callable, List, Optional

from enigma.errors import RateLimited, StoreUnavailable, TransientError

logger = logging.getLogger(__name__)

RETRYABLE = (TransientError, RateLimited, StoreUnavailable)


class StatePusher:
    """Throttles local state changes into server pushes.

    Plain ticks are batched until ``interval`` seconds of simulated time have
    accumulated; a change carrying an action tag is pushed at once. Unsent
    pushes are kept in order: an untagged change replaces the newest queued
    state and keeps its tag, a tagged change is queued behind it. A retryable
    failure leaves the rest of the queue for the next flush.
    """

    def __init__(self, transport: Callable, interval: float = 0.1):
        self.transport = transport
        self.interval = interval
        self._accumulated = 0.0
        self._queue: List[list] = []

    @property
    def has_pending(self) -> bool:
        return bool(self._queue)

    def pending_actions(self) -> list:
        return [action for _, _, action in self._queue]

    def record(self, session_id, delta: dict, action=None, elapsed: float = 0.0) -> Optional[dict]:
        if self._queue and action is None:
            self._queue[-1][0] = session_id
            self._queue[-1][1] = dict(delta)
        else:
            self._queue.append([session_id, dict(delta), action])
        self._accumulated += elapsed
        if action or self._accumulated >= self.interval:
            return self.flush()
        return None

    def flush(self) -> Optional[dict]:
        """Send queued pushes oldest first; return the last snapshot once the queue drains."""
        snapshot = None
        while self._queue:
            session_id, delta, action = self._queue[0]
            try:
                snapshot = self.transport(session_id, delta, action)
            except RETRYABLE as exc:
                logger.info("state push for %s deferred (%d queued): %s", session_id, len(self._queue), exc)
                return None
            self._queue.pop(0)
        self._accumulated = 0.0
        return snapshot

    def reset(self) -> None:
        self._queue = []
        self._accumulated = 0.0
