import threading
import time
from collections import defaultdict, deque
from typing import Deque, Dict, Optional

from flask import current_app

from enigma.errors import RateLimited

# Runtime-only sliding window of push timestamps per player
_push_times: Dict[str, Deque[float]] = defaultdict(deque)
_lock = threading.Lock()
_last_sweep: Optional[float] = None


def _sweep(now: float, window: float) -> None:
    """Forget players whose newest push has left the window. Caller holds the lock."""
    global _last_sweep
    if _last_sweep is not None and now - _last_sweep < window:
        return
    _last_sweep = now
    for player_id in [p for p, pushes in _push_times.items() if not pushes or now - pushes[-1] >= window]:
        del _push_times[player_id]


def check_update_rate(player_id, now=None) -> None:
    """Record one update push for ``player_id`` or raise :class:`RateLimited`."""
    try:
        limit = int(current_app.config.get('UPDATE_RATE_LIMIT', 0))
        window = float(current_app.config.get('UPDATE_RATE_WINDOW_SEC', 60))
    except (TypeError, ValueError):
        limit, window = 0, 60.0
    if limit <= 0:
        return

    now = time.monotonic() if now is None else now
    with _lock:
        _sweep(now, window)
        pushes = _push_times[player_id]
        while pushes and now - pushes[0] >= window:
            pushes.popleft()
        if len(pushes) >= limit:
            retry_after = max(0.0, window - (now - pushes[0]))
            current_app.logger.warning(f"[rate-limit] player={player_id} pushes={len(pushes)} window={window:.0f}s")
            raise RateLimited(retry_after=round(retry_after, 2))
        pushes.append(now)


def tracked_players() -> int:
    with _lock:
        return len(_push_times)


def reset() -> None:
    global _last_sweep
    with _lock:
        _push_times.clear()
        _last_sweep = None
