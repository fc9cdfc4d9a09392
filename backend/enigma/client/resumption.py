"""Resumable local snapshots of a live session.

A snapshot is written on every local change while the session is playing or
paused, and once more when the page is hidden. On the next load the time spent
away is charged against ``time_remaining``; the score is never credited for
it.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from enigma import rules
from .clock import SystemClock

logger = logging.getLogger(__name__)

IDLE = 'idle'
PLAYING = 'playing'
PAUSED = 'paused'
ENDED = 'ended'
LIVE_STATUSES = frozenset([PLAYING, PAUSED])

SNAPSHOT_FIELDS = (
    'session_id', 'status', 'health', 'score', 'portals_cleared', 'bonuses_cleared',
    'obstacles_hit', 'difficulty', 'time_remaining', 'time_survived', 'speed',
    'speed_multiplier', 'score_multiplier',
)
NUMERIC_FIELDS = ('health', 'score', 'time_remaining', 'time_survived')

FRESH = 'fresh'
RESTORED = 'restored'
RESUMED = 'resumed'
EXPIRED = 'expired'


@dataclass
class RestoreResult:
    outcome: str
    state: Optional[dict] = None
    elapsed_away: float = 0.0


def state_key(player_id: str) -> str:
    return f"gameState_{player_id}"


class ResumptionCache:
    def __init__(self, storage, clock=None):
        self.storage = storage
        self.clock = clock or SystemClock()

    def save(self, player_id: str, state: dict) -> bool:
        snapshot = {k: state.get(k) for k in SNAPSHOT_FIELDS}
        snapshot['last_saved_timestamp'] = self.clock.now()
        return self.storage.set_item(state_key(player_id), snapshot, player_id)

    def save_on_hide(self, player_id: str, state: dict) -> bool:
        """Page-hide/unload hook: one more snapshot with a fresh timestamp."""
        return self.save(player_id, state)

    def discard(self, player_id: str) -> None:
        self.storage.remove_item(state_key(player_id))

    def restore(self, player_id: str) -> RestoreResult:
        snapshot = self.storage.get_item(state_key(player_id), player_id)
        if not isinstance(snapshot, dict):
            return RestoreResult(FRESH)
        if any(not rules.is_number(snapshot.get(f)) for f in NUMERIC_FIELDS):
            logger.warning("resumption snapshot for %s is missing fields, starting fresh", player_id)
            self.discard(player_id)
            return RestoreResult(FRESH)

        saved_at = snapshot.pop('last_saved_timestamp', None)
        now = self.clock.now()
        away = max(0.0, now - saved_at) if rules.is_number(saved_at) else 0.0
        state = dict(snapshot)

        if state.get('status') not in LIVE_STATUSES:
            return RestoreResult(RESTORED, state)

        time_remaining = float(state['time_remaining'])
        adjusted = max(0.0, time_remaining - away)
        # Only time is charged for the away interval; score stays as saved
        state['time_survived'] = float(state['time_survived']) + min(away, time_remaining)
        state['speed_multiplier'] = 1.0
        state['score_multiplier'] = 1.0

        if adjusted == 0:
            state['status'] = ENDED
            state['time_remaining'] = 0.0
            self.discard(player_id)
            logger.info("session for %s ran out of time while away (%.0fs)", player_id, away)
            return RestoreResult(EXPIRED, state, away)

        state['time_remaining'] = adjusted
        return RestoreResult(RESUMED, state, away)
