"""Time-boxed power-up effects.

Effects are recorded as ``(effect, expires_at)`` and expire when the owner
ticks the scheduler with the current time, so expiry is driven by whatever
clock the caller uses (a virtual one in tests).
"""

from dataclasses import dataclass
from typing import Dict, List, Optional


@dataclass(frozen=True)
class PowerUp:
    name: str
    duration: float = 0.0
    speed_multiplier: float = 1.0
    score_multiplier: float = 1.0
    heal: int = 0


STABILIZER = 'stabilizer'
MEDKIT = 'medkit'
SIGNAL_BOOSTER = 'signal_booster'

POWER_UPS = {
    STABILIZER: PowerUp(STABILIZER, duration=10.0, speed_multiplier=0.5),
    MEDKIT: PowerUp(MEDKIT, heal=1),
    SIGNAL_BOOSTER: PowerUp(SIGNAL_BOOSTER, duration=20.0, score_multiplier=2.0),
}


@dataclass
class TimedEffect:
    power_up: PowerUp
    expires_at: float

    @property
    def effect(self) -> str:
        return self.power_up.name


class EffectScheduler:
    def __init__(self):
        self._active: Dict[str, TimedEffect] = {}
        self._paused_at: Optional[float] = None

    def schedule(self, power_up: PowerUp, now: float) -> Optional[TimedEffect]:
        """Start (or refresh) a timed effect. Instant effects are not tracked."""
        if power_up.duration <= 0:
            return None
        timed = TimedEffect(power_up, now + power_up.duration)
        self._active[power_up.name] = timed
        return timed

    def tick(self, now: float) -> List[TimedEffect]:
        """Drop and return every effect whose expiry has passed."""
        if self._paused_at is not None:
            return []
        expired = [e for e in self._active.values() if e.expires_at <= now]
        for e in expired:
            del self._active[e.effect]
        return expired

    def pause(self, now: float) -> None:
        if self._paused_at is None:
            self._paused_at = now

    def resume(self, now: float) -> None:
        if self._paused_at is None:
            return
        frozen_for = max(0.0, now - self._paused_at)
        for e in self._active.values():
            e.expires_at += frozen_for
        self._paused_at = None

    @property
    def paused(self) -> bool:
        return self._paused_at is not None

    def is_active(self, effect: str) -> bool:
        return effect in self._active

    def active(self) -> List[TimedEffect]:
        return sorted(self._active.values(), key=lambda e: e.expires_at)

    def speed_multiplier(self) -> float:
        value = 1.0
        for e in self._active.values():
            value *= e.power_up.speed_multiplier
        return value

    def score_multiplier(self) -> float:
        value = 1.0
        for e in self._active.values():
            value *= e.power_up.score_multiplier
        return value

    def clear(self) -> None:
        self._active.clear()
        self._paused_at = None
