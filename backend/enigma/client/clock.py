import time


class SystemClock:
    """Wall-clock seconds since the epoch."""

    def now(self) -> float:
        return time.time()


class VirtualClock:
    """Manually advanced clock for deterministic timers."""

    def __init__(self, start: float = 0.0):
        self._now = float(start)

    def now(self) -> float:
        return self._now

    def advance(self, seconds: float) -> float:
        if seconds < 0:
            raise ValueError('cannot move a clock backwards')
        self._now += seconds
        return self._now

    def set(self, value: float) -> None:
        self._now = float(value)
