"""Client-side owner of one player's game session state.

:class:`GameSessionContext` is the only thing that mutates local game state.
Every change goes through :meth:`GameSessionContext._reconcile`, which applies
the same :mod:`enigma.rules` clamps the server applies, then publishes the
display projection, persists the resumption snapshot and hands the change to
the :class:`~enigma.client.sync.StatePusher`. Server responses overwrite the
local state through :meth:`apply_server_snapshot`.

Time only moves when :meth:`tick` is called; the context reads its clock, so a
:class:`~enigma.client.clock.VirtualClock` makes every timer deterministic.
"""

import logging
import math
import random
from dataclasses import dataclass, asdict
from typing import Callable, List, Optional

from enigma import rules
from enigma.errors import AlreadyCompleted, NoActiveSession
from .clock import SystemClock
from .effects import EffectScheduler, POWER_UPS
from .resumption import IDLE, PLAYING, PAUSED, ENDED, LIVE_STATUSES, RESUMED, EXPIRED

logger = logging.getLogger(__name__)

POWER_UP_CHANCE = 0.2


@dataclass
class LocalState:
    session_id: Optional[str] = None
    status: str = IDLE
    health: int = rules.INITIAL_HEALTH
    score: int = 0
    portals_cleared: int = 0
    bonuses_cleared: int = 0
    obstacles_hit: int = 0
    difficulty: str = rules.EASY
    time_remaining: float = float(rules.SESSION_TIME_LIMIT_SEC)
    time_survived: float = 0.0
    speed: float = float(rules.BASE_SPEED)
    speed_multiplier: float = 1.0
    score_multiplier: float = 1.0

    def to_dict(self) -> dict:
        return asdict(self)

    def delta(self) -> dict:
        """Fields reported to the server on a push."""
        return {
            'health': self.health,
            'score': self.score,
            'portals_cleared': self.portals_cleared,
            'bonuses_cleared': self.bonuses_cleared,
            'obstacles_hit': self.obstacles_hit,
            'difficulty': self.difficulty,
            'speed': self.speed,
            'time_remaining': self.time_remaining,
            'time_survived': self.time_survived,
        }


@dataclass
class QuestionTimer:
    time_limit: float
    time_left: float


SERVER_FIELDS = (
    'health', 'score', 'portals_cleared', 'bonuses_cleared', 'obstacles_hit',
    'difficulty', 'speed', 'time_remaining', 'time_survived',
)


class GameSessionContext:
    def __init__(self, player_id, clock=None, cache=None, pusher=None, rng=None,
                 time_limit=rules.SESSION_TIME_LIMIT_SEC):
        self.player_id = player_id
        self.clock = clock or SystemClock()
        self.cache = cache
        self.pusher = pusher
        self.rng = rng or random.Random()
        self.time_limit = time_limit
        self.state = LocalState(time_remaining=float(time_limit))
        self.effects = EffectScheduler()
        self.question: Optional[QuestionTimer] = None
        self._subscribers: List[Callable] = []
        self._last_tick: Optional[float] = None
        self._distance_carry = 0.0
        self._speed_clock = 0.0

    # -- display projection -------------------------------------------------

    def subscribe(self, callback: Callable) -> Callable:
        self._subscribers.append(callback)
        return lambda: self._subscribers.remove(callback)

    def display_state(self) -> dict:
        view = self.state.to_dict()
        view['effective_speed'] = self.state.speed * self.state.speed_multiplier
        view['active_power_ups'] = [
            {'type': e.effect, 'expires_at': e.expires_at} for e in self.effects.active()
        ]
        view['question_time_left'] = self.question.time_left if self.question else None
        return view

    def _publish(self) -> None:
        view = self.display_state()
        for callback in list(self._subscribers):
            callback(view)

    # -- reconciliation -----------------------------------------------------

    def _reconcile(self, proposed: dict, action=None, elapsed: float = 0.0) -> None:
        current = self.state
        health = rules.clamp_health(proposed.get('health', current.health))
        if health > current.health and action not in rules.HEAL_ACTIONS:
            health = current.health
        score = rules.clamp_score(proposed.get('score', current.score))
        if score < current.score and action not in rules.PENALTY_ACTIONS:
            score = current.score
        for field in rules.COUNTER_FIELDS:
            value = rules.clamp_counter(proposed.get(field, getattr(current, field)))
            setattr(current, field, max(value, getattr(current, field)))
        current.health = health
        current.score = score
        current.difficulty = rules.difficulty_for_portals(current.portals_cleared)
        current.speed = rules.clamp_speed(proposed.get('speed', current.speed))
        current.time_remaining = rules.clamp_time(proposed.get('time_remaining', current.time_remaining), self.time_limit)
        current.time_survived = max(current.time_survived, float(proposed.get('time_survived', current.time_survived)))
        current.speed_multiplier = self.effects.speed_multiplier()
        current.score_multiplier = self.effects.score_multiplier()

        if current.status in LIVE_STATUSES and (current.health <= 0 or current.time_remaining <= 0):
            self._end()

        self._publish()
        self._persist()
        self._push(action, elapsed)

    def _persist(self) -> None:
        if self.cache is None:
            return
        if self.state.status in LIVE_STATUSES:
            self.cache.save(self.player_id, self.state.to_dict())
        elif self.state.status == ENDED:
            self.cache.discard(self.player_id)

    def _push(self, action, elapsed, force=False) -> None:
        if self.pusher is None or not self.state.session_id:
            return
        try:
            snapshot = self.pusher.record(self.state.session_id, self.state.delta(), action, elapsed)
            if (force or self.state.status == ENDED) and self.pusher.has_pending:
                snapshot = self.pusher.flush() or snapshot
        except NoActiveSession:
            logger.info("server has no active session %s, ending locally", self.state.session_id)
            self.pusher.reset()
            self._end()
            self._persist()
            self._publish()
            return
        if snapshot:
            self.apply_server_snapshot(snapshot)

    def apply_server_snapshot(self, snapshot: dict) -> None:
        """Overwrite local values with the server's corrected snapshot."""
        for field in SERVER_FIELDS:
            if field in snapshot:
                setattr(self.state, field, snapshot[field])
        if snapshot.get('session_id'):
            self.state.session_id = snapshot['session_id']
        if snapshot.get('status') == 'completed' and self.state.status != ENDED:
            self._end()
        self._persist()
        self._publish()

    # -- lifecycle ----------------------------------------------------------

    def start(self, snapshot: dict) -> None:
        """Begin play from a freshly started server session."""
        if self.cache is not None:
            self.cache.discard(self.player_id)
        self.effects.clear()
        self.question = None
        self.state = LocalState(time_remaining=float(self.time_limit))
        self._distance_carry = 0.0
        self._speed_clock = 0.0
        self.state.status = PLAYING
        self._last_tick = self.clock.now()
        self.apply_server_snapshot(snapshot)

    def pause(self) -> None:
        if self.state.status != PLAYING:
            return
        self.state.status = PAUSED
        self.effects.pause(self.clock.now())
        self._last_tick = None
        self._persist()
        self._publish()

    def resume(self) -> None:
        if self.state.status != PAUSED or self.question is not None:
            return
        now = self.clock.now()
        self.state.status = PLAYING
        self.effects.resume(now)
        self._last_tick = now
        self._persist()
        self._publish()

    def _end(self) -> None:
        self.state.status = ENDED
        self.question = None
        self.effects.clear()
        self.state.speed_multiplier = 1.0
        self.state.score_multiplier = 1.0
        self._last_tick = None

    def on_page_hide(self) -> None:
        if self.cache is not None and self.state.status in LIVE_STATUSES:
            self.cache.save_on_hide(self.player_id, self.state.to_dict())

    # -- time ---------------------------------------------------------------

    def tick(self) -> None:
        """Advance local timers to the clock's current time."""
        now = self.clock.now()
        if self.state.status == PAUSED and self.question is not None:
            self._tick_question(now)
            return
        if self.state.status != PLAYING:
            return
        if self._last_tick is None:
            self._last_tick = now
            return
        dt = max(0.0, now - self._last_tick)
        self._last_tick = now
        if dt == 0:
            return

        for expired in self.effects.tick(now):
            logger.debug("power-up %s expired", expired.effect)

        state = self.state
        spent = min(dt, state.time_remaining)
        self._distance_carry += spent * rules.SCORING['distance_per_second']
        gained = math.floor(self._distance_carry)
        self._distance_carry -= gained
        self._speed_clock += spent
        speed = state.speed
        while self._speed_clock >= rules.SPEED_INCREMENT_INTERVAL_SEC:
            self._speed_clock -= rules.SPEED_INCREMENT_INTERVAL_SEC
            speed += rules.SPEED_INCREMENT

        time_remaining = state.time_remaining - spent
        self._reconcile({
            'score': state.score + gained,
            'speed': speed,
            'time_remaining': time_remaining,
            'time_survived': state.time_survived + spent,
        }, action=rules.TIME_OVER if time_remaining <= 0 else None, elapsed=dt)

    def _tick_question(self, now) -> None:
        # Question countdown ticks in whole seconds
        if self._last_tick is None:
            self._last_tick = now
            return
        whole = math.floor(now - self._last_tick)
        if whole < 1:
            return
        self._last_tick += whole
        self.question.time_left = max(0.0, self.question.time_left - whole)
        self._publish()
        if self.question.time_left <= 0:
            self.timeout()

    # -- game events --------------------------------------------------------

    def begin_question(self, time_limit=None) -> QuestionTimer:
        """Portal hit: freeze the run and start the question countdown."""
        limit = float(time_limit or rules.QUESTION_TIME_LIMITS[self.state.difficulty])
        self.pause()
        self.question = QuestionTimer(limit, limit)
        self._last_tick = self.clock.now()
        self._publish()
        return self.question

    def _close_question(self) -> None:
        self.question = None
        if self.state.status == PAUSED:
            self.resume()

    def answer(self, correct: bool) -> dict:
        if self.question is None:
            raise RuntimeError('no question is open')
        state = self.state
        fast = self.question.time_left > self.question.time_limit * 0.5
        power_up = None
        if correct:
            delta = int(rules.SCORING['correct'] * self.effects.score_multiplier())
            if fast:
                delta += rules.SCORING['fast_solve_bonus']
            self._reconcile({
                'score': state.score + delta,
                'portals_cleared': state.portals_cleared + 1,
            }, action=rules.ANSWER_CORRECT)
            if self.rng.random() < POWER_UP_CHANCE:
                power_up = self.rng.choice(sorted(POWER_UPS))
        else:
            delta = rules.SCORING['wrong']
            self._reconcile({
                'score': state.score + delta,
                'health': state.health - 1,
            }, action=rules.ANSWER_INCORRECT)
        self._close_question()
        if power_up and self.state.status in LIVE_STATUSES:
            self.collect_bonus(power_up)
        return {
            'correct': correct,
            'score_delta': delta,
            'power_up': power_up,
            'continue_game': self.state.status in LIVE_STATUSES,
        }

    def timeout(self) -> dict:
        state = self.state
        self._reconcile({
            'score': state.score + rules.SCORING['timeout'],
            'health': state.health - 1,
        }, action=rules.HEALTH_LOSS)
        self._close_question()
        return {
            'correct': False,
            'score_delta': rules.SCORING['timeout'],
            'timeout': True,
            'continue_game': self.state.status in LIVE_STATUSES,
        }

    def hit_obstacle(self) -> None:
        state = self.state
        self._reconcile({
            'health': state.health - 1,
            'obstacles_hit': state.obstacles_hit + 1,
        }, action=rules.DEMOGORGON_HIT)

    def collect_bonus(self, power_up_name=None) -> None:
        """Bonus pickup, optionally carrying a power-up; the only way to heal."""
        state = self.state
        proposed = {'bonuses_cleared': state.bonuses_cleared + 1}
        power_up = POWER_UPS.get(power_up_name) if power_up_name else None
        if power_up is not None:
            self.effects.schedule(power_up, self.clock.now())
            if power_up.heal:
                proposed['health'] = min(rules.MAX_HEALTH, state.health + power_up.heal)
        self._reconcile(proposed, action=rules.BONUS_COLLECTED)

    # -- server orchestration -----------------------------------------------

    def bootstrap(self, api) -> str:
        """Decide between resume and fresh start on load.

        Returns ``'completed'``, ``'started'``, ``'resumed'`` or ``'expired'``.
        """
        status = api.status()
        if not status.get('can_play', True):
            self._end()
            if self.cache is not None:
                self.cache.discard(self.player_id)
            return 'completed'

        server = api.get_active()
        restored = self.cache.restore(self.player_id) if self.cache is not None else None
        if server is None:
            if self.cache is not None:
                self.cache.discard(self.player_id)
            try:
                self.start(api.start_session())
            except AlreadyCompleted:
                self._end()
                return 'completed'
            return 'started'

        cached = restored.state if restored and restored.state else None
        if cached and cached.get('session_id') == server.get('session_id') and \
                restored.outcome in (RESUMED, EXPIRED):
            self.state = LocalState(**{k: cached[k] for k in LocalState.__dataclass_fields__ if k in cached})
            if restored.outcome == EXPIRED:
                self._push(rules.TIME_OVER, 0.0)
                return 'expired'
            self._resume_from_load()
            return 'resumed'

        self.state = LocalState(time_remaining=float(self.time_limit), status=PAUSED)
        self.apply_server_snapshot(server)
        return 'resumed'

    def _resume_from_load(self) -> None:
        # A reload lands paused; the player resumes explicitly
        self.state.status = PAUSED
        self._last_tick = None
        self._persist()
        self._publish()
        self._push(None, 0.0, force=True)

    def quit(self, api) -> Optional[dict]:
        """Voluntary end of run: report final values and mark the session complete."""
        state = self.state
        try:
            if self.pusher is not None:
                self.pusher.flush()
            record = api.complete(state.score, state.portals_cleared, state.time_survived)
        except NoActiveSession:
            record = None
        self._end()
        self._persist()
        self._publish()
        return record
