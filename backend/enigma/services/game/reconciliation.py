"""State reconciliation: the anti-cheat gate in front of every session write.

Every client push is attacker-controlled. Out-of-range or implausible values
are corrected, never rejected; only a malformed payload or a missing ACTIVE
session is a hard failure. The corrected snapshot is the new ground truth for
the client.

Order of processing for one push:

1. clamp every numeric field to its domain (floor for integers)
2. unknown difficulty tiers fall back to EASY
3. unknown action tags apply the numbers but log no event
4. ``time_remaining`` above the server-expected value plus tolerance is
   replaced with the expected value
5. score jumps above the per-update ceiling are accepted and flagged
6. health only rises on ``bonus_collected``
7. commit with ``last_updated_at = now`` and the action event
8. health exhausted -> ``game_over``; else time exhausted -> ``time_over``;
   either completes the session in the same unit of work

Counters and ``time_survived`` never move backwards and the score only drops
on penalty actions, so late or reordered pushes cannot regress a session.
"""

from flask import current_app

from enigma import rules
from enigma.errors import InvalidPayload, NoActiveSession
from enigma.models import GameSession, STATUS_ACTIVE, utcnow
from .lifecycle import mark_completed
from .publisher import publish_session_state
from .store import GameSettings, commit, report_suspicious

REQUIRED_FIELDS = ('health', 'score')


def validate_delta(raw_delta) -> dict:
    if not isinstance(raw_delta, dict):
        raise InvalidPayload('State update must be an object')
    for field in REQUIRED_FIELDS:
        if not rules.is_number(raw_delta.get(field)):
            raise InvalidPayload(f"'{field}' is required and must be a number")
    return raw_delta


def load_active_session(session_id, player_id=None):
    session = (
        GameSession.query.filter_by(id=session_id, status=STATUS_ACTIVE)
        .with_for_update()
        .first()
    )
    if session is None or (player_id is not None and session.player_id != player_id):
        raise NoActiveSession()
    return session


def _number_or(delta, field, fallback):
    value = delta.get(field)
    return value if rules.is_number(value) else fallback


def apply_update(session_id, raw_delta, action=None, player_id=None, now=None):
    """Validate, correct and commit one client state push; return the session."""
    delta = validate_delta(raw_delta)
    session = load_active_session(session_id, player_id)
    settings = GameSettings.current()
    now = now or utcnow()
    pid, sid = session.player_id, session.id

    # 1. clamp to domain
    health = rules.clamp_health(delta['health'])
    score = rules.clamp_score(delta['score'])
    counters = {
        field: rules.clamp_counter(_number_or(delta, field, getattr(session, field)))
        for field in rules.COUNTER_FIELDS
    }
    speed = rules.clamp_speed(_number_or(delta, 'speed', session.speed), settings.base_speed, settings.cap_speed)
    time_remaining = rules.clamp_time(_number_or(delta, 'time_remaining', session.time_remaining), settings.time_limit)
    time_survived = rules.clamp_time(_number_or(delta, 'time_survived', session.time_survived), settings.time_limit)

    # 2. difficulty
    submitted_difficulty = rules.normalize_difficulty(delta.get('difficulty'))

    # 3. action
    tag = rules.normalize_action(action)
    if action is not None and tag is None:
        current_app.logger.info(f"[unknown-action] player={pid} session={sid} action={action!r}")

    # 4. time manipulation
    elapsed = max(0.0, (now - session.started_at).total_seconds())
    expected = rules.expected_time_remaining(settings.time_limit, elapsed)
    if time_remaining > expected + settings.time_tolerance:
        report_suspicious('time_remaining', pid, sid, client=time_remaining, expected=round(expected, 1))
        time_remaining = expected
    survived_cap = min(float(settings.time_limit), elapsed + settings.time_tolerance)
    if time_survived > survived_cap:
        report_suspicious('time_survived', pid, sid, client=time_survived, cap=round(survived_cap, 1))
        time_survived = survived_cap

    # 5. score rate
    score_increase = score - session.score
    if score_increase > settings.score_ceiling:
        report_suspicious('score_increase', pid, sid, increase=score_increase, ceiling=settings.score_ceiling)

    # 6. health only rises on a heal
    if health > session.health and tag not in rules.HEAL_ACTIONS:
        report_suspicious('health_increase', pid, sid, client=health, stored=session.health, action=tag)
        health = session.health

    if score < session.score and tag not in rules.PENALTY_ACTIONS:
        score = session.score
    for field, value in counters.items():
        counters[field] = max(value, getattr(session, field))
    time_survived = max(time_survived, session.time_survived)

    difficulty = rules.difficulty_for_portals(counters['portals_cleared'])
    if 'difficulty' in delta and submitted_difficulty != difficulty:
        current_app.logger.info(
            f"[difficulty-mismatch] player={pid} session={sid} client={submitted_difficulty} derived={difficulty}"
        )

    # 7. commit
    session.health = health
    session.score = score
    for field, value in counters.items():
        setattr(session, field, value)
    session.difficulty = difficulty
    session.speed = speed
    session.time_remaining = time_remaining
    session.time_survived = time_survived
    session.last_updated_at = now
    if tag:
        session.log_event(tag, now, session.key_fields())

    # 8. terminal check, health first
    terminal = None
    if health <= 0:
        terminal = rules.GAME_OVER
    elif time_remaining <= 0:
        terminal = rules.TIME_OVER
    if terminal:
        if tag != terminal:
            session.log_event(terminal, now, session.key_fields())
        mark_completed(session, now, session.score, session.portals_cleared, session.time_survived)

    commit(f"update player={pid} session={sid}")
    if terminal:
        current_app.logger.info(f"[terminal] player={pid} session={sid} reason={terminal} score={session.score}")
    publish_session_state(session)
    return session
