"""Session lifecycle: start, resume-by-query, completion and play eligibility.

Lifecycle operations never touch a session's health or score; those change
only through :mod:`enigma.services.game.reconciliation`.
"""

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from enigma import db, rules
from enigma.errors import AlreadyCompleted, InvalidPayload, NoActiveSession, SessionNotFound, StoreUnavailable
from enigma.models import GameSession, CompletionRecord, STATUS_ACTIVE, STATUS_COMPLETED, utcnow, isoformat
from .publisher import publish_session_state
from .store import GameSettings, commit, report_suspicious

# Portals a final report may add on top of the last reconciled value
PORTAL_INCREASE_CEILING = 1


def find_active(player_id):
    return GameSession.query.filter_by(player_id=player_id, status=STATUS_ACTIVE).first()


def get_active(player_id):
    return find_active(player_id)


def get_completion_record(player_id):
    return CompletionRecord.query.filter_by(player_id=player_id).first()


def start(player_id, username=None, now=None):
    """Return ``(session, created)``.

    An existing ACTIVE session is returned unchanged. A player whose
    completion record forbids replay gets :class:`AlreadyCompleted`.
    """
    record = get_completion_record(player_id)
    if record and not record.can_play_again:
        raise AlreadyCompleted(completed_at=isoformat(record.completed_at))

    existing = find_active(player_id)
    if existing:
        current_app.logger.info(f"[session-resume] player={player_id} session={existing.id}")
        return existing, False

    settings = GameSettings.current()
    now = now or utcnow()
    session = GameSession(
        player_id=player_id,
        username=username,
        status=STATUS_ACTIVE,
        health=rules.INITIAL_HEALTH,
        score=0,
        portals_cleared=0,
        bonuses_cleared=0,
        obstacles_hit=0,
        difficulty=rules.EASY,
        speed=float(settings.base_speed),
        time_remaining=float(settings.time_limit),
        time_survived=0.0,
        started_at=now,
        last_updated_at=now,
    )
    db.session.add(session)
    try:
        db.session.flush()
        session.log_event(rules.SESSION_START, now, {'time_limit': settings.time_limit})
        db.session.commit()
    except IntegrityError:
        # Lost the race on the one-active-session index: hand back the winner
        db.session.rollback()
        winner = find_active(player_id)
        if winner is None:
            raise StoreUnavailable()
        current_app.logger.info(f"[session-resume] player={player_id} session={winner.id} concurrent start")
        return winner, False
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.error(f"[store-error] start player={player_id}: {exc}")
        raise StoreUnavailable() from exc

    current_app.logger.info(f"[session-start] player={player_id} session={session.id}")
    publish_session_state(session)
    return session, True


def mark_completed(session, now, final_score, final_portals, final_time_survived):
    """Transition a session to COMPLETED and upsert the player's completion record.

    Does not commit; callers own the transaction.
    """
    session.status = STATUS_COMPLETED
    session.completed_at = now
    session.last_updated_at = now

    record = get_completion_record(session.player_id)
    if record is None:
        record = CompletionRecord(player_id=session.player_id)
        db.session.add(record)
    record.username = session.username
    record.session_id = session.id
    record.final_score = int(final_score)
    record.final_portals_cleared = int(final_portals)
    record.final_time_survived = float(final_time_survived)
    record.completed_at = now
    record.can_play_again = False
    return record


def _optional_number(value, name, fallback):
    if value is None:
        return fallback
    if not rules.is_number(value):
        raise InvalidPayload(f"'{name}' must be a number")
    return value


def complete(player_id, final_score, final_portals=None, final_time_survived=None, now=None):
    """Complete the player's ACTIVE session with client-reported final values."""
    if not rules.is_number(final_score) or final_score < 0:
        raise InvalidPayload('Invalid score data')
    session = find_active(player_id)
    if session is None:
        raise NoActiveSession()

    settings = GameSettings.current()
    now = now or utcnow()
    portals = rules.clamp_counter(_optional_number(final_portals, 'final_portals', session.portals_cleared))
    survived = _optional_number(final_time_survived, 'final_time_survived', session.time_survived)

    score = rules.clamp_score(final_score)
    if score > session.score + settings.score_ceiling:
        report_suspicious('final_score', player_id, session.id, reported=score, reconciled=session.score)
        score = session.score

    if portals > session.portals_cleared + PORTAL_INCREASE_CEILING:
        report_suspicious('final_portals', player_id, session.id, reported=portals, reconciled=session.portals_cleared)
        portals = session.portals_cleared

    elapsed = max(0.0, (now - session.started_at).total_seconds())
    survived_cap = min(float(settings.time_limit), elapsed + settings.time_tolerance)
    if survived > survived_cap:
        report_suspicious('final_time_survived', player_id, session.id, reported=survived, cap=survived_cap)
    survived = float(rules.clamp(survived, 0, survived_cap))

    session.log_event(rules.SESSION_COMPLETE, now, {
        'final_score': score,
        'final_portals_cleared': portals,
        'final_time_survived': survived,
    })
    record = mark_completed(session, now, score, portals, survived)
    commit(f"complete player={player_id} session={session.id}")

    current_app.logger.info(
        f"[session-complete] player={player_id} session={session.id} score={score} portals={portals} time={survived:.0f}s"
    )
    publish_session_state(session)
    return record


def play_status(player_id) -> dict:
    record = get_completion_record(player_id)
    completed = bool(record and not record.can_play_again)
    return {
        'can_play': not completed,
        'game_completed': completed,
        'completed_at': isoformat(record.completed_at) if completed else None,
    }


def history(player_id):
    return (
        GameSession.query.filter_by(player_id=player_id)
        .order_by(GameSession.started_at.desc(), GameSession.id)
        .all()
    )


def session_detail(player_id, session_id):
    session = db.session.get(GameSession, session_id)
    if session is None or session.player_id != player_id:
        raise SessionNotFound()
    return session
