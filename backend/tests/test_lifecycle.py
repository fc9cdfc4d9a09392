from datetime import timedelta

import pytest

from enigma.errors import AlreadyCompleted, InvalidPayload, NoActiveSession, SessionNotFound
from enigma.models import CompletionRecord, GameSession, utcnow
from enigma.services.game import lifecycle
from enigma.services.game.reconciliation import apply_update


def test_start_creates_session_with_initial_state(flask_app):
    session, created = lifecycle.start('p1', username='alice')
    assert created
    assert session.status == 'active'
    assert session.health == 3
    assert session.score == 0
    assert session.difficulty == 'EASY'
    assert session.speed == 200
    assert session.time_remaining == 7200
    assert [e.action for e in session.events] == ['session_start']


def test_start_is_idempotent(flask_app):
    first, created = lifecycle.start('p1')
    again, created_again = lifecycle.start('p1')
    assert created and not created_again
    assert again.id == first.id
    assert GameSession.query.filter_by(player_id='p1').count() == 1


def test_concurrent_start_returns_the_winner(flask_app, monkeypatch):
    winner, _ = lifecycle.start('p1')
    real_find_active = lifecycle.find_active
    calls = {'n': 0}

    def stale_find_active(player_id):
        # The first lookup races ahead of the other request's insert
        calls['n'] += 1
        if calls['n'] == 1:
            return None
        return real_find_active(player_id)

    monkeypatch.setattr(lifecycle, 'find_active', stale_find_active)
    loser, created = lifecycle.start('p1')
    assert not created
    assert loser.id == winner.id
    assert GameSession.query.filter_by(player_id='p1', status='active').count() == 1


def test_complete_writes_record_and_blocks_replay(flask_app):
    session, _ = lifecycle.start('p1', username='alice')
    apply_update(session.id, {'health': 3, 'score': 400, 'portals_cleared': 2}, 'portal_cleared')
    record = lifecycle.complete('p1', 400, final_portals=3, final_time_survived=0)
    assert record.final_score == 400
    assert record.final_portals_cleared == 3
    assert record.can_play_again is False
    assert session.status == 'completed'
    assert session.completed_at is not None

    with pytest.raises(AlreadyCompleted) as exc:
        lifecycle.start('p1')
    assert exc.value.to_dict()['completed_at'] is not None
    assert lifecycle.play_status('p1')['can_play'] is False


def test_complete_twice_fails_with_no_active_session(flask_app):
    lifecycle.start('p1')
    lifecycle.complete('p1', 0)
    with pytest.raises(NoActiveSession):
        lifecycle.complete('p1', 0)


def test_complete_does_not_touch_health_or_score(flask_app):
    session, _ = lifecycle.start('p1')
    apply_update(session.id, {'health': 2, 'score': 120}, 'health_loss')
    lifecycle.complete('p1', 150)
    assert session.health == 2
    assert session.score == 120
    assert CompletionRecord.query.filter_by(player_id='p1').one().final_score == 150


def test_complete_sanitizes_inflated_reports(flask_app, caplog):
    t0 = utcnow()
    session, _ = lifecycle.start('p1', now=t0)
    apply_update(session.id, {'health': 3, 'score': 200, 'portals_cleared': 2}, 'portal_cleared',
                 now=t0 + timedelta(seconds=30))
    record = lifecycle.complete('p1', 99_999, final_portals=40, final_time_survived=7000,
                                now=t0 + timedelta(seconds=100))
    assert record.final_score == 200
    assert record.final_portals_cleared == 2
    assert record.final_time_survived == pytest.approx(160.0)
    assert 'kind=final_score' in caplog.text


@pytest.mark.parametrize('final_score', [None, -1, '100', float('inf')])
def test_complete_rejects_invalid_score(flask_app, final_score):
    lifecycle.start('p1')
    with pytest.raises(InvalidPayload):
        lifecycle.complete('p1', final_score)
    assert lifecycle.get_active('p1') is not None


def test_play_status_for_new_player(flask_app):
    assert lifecycle.play_status('nobody') == {'can_play': True, 'game_completed': False, 'completed_at': None}


def test_history_newest_first_and_detail_ownership(flask_app):
    t0 = utcnow()
    first, _ = lifecycle.start('p1', now=t0 - timedelta(hours=1))
    # Free the player up again so a second session can be started
    first.status = 'completed'
    second, _ = lifecycle.start('p1', now=t0)
    assert [s.id for s in lifecycle.history('p1')] == [second.id, first.id]

    detail = lifecycle.session_detail('p1', first.id)
    assert detail.id == first.id
    with pytest.raises(SessionNotFound):
        lifecycle.session_detail('p2', first.id)
    with pytest.raises(SessionNotFound):
        lifecycle.session_detail('p1', 'missing')
