import pytest

from enigma.client.clock import VirtualClock
from enigma.client.context import GameSessionContext
from enigma.client.effects import SIGNAL_BOOSTER
from enigma.client.resumption import ResumptionCache, FRESH, ENDED, PAUSED, PLAYING
from enigma.client.secure_storage import MemoryBackend, SecureStorage
from enigma.client.sync import StatePusher
from enigma.errors import NoActiveSession, TransientError


def server_session(session_id='s1', **overrides):
    state = {
        'session_id': session_id,
        'status': 'active',
        'health': 3,
        'score': 0,
        'portals_cleared': 0,
        'bonuses_cleared': 0,
        'obstacles_hit': 0,
        'difficulty': 'EASY',
        'speed': 200.0,
        'time_remaining': 7200.0,
        'time_survived': 0.0,
    }
    state.update(overrides)
    return state


class FakeServer:
    """Push transport that accepts everything and echoes it back."""

    def __init__(self):
        self.pushes = []
        self.fail_with = None

    def __call__(self, session_id, delta, action):
        if self.fail_with is not None:
            raise self.fail_with
        self.pushes.append((session_id, dict(delta), action))
        return dict(delta, session_id=session_id, status='active')

    @property
    def actions(self):
        return [action for _, _, action in self.pushes]


class FakeApi:
    def __init__(self, active=None, can_play=True):
        self.active = active
        self.can_play = can_play
        self.completed = []

    def status(self):
        return {'can_play': self.can_play, 'game_completed': not self.can_play}

    def get_active(self):
        return self.active

    def start_session(self):
        self.active = server_session('s2')
        return self.active

    def complete(self, final_score, final_portals, final_time_survived):
        self.completed.append((final_score, final_portals, final_time_survived))
        return {'final_score': final_score, 'can_play_again': False}


class ScriptedRng:
    def __init__(self, roll, pick=None):
        self.roll = roll
        self.pick = pick

    def random(self):
        return self.roll

    def choice(self, seq):
        return self.pick if self.pick in seq else seq[0]


@pytest.fixture()
def clock():
    return VirtualClock(1000.0)


@pytest.fixture()
def cache(clock):
    return ResumptionCache(SecureStorage(MemoryBackend(), iterations=1000), clock)


@pytest.fixture()
def server():
    return FakeServer()


def make_context(clock, cache, server, rng=None):
    return GameSessionContext('p1', clock=clock, cache=cache,
                              pusher=StatePusher(server, interval=1.0), rng=rng or ScriptedRng(0.99))


@pytest.fixture()
def ctx(clock, cache, server):
    context = make_context(clock, cache, server)
    context.start(server_session())
    return context


def test_start_plays_the_server_session(ctx):
    assert ctx.state.status == PLAYING
    assert ctx.state.session_id == 's1'
    assert ctx.state.time_remaining == 7200.0


def test_tick_spends_time_and_scores_distance(ctx, clock, server):
    clock.advance(2.5)
    ctx.tick()
    assert ctx.state.time_remaining == pytest.approx(7197.5)
    assert ctx.state.time_survived == pytest.approx(2.5)
    assert ctx.state.score == 2
    assert len(server.pushes) == 1

    clock.advance(0.5)
    ctx.tick()
    # Fractional distance carries over between ticks
    assert ctx.state.score == 3
    # Not enough time accumulated for another push yet
    assert len(server.pushes) == 1
    assert ctx.pusher.has_pending


def test_speed_ramps_every_thirty_seconds(ctx, clock):
    clock.advance(65)
    ctx.tick()
    assert ctx.state.speed == 240


def test_pause_freezes_time(ctx, clock):
    ctx.pause()
    assert ctx.state.status == PAUSED
    clock.advance(100)
    ctx.tick()
    assert ctx.state.time_remaining == 7200.0
    ctx.resume()
    clock.advance(1)
    ctx.tick()
    assert ctx.state.time_remaining == pytest.approx(7199.0)


def test_time_running_out_ends_the_run(clock, cache, server):
    context = GameSessionContext('p1', clock=clock, cache=cache,
                                 pusher=StatePusher(server, interval=1.0), time_limit=30)
    context.start(server_session(time_remaining=30.0))
    clock.advance(45)
    context.tick()
    assert context.state.status == ENDED
    assert context.state.time_remaining == 0
    assert context.state.time_survived == pytest.approx(30.0)
    assert server.actions[-1] == 'time_over'


def test_question_countdown_and_timeout(ctx, clock, server):
    question = ctx.begin_question()
    assert question.time_limit == 10
    assert ctx.state.status == PAUSED
    clock.advance(4.5)
    ctx.tick()
    assert question.time_left == 6
    clock.advance(6)
    ctx.tick()
    # Timeout costs a life and the run picks up again
    assert ctx.question is None
    assert ctx.state.health == 2
    assert ctx.state.status == PLAYING
    assert ctx.state.time_remaining == 7200.0
    assert server.actions[-1] == 'health_loss'


def test_fast_correct_answer(ctx, clock, server):
    ctx.begin_question()
    clock.advance(2)
    ctx.tick()
    result = ctx.answer(True)
    assert result == {'correct': True, 'score_delta': 150, 'power_up': None, 'continue_game': True}
    assert ctx.state.score == 150
    assert ctx.state.portals_cleared == 1
    assert ctx.state.status == PLAYING
    assert server.actions[-1] == 'answer_correct'


def test_slow_correct_then_wrong_answer(ctx, clock):
    ctx.begin_question()
    clock.advance(7)
    ctx.tick()
    assert ctx.answer(True)['score_delta'] == 100
    ctx.begin_question()
    result = ctx.answer(False)
    assert result['score_delta'] == -50
    assert ctx.state.score == 50
    assert ctx.state.health == 2


def test_answer_without_question_is_an_error(ctx):
    with pytest.raises(RuntimeError):
        ctx.answer(True)


def test_difficulty_follows_portals(ctx):
    for _ in range(4):
        ctx.begin_question()
        ctx.answer(True)
    assert ctx.state.difficulty == 'MEDIUM'
    assert ctx.begin_question().time_limit == 20


def test_power_up_after_correct_answer(clock, cache, server):
    context = make_context(clock, cache, server, rng=ScriptedRng(0.1, SIGNAL_BOOSTER))
    context.start(server_session())
    context.begin_question()
    result = context.answer(True)
    assert result['power_up'] == SIGNAL_BOOSTER
    assert context.state.bonuses_cleared == 1
    assert context.state.score_multiplier == 2.0
    context.begin_question()
    assert context.answer(True)['score_delta'] == 250

    clock.advance(21)
    context.tick()
    assert not context.effects.is_active(SIGNAL_BOOSTER)


def test_health_only_rises_through_bonus(ctx):
    ctx.hit_obstacle()
    assert ctx.state.health == 2
    assert ctx.state.obstacles_hit == 1
    ctx._reconcile({'health': 3})
    assert ctx.state.health == 2
    ctx.collect_bonus('medkit')
    assert ctx.state.health == 3
    assert ctx.state.bonuses_cleared == 1
    ctx.collect_bonus('medkit')
    assert ctx.state.health == 3


def test_losing_last_life_ends_and_clears_cache(ctx, cache, server):
    for _ in range(3):
        ctx.hit_obstacle()
    assert ctx.state.status == ENDED
    assert ctx.state.health == 0
    assert cache.restore('p1').outcome == FRESH
    assert server.actions[-1] == 'demogorgon_hit'
    assert server.pushes[-1][1]['health'] == 0


def test_subscribers_see_display_state(ctx):
    seen = []
    unsubscribe = ctx.subscribe(seen.append)
    ctx.hit_obstacle()
    assert seen[-1]['health'] == 2
    assert 'effective_speed' in seen[-1]
    unsubscribe()
    ctx.hit_obstacle()
    assert seen[-1]['health'] == 2


def test_server_snapshot_overwrites_local_values(ctx):
    ctx.apply_server_snapshot(server_session(score=42, time_remaining=100.0))
    assert ctx.state.score == 42
    assert ctx.state.time_remaining == 100.0
    ctx.apply_server_snapshot(server_session(status='completed'))
    assert ctx.state.status == ENDED


def test_missing_server_session_ends_locally(ctx, server):
    server.fail_with = NoActiveSession()
    ctx.hit_obstacle()
    assert ctx.state.status == ENDED
    assert not ctx.pusher.has_pending


def test_transient_failure_keeps_push_pending(ctx, server):
    server.fail_with = TransientError()
    ctx.hit_obstacle()
    assert ctx.pusher.has_pending
    server.fail_with = None
    snapshot = ctx.pusher.flush()
    assert snapshot['health'] == 2
    assert server.actions == ['demogorgon_hit']


def test_bootstrap_completed_player(clock, cache, server):
    context = make_context(clock, cache, server)
    assert context.bootstrap(FakeApi(can_play=False)) == 'completed'
    assert context.state.status == ENDED


def test_bootstrap_starts_fresh(clock, cache, server):
    context = make_context(clock, cache, server)
    assert context.bootstrap(FakeApi()) == 'started'
    assert context.state.session_id == 's2'
    assert context.state.status == PLAYING


def test_reload_resumes_paused_with_time_charged(ctx, clock, cache):
    clock.advance(10)
    ctx.tick()
    ctx.on_page_hide()

    clock.advance(60)
    server_after_reload = FakeServer()
    reloaded = make_context(clock, cache, server_after_reload)
    api = FakeApi(active=server_session(score=10, time_remaining=7190.0, time_survived=10.0))
    assert reloaded.bootstrap(api) == 'resumed'
    assert reloaded.state.status == PAUSED
    assert reloaded.state.time_remaining == pytest.approx(7130.0)
    assert reloaded.state.time_survived == pytest.approx(70.0)
    assert reloaded.state.score == 10
    # The adjusted state is pushed right away
    assert server_after_reload.pushes[-1][1]['time_remaining'] == pytest.approx(7130.0)

    reloaded.resume()
    assert reloaded.state.status == PLAYING


def test_reload_after_time_ran_out(clock, cache, server):
    context = GameSessionContext('p1', clock=clock, cache=cache,
                                 pusher=StatePusher(server, interval=1.0), time_limit=30)
    context.start(server_session(time_remaining=30.0))
    context.on_page_hide()
    clock.advance(100)

    server_after_reload = FakeServer()
    reloaded = GameSessionContext('p1', clock=clock, cache=cache,
                                  pusher=StatePusher(server_after_reload, interval=1.0), time_limit=30)
    assert reloaded.bootstrap(FakeApi(active=server_session(time_remaining=30.0))) == 'expired'
    assert reloaded.state.status == ENDED
    assert server_after_reload.actions == ['time_over']
    assert server_after_reload.pushes[0][1]['time_remaining'] == 0


def test_quit_reports_final_values(ctx, clock):
    clock.advance(5)
    ctx.tick()
    api = FakeApi(active=server_session())
    record = ctx.quit(api)
    assert record['can_play_again'] is False
    assert api.completed == [(5, 0, pytest.approx(5.0))]
    assert ctx.state.status == ENDED


def test_penalty_survives_a_failed_push(ctx, server):
    ctx.begin_question()
    ctx.answer(True)
    server.fail_with = TransientError()
    ctx.begin_question()
    ctx.answer(False)
    server.fail_with = None
    ctx.collect_bonus()
    assert server.actions[-2:] == ['answer_incorrect', 'bonus_collected']
    assert ctx.state.score == 100
    assert ctx.state.health == 2
