from flask import Blueprint, jsonify, request, current_app
from flask_login import login_required, current_user
from enigma.errors import InvalidPayload
from enigma.services.game import lifecycle, leaderboard
from enigma.services.game.rate_limit import check_update_rate
from enigma.services.game.reconciliation import apply_update


game = Blueprint('game', __name__)


def _json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidPayload('Request body must be a JSON object')
    return data


@game.route('/session/start', methods=['POST'])
@login_required
def start_session():
    session, created = lifecycle.start(current_user.player_id, username=current_user.username)
    return jsonify({'session': session.to_dict(), 'resumed': not created}), 201 if created else 200


@game.route('/session/update', methods=['POST'])
@login_required
def push_update():
    data = _json_body()
    session_id = data.get('session_id')
    if not session_id or not isinstance(session_id, str):
        raise InvalidPayload("'session_id' is required")
    check_update_rate(current_user.player_id)
    delta = {k: v for k, v in data.items() if k not in ('session_id', 'action')}
    session = apply_update(session_id, delta, action=data.get('action'), player_id=current_user.player_id)
    return jsonify({'session': session.to_dict()})


@game.route('/session/active', methods=['GET'])
@login_required
def get_active_session():
    session = lifecycle.get_active(current_user.player_id)
    return jsonify({'session': session.to_dict() if session else None})


@game.route('/complete', methods=['POST'])
@login_required
def complete_game():
    data = _json_body()
    record = lifecycle.complete(
        current_user.player_id,
        data.get('final_score'),
        final_portals=data.get('final_portals'),
        final_time_survived=data.get('final_time_survived'),
    )
    return jsonify({'message': 'Game completed successfully', 'completion': record.to_dict()})


@game.route('/status', methods=['GET'])
@login_required
def play_status():
    status = lifecycle.play_status(current_user.player_id)
    status['message'] = 'You have already completed the game' if status['game_completed'] else 'You can play the game'
    return jsonify(status)


@game.route('/leaderboard', methods=['GET'])
def get_leaderboard():
    cap = int(current_app.config.get('LEADERBOARD_LIMIT', 100))
    limit = request.args.get('limit', default=cap, type=int)
    limit = max(1, min(limit or cap, cap))
    entries = leaderboard.top(limit)
    return jsonify({'leaderboard': entries, 'total_players': leaderboard.total_players()})


@game.route('/leaderboard/me', methods=['GET'])
@login_required
def get_my_rank():
    return jsonify({'entry': leaderboard.rank_for_player(current_user.player_id)})


@game.route('/sessions', methods=['GET'])
@login_required
def get_history():
    sessions = lifecycle.history(current_user.player_id)
    return jsonify({'sessions': [s.to_summary() for s in sessions]})


@game.route('/sessions/<string:session_id>', methods=['GET'])
@login_required
def get_session_detail(session_id):
    session = lifecycle.session_detail(current_user.player_id, session_id)
    return jsonify({'session': session.to_dict(include_events=True)})
