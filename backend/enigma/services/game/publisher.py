from enigma import socketio


def player_room(player_id) -> str:
    return f"player:{player_id}"


def display_state(session) -> dict:
    """HUD projection of a session: what a display needs, nothing it doesn't."""
    return {
        'session_id': session.id,
        'status': session.status,
        'health': session.health,
        'score': session.score,
        'portals_cleared': session.portals_cleared,
        'difficulty': session.difficulty,
        'speed': session.speed,
        'time_remaining': session.time_remaining,
        'time_survived': session.time_survived,
    }


def publish_session_state(session) -> None:
    socketio.emit('session_update', display_state(session), to=player_room(session.player_id), namespace='/ws')
