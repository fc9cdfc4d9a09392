from flask_socketio import join_room, emit
from flask import request
from enigma import socketio
from enigma.auth import verify_credential
from enigma.services.game.lifecycle import get_active
from enigma.services.game.publisher import display_state, player_room
from typing import Dict


# socket id -> player id for authenticated connections
_sid_to_player: Dict[str, str] = {}


def _get_sid() -> str:
    return request.sid  # type: ignore


def handle_connect(auth=None):
    token = (auth or {}).get('token') if isinstance(auth, dict) else None
    user = verify_credential(token)
    if user is None:
        # Returning False rejects the connection
        return False
    _sid_to_player[_get_sid()] = user.player_id
    join_room(player_room(user.player_id))
    emit('connected', {'player_id': user.player_id})


def handle_disconnect(*args):
    _sid_to_player.pop(_get_sid(), None)


def handle_sync_request(data=None):
    """Reply with the display projection of the caller's ACTIVE session."""
    player_id = _sid_to_player.get(_get_sid())
    if not player_id:
        emit('error', {'message': 'not authenticated'})
        return
    session = get_active(player_id)
    emit('sync_response', {'session': display_state(session) if session else None})


def handle_ping(data):
    emit('pong', data or {})


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    namespaces = ['/ws', '/'] if testing else ['/ws']
    for namespace in namespaces:
        socketio.on_event('connect', handle_connect, namespace=namespace)
        socketio.on_event('disconnect', handle_disconnect, namespace=namespace)
        socketio.on_event('sync_request', handle_sync_request, namespace=namespace)
        socketio.on_event('ping', handle_ping, namespace=namespace)
