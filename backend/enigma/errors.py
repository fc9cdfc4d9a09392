"""Error taxonomy shared by the HTTP layer, the services and the client.

Validation and precondition failures are raised; anti-cheat corrections never
are. Each error carries the HTTP status it maps to and a stable ``code`` so a
client can map a response back to the same exception class.
"""


class GameError(Exception):
    status_code = 500
    code = 'server_error'
    default_message = 'Server error'

    def __init__(self, message=None, **extra):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.extra = extra

    def to_dict(self):
        payload = {'error': self.message, 'code': self.code}
        payload.update(self.extra)
        return payload


class InvalidPayload(GameError):
    status_code = 400
    code = 'invalid_payload'
    default_message = 'Invalid payload'


class Unauthorized(GameError):
    status_code = 401
    code = 'unauthorized'
    default_message = 'Authorization required'


class AlreadyCompleted(GameError):
    status_code = 403
    code = 'already_completed'
    default_message = 'You have already completed the game and cannot play again.'


class NoActiveSession(GameError):
    status_code = 404
    code = 'no_active_session'
    default_message = 'No active session, please start a new game.'


class SessionNotFound(GameError):
    status_code = 404
    code = 'session_not_found'
    default_message = 'Session not found'


class RateLimited(GameError):
    status_code = 429
    code = 'rate_limited'
    default_message = 'Too many requests, please try again later'


class StoreUnavailable(GameError):
    status_code = 503
    code = 'store_unavailable'
    default_message = 'Temporary server error, please retry'


class TransientError(GameError):
    """Raised client-side for network failures and unmapped server errors."""
    code = 'transient'
    default_message = 'Temporary failure, please retry'


ERRORS_BY_CODE = {
    cls.code: cls
    for cls in (InvalidPayload, Unauthorized, AlreadyCompleted, NoActiveSession, SessionNotFound,
                RateLimited, StoreUnavailable)
}
