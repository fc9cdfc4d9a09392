"""Bearer credential issue/verify.

The game services only ever see a stable player identifier; everything that
turns an ``Authorization: Bearer`` header into that identifier lives here.
"""

from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app, jsonify

from enigma import db
from enigma.errors import Unauthorized
from enigma.models import User


def issue_token(user: User) -> str:
    expires = int(current_app.config.get('JWT_EXPIRES_SEC', 86400))
    payload = {
        'sub': str(user.id),
        'username': user.username,
        'exp': datetime.now(timezone.utc) + timedelta(seconds=expires),
    }
    return jwt.encode(payload, current_app.config['SECRET_KEY'], algorithm='HS256')


def verify_credential(token):
    """Return the User for a bearer token, or None when the token is invalid or expired."""
    if not token:
        return None
    try:
        decoded = jwt.decode(token, current_app.config['SECRET_KEY'], algorithms=['HS256'])
    except jwt.ExpiredSignatureError:
        current_app.logger.info("[auth] expired token")
        return None
    except jwt.InvalidTokenError:
        current_app.logger.info("[auth] invalid token")
        return None
    try:
        user_id = int(decoded.get('sub'))
    except (TypeError, ValueError):
        return None
    return db.session.get(User, user_id)


def bearer_token(header_value):
    if not header_value:
        return None
    scheme, _, token = header_value.partition(' ')
    if scheme.lower() != 'bearer':
        return None
    return token.strip() or None


def register_loaders(login_manager) -> None:
    @login_manager.request_loader
    def load_user_from_request(request):
        return verify_credential(bearer_token(request.headers.get('Authorization')))

    @login_manager.unauthorized_handler
    def unauthorized():
        exc = Unauthorized()
        return jsonify(exc.to_dict()), exc.status_code
