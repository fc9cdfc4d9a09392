from flask import Blueprint, request, jsonify, current_app
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from enigma import db
from enigma.auth import issue_token
from enigma.models import User, utcnow, isoformat

main = Blueprint('main', __name__)

@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the Enigma game server!'})

@main.route('/api/health')
def health():
    try:
        db.session.execute(text('SELECT 1'))
        database = 'connected'
    except SQLAlchemyError as exc:
        current_app.logger.error(f"[health] database probe failed: {exc}")
        db.session.rollback()
        database = 'disconnected'
    return jsonify({
        'status': 'healthy' if database == 'connected' else 'degraded',
        'database': database,
        'timestamp': isoformat(utcnow()),
    }), 200 if database == 'connected' else 503

@main.route('/api/auth/register', methods=['POST'])
def register():
    data = request.get_json(silent=True) or {}
    username = (data.get('username') or '').strip()
    password = data.get('password') or ''
    if not username or not password:
        return jsonify({'error': 'Missing username or password'}), 400

    if User.query.filter_by(username=username).first():
        return jsonify({'error': 'Username already exists'}), 400

    user = User(username=username)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()

    return jsonify({'user': user.to_dict(), 'token': issue_token(user)}), 201

@main.route('/api/auth/login', methods=['POST'])
def login():
    data = request.get_json(silent=True) or {}
    user = User.query.filter_by(username=data.get('username')).first()
    if user and user.check_password(data.get('password') or ''):
        return jsonify({'user': user.to_dict(), 'token': issue_token(user)})
    return jsonify({'error': 'Invalid username or password'}), 401
