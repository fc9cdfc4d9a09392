from enigma import db, bcrypt
from enigma import rules
from flask_login import UserMixin
from sqlalchemy import text
from datetime import datetime, timezone
import json
import uuid

STATUS_ACTIVE = 'active'
STATUS_COMPLETED = 'completed'


def utcnow():
    """Naive UTC timestamp; every stored datetime is naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def isoformat(value):
    return value.isoformat() + 'Z' if value else None


class User(UserMixin, db.Model):
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=False)

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        return bcrypt.check_password_hash(self.password_hash, password)

    @property
    def player_id(self):
        # Stable identifier handed to the game services
        return str(self.id)

    def to_dict(self):
        return {
            'id': self.id,
            'player_id': self.player_id,
            'username': self.username,
        }


class GameSession(db.Model):
    __tablename__ = 'game_session'
    __table_args__ = (
        # One ACTIVE session per player, enforced by the store
        db.Index(
            'uq_game_session_active_player', 'player_id', unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
        db.Index('ix_game_session_player_status', 'player_id', 'status'),
    )

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    player_id = db.Column(db.String(64), nullable=False, index=True)
    username = db.Column(db.String(64), nullable=True)
    status = db.Column(db.String(16), nullable=False, default=STATUS_ACTIVE)
    health = db.Column(db.Integer, nullable=False, default=rules.INITIAL_HEALTH)
    score = db.Column(db.Integer, nullable=False, default=0)
    portals_cleared = db.Column(db.Integer, nullable=False, default=0)
    bonuses_cleared = db.Column(db.Integer, nullable=False, default=0)
    obstacles_hit = db.Column(db.Integer, nullable=False, default=0)
    difficulty = db.Column(db.String(16), nullable=False, default=rules.EASY)
    speed = db.Column(db.Float, nullable=False, default=float(rules.BASE_SPEED))
    time_remaining = db.Column(db.Float, nullable=False, default=float(rules.SESSION_TIME_LIMIT_SEC))
    time_survived = db.Column(db.Float, nullable=False, default=0.0)
    started_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    last_updated_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    completed_at = db.Column(db.DateTime, nullable=True)
    events = db.relationship(
        'SessionEvent', backref='session', lazy='dynamic',
        order_by='SessionEvent.id',
    )

    @property
    def is_active(self):
        return self.status == STATUS_ACTIVE

    def log_event(self, action, timestamp=None, payload=None):
        event = SessionEvent(
            session_id=self.id,
            action=action,
            timestamp=timestamp or utcnow(),
            payload=json.dumps(payload or {}),
        )
        db.session.add(event)
        return event

    def key_fields(self):
        return {
            'health': self.health,
            'score': self.score,
            'portals_cleared': self.portals_cleared,
            'time_remaining': self.time_remaining,
        }

    def to_summary(self):
        return {
            'session_id': self.id,
            'player_id': self.player_id,
            'status': self.status,
            'score': self.score,
            'health': self.health,
            'portals_cleared': self.portals_cleared,
            'time_survived': self.time_survived,
            'started_at': isoformat(self.started_at),
            'completed_at': isoformat(self.completed_at),
        }

    def to_dict(self, include_events=False):
        payload = {
            'session_id': self.id,
            'player_id': self.player_id,
            'status': self.status,
            'health': self.health,
            'score': self.score,
            'portals_cleared': self.portals_cleared,
            'bonuses_cleared': self.bonuses_cleared,
            'obstacles_hit': self.obstacles_hit,
            'difficulty': self.difficulty,
            'speed': self.speed,
            'time_remaining': self.time_remaining,
            'time_survived': self.time_survived,
            'started_at': isoformat(self.started_at),
            'last_updated_at': isoformat(self.last_updated_at),
            'completed_at': isoformat(self.completed_at),
        }
        if include_events:
            payload['events'] = [e.to_dict() for e in self.events]
        return payload


class SessionEvent(db.Model):
    __tablename__ = 'session_event'
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.String(36), db.ForeignKey('game_session.id'), nullable=False, index=True)
    action = db.Column(db.String(32), nullable=False)
    timestamp = db.Column(db.DateTime, nullable=False, default=utcnow)
    payload = db.Column(db.Text, nullable=True)  # JSON-encoded snapshot

    def to_dict(self):
        try:
            data = json.loads(self.payload) if self.payload else {}
        except ValueError:
            data = {}
        return {
            'action': self.action,
            'timestamp': isoformat(self.timestamp),
            'payload': data,
        }


class CompletionRecord(db.Model):
    __tablename__ = 'completion_record'
    __table_args__ = (
        db.Index('ix_completion_record_ranking', 'final_score', 'final_portals_cleared', 'final_time_survived'),
    )
    id = db.Column(db.Integer, primary_key=True)
    player_id = db.Column(db.String(64), unique=True, nullable=False, index=True)
    username = db.Column(db.String(64), nullable=True)
    session_id = db.Column(db.String(36), db.ForeignKey('game_session.id'), nullable=True)
    final_score = db.Column(db.Integer, nullable=False, default=0)
    final_portals_cleared = db.Column(db.Integer, nullable=False, default=0)
    final_time_survived = db.Column(db.Float, nullable=False, default=0.0)
    completed_at = db.Column(db.DateTime, nullable=True)
    can_play_again = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self):
        return {
            'player_id': self.player_id,
            'username': self.username,
            'session_id': self.session_id,
            'final_score': self.final_score,
            'final_portals_cleared': self.final_portals_cleared,
            'final_time_survived': self.final_time_survived,
            'completed_at': isoformat(self.completed_at),
            'can_play_again': self.can_play_again,
        }
