"""create user, game_session, session_event and completion_record tables

Revision ID: 5c2e9a71b0d4
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5c2e9a71b0d4'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    existing_tables = set(insp.get_table_names())

    if 'user' not in existing_tables:
        op.create_table(
            'user',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('username', sa.String(length=64), nullable=False),
            sa.Column('password_hash', sa.String(length=256), nullable=False),
        )
        op.create_index('ix_user_username', 'user', ['username'], unique=True)

    if 'game_session' not in existing_tables:
        op.create_table(
            'game_session',
            sa.Column('id', sa.String(length=36), primary_key=True),
            sa.Column('player_id', sa.String(length=64), nullable=False),
            sa.Column('username', sa.String(length=64), nullable=True),
            sa.Column('status', sa.String(length=16), nullable=False),
            sa.Column('health', sa.Integer(), nullable=False),
            sa.Column('score', sa.Integer(), nullable=False),
            sa.Column('portals_cleared', sa.Integer(), nullable=False),
            sa.Column('bonuses_cleared', sa.Integer(), nullable=False),
            sa.Column('obstacles_hit', sa.Integer(), nullable=False),
            sa.Column('difficulty', sa.String(length=16), nullable=False),
            sa.Column('speed', sa.Float(), nullable=False),
            sa.Column('time_remaining', sa.Float(), nullable=False),
            sa.Column('time_survived', sa.Float(), nullable=False),
            sa.Column('started_at', sa.DateTime(), nullable=False),
            sa.Column('last_updated_at', sa.DateTime(), nullable=False),
            sa.Column('completed_at', sa.DateTime(), nullable=True),
        )
        op.create_index('ix_game_session_player_id', 'game_session', ['player_id'])
        op.create_index('ix_game_session_player_status', 'game_session', ['player_id', 'status'])
        # At most one active session per player
        op.create_index(
            'uq_game_session_active_player', 'game_session', ['player_id'], unique=True,
            sqlite_where=sa.text("status = 'active'"),
            postgresql_where=sa.text("status = 'active'"),
        )

    if 'session_event' not in existing_tables:
        op.create_table(
            'session_event',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('session_id', sa.String(length=36), sa.ForeignKey('game_session.id'), nullable=False),
            sa.Column('action', sa.String(length=32), nullable=False),
            sa.Column('timestamp', sa.DateTime(), nullable=False),
            sa.Column('payload', sa.Text(), nullable=True),
        )
        op.create_index('ix_session_event_session_id', 'session_event', ['session_id'])

    if 'completion_record' not in existing_tables:
        op.create_table(
            'completion_record',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('player_id', sa.String(length=64), nullable=False),
            sa.Column('username', sa.String(length=64), nullable=True),
            sa.Column('session_id', sa.String(length=36), sa.ForeignKey('game_session.id'), nullable=True),
            sa.Column('final_score', sa.Integer(), nullable=False),
            sa.Column('final_portals_cleared', sa.Integer(), nullable=False),
            sa.Column('final_time_survived', sa.Float(), nullable=False),
            sa.Column('completed_at', sa.DateTime(), nullable=True),
            sa.Column('can_play_again', sa.Boolean(), nullable=False),
        )
        op.create_index('ix_completion_record_player_id', 'completion_record', ['player_id'], unique=True)
        op.create_index(
            'ix_completion_record_ranking', 'completion_record',
            ['final_score', 'final_portals_cleared', 'final_time_survived'],
        )


def downgrade():
    op.drop_table('completion_record')
    op.drop_table('session_event')
    op.drop_index('uq_game_session_active_player', table_name='game_session')
    op.drop_table('game_session')
    op.drop_table('user')
