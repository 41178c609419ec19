"""Initial schema: accounts, users, calls, feedback, behaviors

Revision ID: 0001_initial
Revises: None
Create Date: 2026-10-19 00:00:00.000000
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        'accounts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=120), nullable=False, unique=True),
        *_timestamps(),
    )
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('account_id', sa.Integer(), sa.ForeignKey('accounts.id'), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False, unique=True),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=50)),
        sa.Column('api_token', sa.String(length=64)),
        *_timestamps(),
    )
    op.create_index('ix_users_account_id', 'users', ['account_id'])
    op.create_index('ix_users_api_token', 'users', ['api_token'], unique=True)

    op.create_table(
        'calls',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('agent_name', sa.String(length=255)),
        sa.Column('audio_url', sa.String(length=1024), nullable=False),
        sa.Column('duration', sa.Integer()),
        sa.Column('uploaded_by', sa.Integer()),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('progress', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('transcription', sa.Text()),
        sa.Column('summary', sa.Text()),
        sa.Column('call_topic', sa.String(length=255)),
        sa.Column('sentiment', sa.String(length=20)),
        sa.Column('entities', sa.JSON()),
        sa.Column('topics', sa.JSON()),
        sa.Column('content_embedding', sa.JSON()),
        *_timestamps(),
    )
    op.create_index('ix_calls_account_id', 'calls', ['account_id'])

    op.create_table(
        'feedback',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('call_id', sa.Integer(), sa.ForeignKey('calls.id'), nullable=False),
        sa.Column('score', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('positive', sa.JSON()),
        sa.Column('negative', sa.JSON()),
        sa.Column('opportunities', sa.JSON()),
        sa.Column('sentiment', sa.String(length=20)),
        sa.Column('entities', sa.JSON()),
        sa.Column('topics', sa.JSON()),
        sa.Column('behaviors_analysis', sa.JSON()),
        *_timestamps(),
    )
    op.create_index('ix_feedback_account_id', 'feedback', ['account_id'])
    op.create_index('ix_feedback_call_id', 'feedback', ['call_id'])

    op.create_table(
        'behaviors',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text()),
        sa.Column('prompt', sa.Text(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index('ix_behaviors_account_id', 'behaviors', ['account_id'])


def downgrade() -> None:
    op.drop_table('behaviors')
    op.drop_table('feedback')
    op.drop_table('calls')
    op.drop_table('users')
    op.drop_table('accounts')
