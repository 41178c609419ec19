"""Voice training sessions

Revision ID: 0002_voice_sessions
Revises: 0001_initial
Create Date: 2026-10-19 00:00:00.000000
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0002_voice_sessions'
down_revision = '0001_initial'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'voice_sessions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('primary_provider', sa.String(length=64), nullable=False),
        sa.Column('secondary_provider', sa.String(length=64), nullable=False),
        sa.Column('state', sa.String(length=32), nullable=False),
        sa.Column('fell_back', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('end_reason', sa.String(length=255)),
        sa.Column('transcript', sa.JSON()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index('ix_voice_sessions_account_id', 'voice_sessions', ['account_id'])
    op.create_index('ix_voice_sessions_user_id', 'voice_sessions', ['user_id'])


def downgrade() -> None:
    op.drop_table('voice_sessions')
