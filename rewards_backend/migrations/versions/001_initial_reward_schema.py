"""Initial reward settlement schema

Revision ID: 001_initial_reward_schema
Revises:
Create Date: 2026-02-05 11:18:06.000000

"""
from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa

from rewards_backend.migrations.util import get_uuid_type

# revision identifiers, used by Alembic.
revision = '001_initial_reward_schema'
down_revision = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    uuid_type = get_uuid_type()

    op.create_table(
        'users',
        sa.Column('user_id', uuid_type, nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('phone_number', sa.String(32), nullable=True),
        sa.Column('points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('points >= 0', name='ck_users_points_non_negative'),
        sa.PrimaryKeyConstraint('user_id'),
        sa.UniqueConstraint('email'),
    )

    op.create_table(
        'reward_questions',
        sa.Column('question_id', uuid_type, nullable=False),
        sa.Column('text', sa.Text(), nullable=False),
        sa.Column('options', sa.JSON(), nullable=False),
        sa.Column('correct_answer', sa.Text(), nullable=False),
        sa.Column('reward_amount', sa.Integer(), nullable=False),
        sa.Column('is_instant_reward', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('max_winners', sa.Integer(), nullable=False, server_default='2'),
        sa.Column('winners_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_completed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('expiry_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('payment_provider', sa.String(20), nullable=True),
        sa.Column('phone_number', sa.String(32), nullable=True),
        sa.Column('created_by_user_id', uuid_type, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            'winners_count >= 0 AND winners_count <= max_winners',
            name='ck_reward_questions_winners_count_range',
        ),
        sa.CheckConstraint('max_winners >= 1', name='ck_reward_questions_max_winners_positive'),
        sa.PrimaryKeyConstraint('question_id'),
    )
    op.create_index('ix_reward_questions_expiry_time', 'reward_questions', ['expiry_time'])
    op.create_index('ix_reward_questions_created_by_user_id', 'reward_questions', ['created_by_user_id'])
    op.create_index(
        'ix_reward_questions_instant_open',
        'reward_questions',
        ['is_instant_reward', 'is_active', 'is_completed'],
    )

    op.create_table(
        'reward_question_attempts',
        sa.Column('attempt_id', uuid_type, nullable=False),
        sa.Column('user_id', uuid_type, nullable=False),
        sa.Column('question_id', uuid_type, nullable=False),
        sa.Column('selected_answer', sa.Text(), nullable=False),
        sa.Column('is_correct', sa.Boolean(), nullable=False),
        sa.Column('points_awarded', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('attempted_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.user_id']),
        sa.ForeignKeyConstraint(['question_id'], ['reward_questions.question_id']),
        sa.PrimaryKeyConstraint('attempt_id'),
        sa.UniqueConstraint('user_id', 'question_id', name='uq_reward_question_attempts_user_question'),
    )
    op.create_index('ix_reward_question_attempts_user_id', 'reward_question_attempts', ['user_id'])
    op.create_index('ix_reward_question_attempts_question_id', 'reward_question_attempts', ['question_id'])

    op.create_table(
        'instant_reward_winners',
        sa.Column('winner_id', uuid_type, nullable=False),
        sa.Column('question_id', uuid_type, nullable=False),
        sa.Column('user_id', uuid_type, nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('amount_awarded', sa.Integer(), nullable=False),
        sa.Column('payment_status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('payment_provider', sa.String(20), nullable=True),
        sa.Column('phone_number', sa.String(32), nullable=True),
        sa.Column('payment_reference', sa.String(100), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('payout_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['question_id'], ['reward_questions.question_id']),
        sa.ForeignKeyConstraint(['user_id'], ['users.user_id']),
        sa.PrimaryKeyConstraint('winner_id'),
        sa.UniqueConstraint('question_id', 'user_id', name='uq_instant_reward_winners_question_user'),
        sa.UniqueConstraint('question_id', 'position', name='uq_instant_reward_winners_question_position'),
    )
    op.create_index('ix_instant_reward_winners_question_id', 'instant_reward_winners', ['question_id'])
    op.create_index('ix_instant_reward_winners_user_id', 'instant_reward_winners', ['user_id'])
    op.create_index(
        'ix_instant_reward_winners_status_created',
        'instant_reward_winners',
        ['payment_status', 'created_at'],
    )

    op.create_table(
        'points_transactions',
        sa.Column('transaction_id', uuid_type, nullable=False),
        sa.Column('user_id', uuid_type, nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(50), nullable=False),
        sa.Column('reference_id', uuid_type, nullable=True),
        sa.Column('balance_after', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.user_id']),
        sa.PrimaryKeyConstraint('transaction_id'),
    )
    op.create_index('ix_points_transactions_user_id', 'points_transactions', ['user_id'])
    op.create_index('ix_points_transactions_type', 'points_transactions', ['type'])
    op.create_index('ix_points_transactions_reference_id', 'points_transactions', ['reference_id'])
    op.create_index('ix_points_transactions_created_at', 'points_transactions', ['created_at'])

    op.create_table(
        'reward_events',
        sa.Column('seq', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('event_id', uuid_type, nullable=False),
        sa.Column('user_id', uuid_type, nullable=False),
        sa.Column('event_type', sa.String(50), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('seq'),
        sa.UniqueConstraint('event_id'),
    )
    op.create_index('ix_reward_events_user_seq', 'reward_events', ['user_id', 'seq'])
    op.create_index('ix_reward_events_created_at', 'reward_events', ['created_at'])


def downgrade() -> None:
    op.drop_index('ix_reward_events_created_at', table_name='reward_events')
    op.drop_index('ix_reward_events_user_seq', table_name='reward_events')
    op.drop_table('reward_events')

    op.drop_index('ix_points_transactions_created_at', table_name='points_transactions')
    op.drop_index('ix_points_transactions_reference_id', table_name='points_transactions')
    op.drop_index('ix_points_transactions_type', table_name='points_transactions')
    op.drop_index('ix_points_transactions_user_id', table_name='points_transactions')
    op.drop_table('points_transactions')

    op.drop_index('ix_instant_reward_winners_status_created', table_name='instant_reward_winners')
    op.drop_index('ix_instant_reward_winners_user_id', table_name='instant_reward_winners')
    op.drop_index('ix_instant_reward_winners_question_id', table_name='instant_reward_winners')
    op.drop_table('instant_reward_winners')

    op.drop_index('ix_reward_question_attempts_question_id', table_name='reward_question_attempts')
    op.drop_index('ix_reward_question_attempts_user_id', table_name='reward_question_attempts')
    op.drop_table('reward_question_attempts')

    op.drop_index('ix_reward_questions_instant_open', table_name='reward_questions')
    op.drop_index('ix_reward_questions_created_by_user_id', table_name='reward_questions')
    op.drop_index('ix_reward_questions_expiry_time', table_name='reward_questions')
    op.drop_table('reward_questions')

    op.drop_table('users')
