"""initial competition schema

Revision ID: 001
Revises:
Create Date: 2025-01-06 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def _ts(name: str, nullable: bool = True, **kwargs) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable, **kwargs)


def upgrade() -> None:
    op.create_table(
        'app_user',
        sa.Column('id', sa.Uuid(), primary_key=True),
        _ts('created_at', nullable=False, server_default=sa.func.now()),
        sa.Column('email', sa.Text(), nullable=False, unique=True),
        sa.Column('password_hash', sa.Text(), nullable=True),
        sa.Column('role', sa.Text(), nullable=False, server_default='user'),
        sa.Column('display_name', sa.Text(), nullable=True),
        sa.Column('first_name', sa.Text(), nullable=True),
        sa.Column('last_name', sa.Text(), nullable=True),
        sa.Column('is_blocked', sa.Boolean(), nullable=False, server_default=sa.false()),
    )

    op.create_table(
        'api_token',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('app_user.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('token_hash', sa.String(64), nullable=False, unique=True),
        sa.Column('token_preview', sa.Text(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        _ts('expires_at'),
        _ts('last_used_at'),
        _ts('created_at', nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_api_token_user_id', 'api_token', ['user_id'])

    op.create_table(
        'weight_entry',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('app_user.id', ondelete='CASCADE'), nullable=False),
        sa.Column('weight', sa.Float(), nullable=False),
        sa.Column('body_fat_percentage', sa.Float(), nullable=True),
        sa.Column('muscle_mass', sa.Float(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('date', sa.Date(), nullable=False),
        _ts('created_at', nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint('weight > 0', name='ck_weight_entry_weight_positive'),
    )
    op.create_index('ix_weight_entry_user_date', 'weight_entry', ['user_id', 'date'])

    op.create_table(
        'activity_entry',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('app_user.id', ondelete='CASCADE'), nullable=False),
        sa.Column('activity_type', sa.Text(), nullable=False),
        sa.Column('value', sa.Float(), nullable=False),
        sa.Column('unit', sa.Text(), nullable=True),
        sa.Column('source', sa.Text(), nullable=False, server_default='manual'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('date', sa.Date(), nullable=False),
        _ts('deleted_at'),
        _ts('created_at', nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_activity_entry_user_type_date', 'activity_entry', ['user_id', 'activity_type', 'date'])

    op.create_table(
        'competition',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('competition_type', sa.Text(), nullable=True),
        sa.Column('status', sa.Text(), nullable=False, server_default='pending'),
        sa.Column('activity_type', sa.Text(), nullable=False, server_default='weight'),
        sa.Column('scoring_method', sa.Text(), nullable=False, server_default='total_value'),
        sa.Column('ranking_direction', sa.Text(), nullable=False, server_default='desc'),
        sa.Column('duration_days', sa.Integer(), nullable=False, server_default='30'),
        _ts('start_date'),
        _ts('end_date'),
        sa.Column('max_participants', sa.Integer(), nullable=True),
        sa.Column('invite_code', sa.String(16), nullable=False, unique=True),
        sa.Column('created_by', sa.Uuid(), sa.ForeignKey('app_user.id'), nullable=True),
        _ts('created_at', nullable=False, server_default=sa.func.now()),
        _ts('updated_at'),
        _ts('completed_at'),
        sa.CheckConstraint('duration_days > 0', name='ck_competition_duration_positive'),
        sa.CheckConstraint("ranking_direction IN ('asc', 'desc')", name='ck_competition_ranking_direction'),
    )
    op.create_index('ix_competition_status', 'competition', ['status'])
    op.create_index('ix_competition_end_date', 'competition', ['end_date'])

    op.create_table(
        'competition_participant',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('competition_id', sa.Uuid(), sa.ForeignKey('competition.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('app_user.id', ondelete='CASCADE'), nullable=False),
        _ts('joined_at', nullable=False),
        sa.Column('starting_weight', sa.Float(), nullable=True),
        sa.Column('current_weight', sa.Float(), nullable=True),
        sa.Column('goal_weight', sa.Float(), nullable=True),
        sa.Column('weight_change', sa.Float(), nullable=True),
        sa.Column('weight_change_percentage', sa.Float(), nullable=True),
        sa.Column('starting_value', sa.Float(), nullable=True),
        sa.Column('current_value', sa.Float(), nullable=True),
        sa.Column('rank', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('last_entry_date', sa.Date(), nullable=True),
        sa.Column('total_entries', sa.Integer(), nullable=False, server_default='0'),
        sa.UniqueConstraint('competition_id', 'user_id', name='uq_competition_participant'),
    )
    op.create_index('ix_competition_participant_competition_id', 'competition_participant', ['competition_id'])
    op.create_index('ix_competition_participant_user_id', 'competition_participant', ['user_id'])

    op.create_table(
        'competition_standing',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('competition_id', sa.Uuid(), sa.ForeignKey('competition.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('app_user.id', ondelete='CASCADE'), nullable=False),
        sa.Column('participant_id', sa.Uuid(), sa.ForeignKey('competition_participant.id', ondelete='CASCADE'), nullable=False),
        sa.Column('rank', sa.Integer(), nullable=False),
        sa.Column('weight_change', sa.Float(), nullable=True),
        sa.Column('weight_change_percentage', sa.Float(), nullable=True),
        sa.Column('last_weight_entry', sa.Float(), nullable=True),
        _ts('calculated_at', nullable=False),
        sa.Column('is_current', sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_index('ix_competition_standing_current', 'competition_standing', ['competition_id', 'is_current'])

    op.create_table(
        'calculation_result',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('competition_id', sa.Uuid(), sa.ForeignKey('competition.id', ondelete='CASCADE'), nullable=False),
        sa.Column('subject_type', sa.Text(), nullable=False, server_default='participant'),
        sa.Column('subject_id', sa.Uuid(), nullable=False),
        sa.Column('calculation_method', sa.Text(), nullable=True),
        sa.Column('calculated_score', sa.Float(), nullable=False, server_default='0'),
        sa.Column('rank', sa.Integer(), nullable=True),
        sa.Column('percentile', sa.Float(), nullable=True),
        sa.Column('activity_entries_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('days_active', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('calculation_data', JSON_TYPE, nullable=False),
        sa.Column('calculation_version', sa.Text(), nullable=True),
        _ts('calculated_at', nullable=False),
        _ts('created_at', nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('competition_id', 'subject_type', 'subject_id', name='uq_calculation_result_subject'),
    )

    op.create_table(
        'notification',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('app_user.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('type', sa.Text(), nullable=False),
        sa.Column('action_url', sa.Text(), nullable=True),
        sa.Column('data', JSON_TYPE, nullable=False),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts('read_at'),
        _ts('created_at', nullable=False),
        _ts('push_sent_at'),
        _ts('push_failed_at'),
        sa.Column('push_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('push_error', sa.Text(), nullable=True),
    )
    op.create_index('ix_notification_user_id', 'notification', ['user_id'])
    op.create_index('ix_notification_push_queue', 'notification', ['push_sent_at', 'is_read', 'created_at'])

    op.create_table(
        'notification_preference',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('app_user.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('push_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('daily_reminders', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('progress_updates', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('competition_start', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('competition_ending', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('competition_completed', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('new_messages', sa.Boolean(), nullable=False, server_default=sa.true()),
        _ts('created_at', nullable=False),
        _ts('updated_at'),
    )

    op.create_table(
        'competition_issue',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('competition_id', sa.Uuid(), sa.ForeignKey('competition.id', ondelete='CASCADE'), nullable=False),
        sa.Column('reported_by', sa.Uuid(), sa.ForeignKey('app_user.id'), nullable=True),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', sa.Text(), nullable=False, server_default='open'),
        sa.Column('resolution_notes', sa.Text(), nullable=True),
        _ts('resolved_at'),
        sa.Column('resolved_by', sa.Uuid(), sa.ForeignKey('app_user.id'), nullable=True),
        _ts('created_at', nullable=False),
        _ts('updated_at'),
    )
    op.create_index('ix_competition_issue_competition_id', 'competition_issue', ['competition_id'])
    op.create_index('ix_competition_issue_status', 'competition_issue', ['status'])

    op.create_table(
        'admin_audit_event',
        sa.Column('id', sa.Uuid(), primary_key=True),
        _ts('created_at', nullable=False),
        sa.Column('actor_user_id', sa.Uuid(), sa.ForeignKey('app_user.id'), nullable=False),
        sa.Column('action', sa.Text(), nullable=False),
        sa.Column('target_user_id', sa.Uuid(), sa.ForeignKey('app_user.id'), nullable=True),
        sa.Column('target_competition_id', sa.Uuid(), sa.ForeignKey('competition.id', ondelete='SET NULL'), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('ip_address', sa.Text(), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('payload', JSON_TYPE, nullable=False),
    )
    op.create_index('ix_admin_audit_event_created_at', 'admin_audit_event', ['created_at'])
    op.create_index('ix_admin_audit_event_actor_user_id', 'admin_audit_event', ['actor_user_id'])
    op.create_index('ix_admin_audit_event_action', 'admin_audit_event', ['action'])


def downgrade() -> None:
    op.drop_table('admin_audit_event')
    op.drop_table('competition_issue')
    op.drop_table('notification_preference')
    op.drop_table('notification')
    op.drop_table('calculation_result')
    op.drop_table('competition_standing')
    op.drop_table('competition_participant')
    op.drop_table('competition')
    op.drop_table('activity_entry')
    op.drop_table('weight_entry')
    op.drop_table('api_token')
    op.drop_table('app_user')
