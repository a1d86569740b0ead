"""create notification tables

Revision ID: e1f2a3b4c5d6
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = 'e1f2a3b4c5d6'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


NOTIFICATION_TYPES = (
    'course_enrollment', 'course_completion', 'course_update', 'new_course_available',
    'assignment_created', 'assignment_due_soon', 'assignment_graded', 'assignment_feedback',
    'discussion_reply', 'discussion_mention', 'discussion_like', 'new_discussion',
    'system_maintenance', 'account_update', 'password_changed', 'email_verified',
    'peer_review_request', 'peer_review_completed', 'achievement_unlocked', 'certificate_issued',
    'new_student_enrolled', 'assignment_submitted', 'question_asked',
    'announcement', 'reminder', 'welcome', 'custom', 'info',
)

user_role = postgresql.ENUM('student', 'instructor', 'admin', name='user_role', create_type=False)
notification_type = postgresql.ENUM(*NOTIFICATION_TYPES, name='notification_type', create_type=False)
notification_priority = postgresql.ENUM('low', 'normal', 'high', 'urgent', name='notification_priority', create_type=False)
notification_status = postgresql.ENUM(
    'pending', 'sent', 'delivered', 'read', 'failed', 'cancelled',
    name='notification_status', create_type=False
)
channel_type = postgresql.ENUM('in_app', 'email', 'push', 'sms', 'webhook', name='channel_type', create_type=False)
channel_status = postgresql.ENUM('pending', 'sent', 'delivered', 'failed', name='channel_status', create_type=False)

ENUMS = (user_role, notification_type, notification_priority, notification_status, channel_type, channel_status)


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in ENUMS:
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('full_name', sa.String(100), nullable=False),
        sa.Column('role', user_role, nullable=False, server_default='student'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('last_login', sa.DateTime(timezone=True), nullable=True),
        sa.Column('fcm_token', sa.String(500), nullable=True),
        sa.Column('phone_number', sa.String(32), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_role', 'users', ['role'])
    op.create_index('ix_users_is_deleted', 'users', ['is_deleted'])
    op.create_index('ix_users_created_at', 'users', ['created_at'])

    op.create_table(
        'notifications',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('recipient_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('sender_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('type', notification_type, nullable=False),
        sa.Column('priority', notification_priority, nullable=False, server_default='normal'),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('short_message', sa.String(100), nullable=False),
        sa.Column('course_id', sa.Uuid(), nullable=True),
        sa.Column('assignment_id', sa.Uuid(), nullable=True),
        sa.Column('discussion_id', sa.Uuid(), nullable=True),
        sa.Column('certificate_id', sa.Uuid(), nullable=True),
        sa.Column('learning_path_id', sa.Uuid(), nullable=True),
        sa.Column('related_url', sa.String(500), nullable=True),
        sa.Column('extra_data', sa.JSON(), nullable=True),
        sa.Column('status', notification_status, nullable=False, server_default='pending'),
        sa.Column('scheduled_for', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('read_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('clicked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('dismissed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('action_taken', sa.String(100), nullable=True),
        sa.Column('action_taken_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('action_metadata', sa.JSON(), nullable=True),
        sa.Column('group_id', sa.String(100), nullable=True),
        sa.Column('batch_id', sa.String(100), nullable=True),
        *_timestamps(),
    )
    for column in ('recipient_id', 'sender_id', 'type', 'priority', 'course_id', 'status',
                   'scheduled_for', 'expires_at', 'group_id', 'batch_id', 'created_at'):
        op.create_index(f'ix_notifications_{column}', 'notifications', [column])
    op.create_index('ix_notifications_recipient_status_created', 'notifications', ['recipient_id', 'status', 'created_at'])
    op.create_index('ix_notifications_recipient_read', 'notifications', ['recipient_id', 'read_at'])
    op.create_index('ix_notifications_status_scheduled', 'notifications', ['status', 'scheduled_for'])

    op.create_table(
        'notification_channels',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('notification_id', sa.Uuid(), sa.ForeignKey('notifications.id', ondelete='CASCADE'), nullable=False),
        sa.Column('channel', channel_type, nullable=False),
        sa.Column('status', channel_status, nullable=False, server_default='pending'),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('failure_reason', sa.String(500), nullable=True),
        sa.Column('external_id', sa.String(255), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('notification_id', 'channel', name='uq_notification_channel'),
    )
    op.create_index('ix_notification_channels_notification_id', 'notification_channels', ['notification_id'])
    op.create_index('ix_notification_channels_created_at', 'notification_channels', ['created_at'])

    op.create_table(
        'notification_preferences',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('email_enabled', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('push_enabled', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('sms_enabled', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('muted_types', sa.JSON(), nullable=True),
        sa.Column('min_priority', notification_priority, nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_notification_preferences_user_id', 'notification_preferences', ['user_id'], unique=True)
    op.create_index('ix_notification_preferences_created_at', 'notification_preferences', ['created_at'])


def downgrade() -> None:
    op.drop_table('notification_preferences')
    op.drop_table('notification_channels')
    op.drop_table('notifications')
    op.drop_table('users')

    bind = op.get_bind()
    for enum_type in reversed(ENUMS):
        enum_type.drop(bind, checkfirst=True)
