"""add competition message board

Revision ID: 002
Revises: 001
Create Date: 2025-02-03 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '002'
down_revision: Union[str, None] = '001'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def upgrade() -> None:
    op.create_table(
        'competition_message',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('competition_id', sa.Uuid(), sa.ForeignKey('competition.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('app_user.id', ondelete='CASCADE'), nullable=False),
        sa.Column('parent_message_id', sa.Uuid(), sa.ForeignKey('competition_message.id', ondelete='CASCADE'), nullable=True),
        sa.Column('type', sa.Text(), nullable=False, server_default='message'),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('mentioned_users', JSON_TYPE, nullable=False, server_default='[]'),
        sa.Column('edited_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("type IN ('message', 'announcement', 'system')", name='ck_competition_message_type'),
    )
    op.create_index('ix_competition_message_board', 'competition_message', ['competition_id', 'created_at'])
    op.create_index('ix_competition_message_user_id', 'competition_message', ['user_id'])
    op.create_index('ix_competition_message_parent_message_id', 'competition_message', ['parent_message_id'])

    op.create_table(
        'message_reaction',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('message_id', sa.Uuid(), sa.ForeignKey('competition_message.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('app_user.id', ondelete='CASCADE'), nullable=False),
        sa.Column('emoji', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('message_id', 'user_id', 'emoji', name='uq_message_reaction'),
    )
    op.create_index('ix_message_reaction_message_id', 'message_reaction', ['message_id'])

    op.create_table(
        'message_read_receipt',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('competition_id', sa.Uuid(), sa.ForeignKey('competition.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('app_user.id', ondelete='CASCADE'), nullable=False),
        sa.Column('last_read_message_id', sa.Uuid(), sa.ForeignKey('competition_message.id', ondelete='SET NULL'), nullable=True),
        sa.Column('last_read_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('competition_id', 'user_id', name='uq_message_read_receipt'),
    )


def downgrade() -> None:
    op.drop_table('message_read_receipt')
    op.drop_index('ix_message_reaction_message_id', table_name='message_reaction')
    op.drop_table('message_reaction')
    op.drop_index('ix_competition_message_parent_message_id', table_name='competition_message')
    op.drop_index('ix_competition_message_user_id', table_name='competition_message')
    op.drop_index('ix_competition_message_board', table_name='competition_message')
    op.drop_table('competition_message')
