"""initial intake and packet schema

Revision ID: 001
Revises:
Create Date: 2026-10-18 00:00:00.000000

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


def upgrade() -> None:
    op.create_table(
        'app_user',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('email', sa.Text(), nullable=False, unique=True),
        sa.Column('display_name', sa.Text(), nullable=True),
        sa.Column('role', sa.Text(), nullable=False, server_default='client'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
    )

    op.create_table(
        'client',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), nullable=True, unique=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('full_name', sa.Text(), nullable=False, server_default=''),
        sa.Column('email', sa.Text(), nullable=False, unique=True),
        sa.Column('phone', sa.Text(), nullable=True),
        sa.Column('client_type', sa.Text(), nullable=False, server_default='FULL_PROGRAM'),
        sa.Column('goal', sa.Text(), nullable=True),
        sa.Column('intake_responses', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('intake_completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['app_user.id'], ondelete='SET NULL'),
    )

    op.create_table(
        'intake_progress',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('client_id', sa.Uuid(), nullable=False, unique=True),
        sa.Column('selected_path', sa.Text(), nullable=True),
        sa.Column('current_step', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_steps', sa.Integer(), nullable=True),
        sa.Column('responses', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('is_complete', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('last_saved_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['client_id'], ['client.id'], ondelete='CASCADE'),
        sa.CheckConstraint('current_step >= 0', name='ck_intake_progress_step_nonnegative'),
        sa.CheckConstraint(
            'total_steps IS NULL OR current_step <= total_steps',
            name='ck_intake_progress_step_within_total',
        ),
    )

    op.create_table(
        'intake_analytics',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('client_type', sa.Text(), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('abandoned_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completion_time', sa.Integer(), nullable=True),
        sa.Column('drop_off_step', sa.Integer(), nullable=True),
        sa.CheckConstraint(
            'completed_at IS NULL OR abandoned_at IS NULL',
            name='ck_intake_analytics_single_outcome',
        ),
    )
    op.create_index('ix_intake_analytics_type_started', 'intake_analytics', ['client_type', 'started_at'])

    op.create_table(
        'packet_template',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('packet_type', sa.Text(), nullable=False),
        sa.Column('client_type', sa.Text(), nullable=True),
        sa.Column('sections', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('is_default', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_packet_template_type_client', 'packet_template', ['packet_type', 'client_type'])

    op.create_table(
        'packet',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('client_id', sa.Uuid(), nullable=False),
        sa.Column('type', sa.Text(), nullable=False),
        sa.Column('status', sa.Text(), nullable=False, server_default='PENDING'),
        sa.Column('content', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('doc_url', sa.Text(), nullable=True),
        sa.Column('pdf_url', sa.Text(), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('previous_version_id', sa.Uuid(), nullable=True),
        sa.Column('template_id', sa.Uuid(), nullable=True),
        sa.Column('generated_by', sa.Text(), nullable=False, server_default='SYSTEM'),
        sa.Column('generation_method', sa.Text(), nullable=False, server_default='TEMPLATE'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revision', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['client_id'], ['client.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['template_id'], ['packet_template.id'], ondelete='SET NULL'),
        sa.CheckConstraint('retry_count >= 0', name='ck_packet_retry_count_nonnegative'),
        sa.CheckConstraint('version >= 1', name='ck_packet_version_positive'),
    )
    op.create_index('ix_packet_client_id', 'packet', ['client_id'])
    op.create_index('ix_packet_client_type', 'packet', ['client_id', 'type'])
    op.create_index('ix_packet_status_updated', 'packet', ['status', 'updated_at'])


def downgrade() -> None:
    op.drop_index('ix_packet_status_updated', table_name='packet')
    op.drop_index('ix_packet_client_type', table_name='packet')
    op.drop_index('ix_packet_client_id', table_name='packet')
    op.drop_table('packet')
    op.drop_index('ix_packet_template_type_client', table_name='packet_template')
    op.drop_table('packet_template')
    op.drop_index('ix_intake_analytics_type_started', table_name='intake_analytics')
    op.drop_table('intake_analytics')
    op.drop_table('intake_progress')
    op.drop_table('client')
    op.drop_table('app_user')
