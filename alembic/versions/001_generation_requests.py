"""Add generation_requests and request_logs tables

Revision ID: 001_generation_requests
Revises:
Create Date: 2026-10-18

- generation_requests: one row per redecoration request and its lifecycle
- request_logs: append-only per-request event stream
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_generation_requests'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'generation_requests',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('source_image_url', sa.String(), nullable=False),
        sa.Column('style_label', sa.String(), nullable=False),
        sa.Column('custom_prompt', sa.String(), nullable=True),
        sa.Column('use_mask', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('status', sa.String(), nullable=False, server_default='Pending'),
        sa.Column('result_url', sa.String(), nullable=True),
        sa.Column('error_message', sa.String(), nullable=True),
        sa.Column('mask_applied', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('credits_charged', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('credits_refunded', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_generation_requests_user_id', 'generation_requests', ['user_id'])
    op.create_index('ix_generation_requests_status', 'generation_requests', ['status'])
    op.create_index('ix_generation_requests_created_at', 'generation_requests', ['created_at'])

    op.create_table(
        'request_logs',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('request_id', sa.String(), nullable=False),
        sa.Column('severity', sa.String(), nullable=False, server_default='Information'),
        sa.Column('message', sa.String(), nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
    )
    op.create_index('ix_request_logs_request_id', 'request_logs', ['request_id'])
    op.create_index('ix_request_logs_timestamp', 'request_logs', ['timestamp'])


def downgrade() -> None:
    op.drop_index('ix_request_logs_timestamp', table_name='request_logs')
    op.drop_index('ix_request_logs_request_id', table_name='request_logs')
    op.drop_table('request_logs')

    op.drop_index('ix_generation_requests_created_at', table_name='generation_requests')
    op.drop_index('ix_generation_requests_status', table_name='generation_requests')
    op.drop_index('ix_generation_requests_user_id', table_name='generation_requests')
    op.drop_table('generation_requests')
