"""Initial analytics schema - raw events, daily aggregates, reports

Revision ID: 001_initial_analytics_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000

Creates the event partitions table, the per-day aggregate records and the
custom/scheduled report definitions.
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_initial_analytics_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all tables for the analytics engine"""

    # 1. Raw events, partitioned by (website_id, partition_day)
    op.create_table(
        'events',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('website_id', sa.String(), nullable=False),
        sa.Column('partition_day', sa.Date(), nullable=False),
        sa.Column('session_id', sa.String(), nullable=False),
        sa.Column('visitor_id', sa.String(), nullable=False),
        sa.Column('event_type', sa.String(), nullable=False),
        sa.Column('event_category', sa.String(), nullable=False),
        sa.Column('event_action', sa.String(), nullable=False),
        sa.Column('event_label', sa.String(), nullable=True),
        sa.Column('event_value', sa.Float(), nullable=True),
        sa.Column('path', sa.String(), nullable=True),
        sa.Column('referrer', sa.String(), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('ip', sa.String(), nullable=True),
        sa.Column('device', sa.JSON(), nullable=True),
        sa.Column('location', sa.JSON(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_events_id'), 'events', ['id'], unique=False)
    op.create_index(op.f('ix_events_session_id'), 'events', ['session_id'], unique=False)
    op.create_index(op.f('ix_events_visitor_id'), 'events', ['visitor_id'], unique=False)
    op.create_index('ix_events_partition', 'events', ['website_id', 'partition_day'], unique=False)
    op.create_index('ix_events_website_timestamp', 'events', ['website_id', 'timestamp'], unique=False)

    # 2. One aggregated record per (website_id, date)
    op.create_table(
        'aggregated_daily',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('website_id', sa.String(), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('metrics', sa.JSON(), nullable=False),
        sa.Column('computed_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('website_id', 'date', name='uq_aggregated_daily_website_date')
    )
    op.create_index(op.f('ix_aggregated_daily_id'), 'aggregated_daily', ['id'], unique=False)
    op.create_index(op.f('ix_aggregated_daily_website_id'), 'aggregated_daily', ['website_id'], unique=False)

    # 3. Custom report definitions
    op.create_table(
        'custom_reports',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('website_id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('date_range', sa.JSON(), nullable=False),
        sa.Column('charts', sa.JSON(), nullable=False),
        sa.Column('filters', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.Column('last_generated', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id', 'website_id')
    )

    # 4. Scheduled report definitions
    op.create_table(
        'scheduled_reports',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('website_id', sa.String(), nullable=False),
        sa.Column('report_id', sa.String(), nullable=False),
        sa.Column('schedule', sa.JSON(), nullable=False),
        sa.Column('recipients', sa.JSON(), nullable=False),
        sa.Column('format', sa.String(), nullable=False),
        sa.Column('enabled', sa.Boolean(), nullable=True),
        sa.Column('last_sent', sa.DateTime(), nullable=True),
        sa.Column('next_send', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id', 'website_id')
    )
    op.create_index(op.f('ix_scheduled_reports_next_send'), 'scheduled_reports', ['next_send'], unique=False)


def downgrade() -> None:
    """Drop all tables"""
    op.drop_index(op.f('ix_scheduled_reports_next_send'), table_name='scheduled_reports')
    op.drop_table('scheduled_reports')

    op.drop_table('custom_reports')

    op.drop_index(op.f('ix_aggregated_daily_website_id'), table_name='aggregated_daily')
    op.drop_index(op.f('ix_aggregated_daily_id'), table_name='aggregated_daily')
    op.drop_table('aggregated_daily')

    op.drop_index('ix_events_website_timestamp', table_name='events')
    op.drop_index('ix_events_partition', table_name='events')
    op.drop_index(op.f('ix_events_visitor_id'), table_name='events')
    op.drop_index(op.f('ix_events_session_id'), table_name='events')
    op.drop_index(op.f('ix_events_id'), table_name='events')
    op.drop_table('events')
