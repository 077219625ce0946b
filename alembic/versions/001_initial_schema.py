"""Initial schema - sale events, delisting jobs and audit trail

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-17

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        'listings',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('inventory_item_id', sa.String(36), nullable=False),
        sa.Column('marketplace_type', sa.String(50), nullable=False),
        sa.Column('external_listing_id', sa.String(255), nullable=True),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('sale_price', sa.Numeric(10, 2), nullable=True),
        sa.Column('sale_date', sa.DateTime(), nullable=True),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_listings_user_id', 'listings', ['user_id'])
    op.create_index('ix_listings_inventory_item_id', 'listings', ['inventory_item_id'])
    op.create_index('ix_listings_marketplace_type', 'listings', ['marketplace_type'])
    op.create_index('ix_listings_external_listing_id', 'listings', ['external_listing_id'])
    op.create_index('ix_listings_status', 'listings', ['status'])
    op.create_index('ix_listings_marketplace_external', 'listings', ['marketplace_type', 'external_listing_id'])

    op.create_table(
        'marketplace_connections',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('marketplace_type', sa.String(50), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('access_token', sa.Text(), nullable=True),
        sa.Column('refresh_token', sa.Text(), nullable=True),
        sa.Column('token_expires_at', sa.DateTime(), nullable=True),
        sa.Column('api_key', sa.Text(), nullable=True),
        sa.Column('api_secret', sa.Text(), nullable=True),
        sa.Column('shop_id', sa.String(255), nullable=True),
        sa.Column('api_endpoint_base', sa.String(255), nullable=True),
        sa.Column('connection_metadata', sa.JSON(), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_marketplace_connections_user_id', 'marketplace_connections', ['user_id'])
    op.create_index('ix_marketplace_connections_marketplace_type', 'marketplace_connections', ['marketplace_type'])
    op.create_index('ix_marketplace_connections_status', 'marketplace_connections', ['status'])

    op.create_table(
        'sale_events',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('inventory_item_id', sa.String(36), nullable=True),
        sa.Column('listing_id', sa.String(36), nullable=True),
        sa.Column('marketplace_type', sa.String(50), nullable=False),
        sa.Column('source', sa.String(20), nullable=False),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('external_event_id', sa.String(255), nullable=True),
        sa.Column('external_listing_id', sa.String(255), nullable=True),
        sa.Column('external_transaction_id', sa.String(255), nullable=True),
        sa.Column('sale_price', sa.Numeric(10, 2), nullable=True),
        sa.Column('sale_currency', sa.String(3), nullable=False),
        sa.Column('sale_date', sa.DateTime(), nullable=True),
        sa.Column('buyer_id', sa.String(255), nullable=True),
        sa.Column('payment_status', sa.String(50), nullable=True),
        sa.Column('raw_webhook_data', sa.JSON(), nullable=True),
        sa.Column('raw_polling_data', sa.JSON(), nullable=True),
        sa.Column('event_hash', sa.String(64), nullable=False),
        sa.Column('verified', sa.Boolean(), nullable=False),
        sa.Column('verification_attempts', sa.Integer(), nullable=False),
        sa.Column('verification_error', sa.Text(), nullable=True),
        sa.Column('processed', sa.Boolean(), nullable=False),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.Column('processing_error', sa.Text(), nullable=True),
        sa.Column('delisting_job_id', sa.String(36), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_sale_events_event_hash', 'sale_events', ['event_hash'], unique=True)
    op.create_index('ix_sale_events_user_id', 'sale_events', ['user_id'])
    op.create_index('ix_sale_events_inventory_item_id', 'sale_events', ['inventory_item_id'])
    op.create_index('ix_sale_events_listing_id', 'sale_events', ['listing_id'])
    op.create_index('ix_sale_events_marketplace_type', 'sale_events', ['marketplace_type'])
    op.create_index('ix_sale_events_external_event_id', 'sale_events', ['external_event_id'])
    op.create_index('ix_sale_events_external_listing_id', 'sale_events', ['external_listing_id'])
    op.create_index('ix_sale_events_processed', 'sale_events', ['processed'])
    op.create_index('ix_sale_events_delisting_job_id', 'sale_events', ['delisting_job_id'])
    op.create_index('ix_sale_events_created_at', 'sale_events', ['created_at'])

    op.create_table(
        'delisting_jobs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('inventory_item_id', sa.String(36), nullable=False),
        sa.Column('trigger_type', sa.String(30), nullable=False),
        sa.Column('trigger_data', sa.JSON(), nullable=True),
        sa.Column('status', sa.String(30), nullable=False),
        sa.Column('sold_on_marketplace', sa.String(50), nullable=True),
        sa.Column('sale_price', sa.Numeric(10, 2), nullable=True),
        sa.Column('sale_date', sa.DateTime(), nullable=True),
        sa.Column('sale_external_id', sa.String(255), nullable=True),
        sa.Column('marketplaces_targeted', sa.JSON(), nullable=False),
        sa.Column('marketplaces_completed', sa.JSON(), nullable=False),
        sa.Column('marketplaces_failed', sa.JSON(), nullable=False),
        sa.Column('success_log', sa.JSON(), nullable=False),
        sa.Column('error_log', sa.JSON(), nullable=False),
        sa.Column('total_delisted', sa.Integer(), nullable=False),
        sa.Column('total_failed', sa.Integer(), nullable=False),
        sa.Column('requires_user_confirmation', sa.Boolean(), nullable=False),
        sa.Column('user_confirmed_at', sa.DateTime(), nullable=True),
        sa.Column('user_cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('scheduled_for', sa.DateTime(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('retry_count', sa.Integer(), nullable=False),
        sa.Column('max_retries', sa.Integer(), nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_delisting_jobs_user_id', 'delisting_jobs', ['user_id'])
    op.create_index('ix_delisting_jobs_inventory_item_id', 'delisting_jobs', ['inventory_item_id'])
    op.create_index('ix_delisting_jobs_status', 'delisting_jobs', ['status'])
    op.create_index('ix_delisting_jobs_scheduled_for', 'delisting_jobs', ['scheduled_for'])
    op.create_index('ix_delisting_jobs_created_at', 'delisting_jobs', ['created_at'])

    op.create_table(
        'delisting_audit_log',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('delisting_job_id', sa.String(36), nullable=True),
        sa.Column('listing_id', sa.String(36), nullable=True),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('marketplace_type', sa.String(50), nullable=True),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('error_code', sa.String(50), nullable=True),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
        sa.Column('context_data', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_delisting_audit_log_user_id', 'delisting_audit_log', ['user_id'])
    op.create_index('ix_delisting_audit_log_delisting_job_id', 'delisting_audit_log', ['delisting_job_id'])
    op.create_index('ix_delisting_audit_log_listing_id', 'delisting_audit_log', ['listing_id'])
    op.create_index('ix_delisting_audit_log_action', 'delisting_audit_log', ['action'])
    op.create_index('ix_delisting_audit_log_marketplace_type', 'delisting_audit_log', ['marketplace_type'])
    op.create_index('ix_delisting_audit_log_created_at', 'delisting_audit_log', ['created_at'])

    op.create_table(
        'user_delisting_preferences',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('auto_delist_enabled', sa.Boolean(), nullable=False),
        sa.Column('default_preference', sa.String(30), nullable=False),
        sa.Column('delay_minutes', sa.Integer(), nullable=False),
        sa.Column('require_confirmation', sa.Boolean(), nullable=False),
        sa.Column('exclude_marketplaces', sa.JSON(), nullable=False),
        sa.Column('min_sale_amount', sa.Numeric(10, 2), nullable=True),
        sa.Column('max_sale_amount', sa.Numeric(10, 2), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_user_delisting_preferences_user_id', 'user_delisting_preferences', ['user_id'], unique=True)


def downgrade() -> None:
    op.drop_table('user_delisting_preferences')
    op.drop_table('delisting_audit_log')
    op.drop_table('delisting_jobs')
    op.drop_table('sale_events')
    op.drop_table('marketplace_connections')
    op.drop_table('listings')
