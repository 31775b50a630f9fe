"""Initial schema: datasets, connections, records, delivery logs, enrichment, calculated fields, alerts, rate limits

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-01-05 09:00:00.000000

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create datasets table
    op.create_table(
        'datasets',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('retention_days', sa.Integer(), nullable=True),
        sa.Column('realtime', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_datasets_tenant_id'), 'datasets', ['tenant_id'], unique=False)

    # Create dataset_fields table
    op.create_table(
        'dataset_fields',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('dataset_id', sa.String(length=36), nullable=False),
        sa.Column('slug', sa.String(length=100), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('field_type', sa.String(length=32), nullable=False),
        sa.Column('source_path', sa.String(length=500), nullable=True),
        sa.Column('formula', sa.Text(), nullable=True),
        sa.Column('is_visible', sa.Boolean(), nullable=False),
        sa.Column('sort_order', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['dataset_id'], ['datasets.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('dataset_id', 'slug', name='uq_dataset_fields_dataset_slug')
    )
    op.create_index(op.f('ix_dataset_fields_dataset_id'), 'dataset_fields', ['dataset_id'], unique=False)

    # Create connections table
    op.create_table(
        'connections',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('dataset_id', sa.String(length=36), nullable=True),
        sa.Column('signature_scheme', sa.String(length=32), nullable=False),
        sa.Column('signing_secret', sa.String(length=255), nullable=True),
        sa.Column('signature_header', sa.String(length=100), nullable=True),
        sa.Column('rate_limit_per_minute', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivery_count', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['dataset_id'], ['datasets.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_connections_tenant_id'), 'connections', ['tenant_id'], unique=False)
    op.create_index(op.f('ix_connections_dataset_id'), 'connections', ['dataset_id'], unique=False)
    op.create_index(op.f('ix_connections_is_active'), 'connections', ['is_active'], unique=False)

    # Create dataset_records table
    op.create_table(
        'dataset_records',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('dataset_id', sa.String(length=36), nullable=True),
        sa.Column('connection_id', sa.String(length=36), nullable=False),
        sa.Column('raw_payload', sa.JSON(), nullable=False),
        sa.Column('extracted_data', sa.JSON(), nullable=False),
        sa.Column('payload_hash', sa.String(length=64), nullable=False),
        sa.Column('dedupe_key', sa.String(length=64), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['dataset_id'], ['datasets.id']),
        sa.ForeignKeyConstraint(['connection_id'], ['connections.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('connection_id', 'dedupe_key', name='uq_dataset_records_connection_dedupe')
    )
    op.create_index(op.f('ix_dataset_records_tenant_id'), 'dataset_records', ['tenant_id'], unique=False)
    op.create_index(op.f('ix_dataset_records_connection_id'), 'dataset_records', ['connection_id'], unique=False)
    op.create_index(op.f('ix_dataset_records_payload_hash'), 'dataset_records', ['payload_hash'], unique=False)
    op.create_index(op.f('ix_dataset_records_status'), 'dataset_records', ['status'], unique=False)
    op.create_index('ix_dataset_records_dataset_created', 'dataset_records', ['dataset_id', 'created_at'], unique=False)

    # Create delivery_logs table
    op.create_table(
        'delivery_logs',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('connection_id', sa.String(length=36), nullable=False),
        sa.Column('dataset_id', sa.String(length=36), nullable=True),
        sa.Column('record_id', sa.String(length=36), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('extracted_fields', sa.Integer(), nullable=False),
        sa.Column('processing_time_ms', sa.Integer(), nullable=False),
        sa.Column('payload_hash', sa.String(length=64), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('headers', sa.JSON(), nullable=True),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['connection_id'], ['connections.id']),
        sa.ForeignKeyConstraint(['record_id'], ['dataset_records.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_delivery_logs_tenant_id'), 'delivery_logs', ['tenant_id'], unique=False)
    op.create_index(op.f('ix_delivery_logs_connection_id'), 'delivery_logs', ['connection_id'], unique=False)
    op.create_index(op.f('ix_delivery_logs_dataset_id'), 'delivery_logs', ['dataset_id'], unique=False)
    op.create_index(op.f('ix_delivery_logs_status'), 'delivery_logs', ['status'], unique=False)
    op.create_index(op.f('ix_delivery_logs_created_at'), 'delivery_logs', ['created_at'], unique=False)

    # Create calculated_fields table
    op.create_table(
        'calculated_fields',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('dataset_id', sa.String(length=36), nullable=False),
        sa.Column('slug', sa.String(length=100), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('formula_type', sa.String(length=32), nullable=False),
        sa.Column('formula', sa.Text(), nullable=False),
        sa.Column('time_scope', sa.String(length=32), nullable=False),
        sa.Column('comparison_period', sa.String(length=32), nullable=True),
        sa.Column('refresh_mode', sa.String(length=32), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['dataset_id'], ['datasets.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('dataset_id', 'slug', name='uq_calculated_fields_dataset_slug')
    )
    op.create_index(op.f('ix_calculated_fields_tenant_id'), 'calculated_fields', ['tenant_id'], unique=False)
    op.create_index(op.f('ix_calculated_fields_dataset_id'), 'calculated_fields', ['dataset_id'], unique=False)

    # Create dataset_enrichments table
    op.create_table(
        'dataset_enrichments',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('dataset_id', sa.String(length=36), nullable=False),
        sa.Column('match_field', sa.String(length=100), nullable=False),
        sa.Column('target_entity', sa.String(length=100), nullable=False),
        sa.Column('target_field', sa.String(length=100), nullable=False),
        sa.Column('field_mappings', sa.JSON(), nullable=False),
        sa.Column('auto_create', sa.Boolean(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['dataset_id'], ['datasets.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_dataset_enrichments_tenant_id'), 'dataset_enrichments', ['tenant_id'], unique=False)
    op.create_index(op.f('ix_dataset_enrichments_dataset_id'), 'dataset_enrichments', ['dataset_id'], unique=False)

    # Create enriched_entities table
    op.create_table(
        'enriched_entities',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('entity_type', sa.String(length=100), nullable=False),
        sa.Column('key_field', sa.String(length=100), nullable=False),
        sa.Column('key_value', sa.String(length=500), nullable=False),
        sa.Column('attributes', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'entity_type', 'key_field', 'key_value', name='uq_enriched_entities_key')
    )
    op.create_index(op.f('ix_enriched_entities_tenant_id'), 'enriched_entities', ['tenant_id'], unique=False)

    # Create dataset_alerts table
    op.create_table(
        'dataset_alerts',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('dataset_id', sa.String(length=36), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('condition', sa.JSON(), nullable=False),
        sa.Column('cooldown_minutes', sa.Integer(), nullable=False),
        sa.Column('last_triggered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notification_type', sa.String(length=32), nullable=False),
        sa.Column('notification_config', sa.JSON(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['dataset_id'], ['datasets.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_dataset_alerts_tenant_id'), 'dataset_alerts', ['tenant_id'], unique=False)
    op.create_index(op.f('ix_dataset_alerts_dataset_id'), 'dataset_alerts', ['dataset_id'], unique=False)
    op.create_index(op.f('ix_dataset_alerts_is_active'), 'dataset_alerts', ['is_active'], unique=False)

    # Create alert_events table
    op.create_table(
        'alert_events',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('alert_id', sa.String(length=36), nullable=False),
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('triggered_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('value', sa.Float(), nullable=True),
        sa.Column('notification_type', sa.String(length=32), nullable=False),
        sa.Column('delivered', sa.Boolean(), nullable=False),
        sa.Column('error', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['alert_id'], ['dataset_alerts.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_alert_events_alert_id'), 'alert_events', ['alert_id'], unique=False)
    op.create_index(op.f('ix_alert_events_tenant_id'), 'alert_events', ['tenant_id'], unique=False)
    op.create_index(op.f('ix_alert_events_triggered_at'), 'alert_events', ['triggered_at'], unique=False)

    # Create rate_limit_windows table
    op.create_table(
        'rate_limit_windows',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('endpoint', sa.String(length=100), nullable=False),
        sa.Column('identifier', sa.String(length=255), nullable=False),
        sa.Column('window_start', sa.DateTime(timezone=True), nullable=False),
        sa.Column('request_count', sa.Integer(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('endpoint', 'identifier', name='uq_rate_limit_windows_endpoint_identifier')
    )
    op.create_index(op.f('ix_rate_limit_windows_window_start'), 'rate_limit_windows', ['window_start'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_rate_limit_windows_window_start'), table_name='rate_limit_windows')
    op.drop_table('rate_limit_windows')

    op.drop_index(op.f('ix_alert_events_triggered_at'), table_name='alert_events')
    op.drop_index(op.f('ix_alert_events_tenant_id'), table_name='alert_events')
    op.drop_index(op.f('ix_alert_events_alert_id'), table_name='alert_events')
    op.drop_table('alert_events')

    op.drop_index(op.f('ix_dataset_alerts_is_active'), table_name='dataset_alerts')
    op.drop_index(op.f('ix_dataset_alerts_dataset_id'), table_name='dataset_alerts')
    op.drop_index(op.f('ix_dataset_alerts_tenant_id'), table_name='dataset_alerts')
    op.drop_table('dataset_alerts')

    op.drop_index(op.f('ix_enriched_entities_tenant_id'), table_name='enriched_entities')
    op.drop_table('enriched_entities')

    op.drop_index(op.f('ix_dataset_enrichments_dataset_id'), table_name='dataset_enrichments')
    op.drop_index(op.f('ix_dataset_enrichments_tenant_id'), table_name='dataset_enrichments')
    op.drop_table('dataset_enrichments')

    op.drop_index(op.f('ix_calculated_fields_dataset_id'), table_name='calculated_fields')
    op.drop_index(op.f('ix_calculated_fields_tenant_id'), table_name='calculated_fields')
    op.drop_table('calculated_fields')

    op.drop_index(op.f('ix_delivery_logs_created_at'), table_name='delivery_logs')
    op.drop_index(op.f('ix_delivery_logs_status'), table_name='delivery_logs')
    op.drop_index(op.f('ix_delivery_logs_dataset_id'), table_name='delivery_logs')
    op.drop_index(op.f('ix_delivery_logs_connection_id'), table_name='delivery_logs')
    op.drop_index(op.f('ix_delivery_logs_tenant_id'), table_name='delivery_logs')
    op.drop_table('delivery_logs')

    op.drop_index('ix_dataset_records_dataset_created', table_name='dataset_records')
    op.drop_index(op.f('ix_dataset_records_status'), table_name='dataset_records')
    op.drop_index(op.f('ix_dataset_records_payload_hash'), table_name='dataset_records')
    op.drop_index(op.f('ix_dataset_records_connection_id'), table_name='dataset_records')
    op.drop_index(op.f('ix_dataset_records_tenant_id'), table_name='dataset_records')
    op.drop_table('dataset_records')

    op.drop_index(op.f('ix_connections_is_active'), table_name='connections')
    op.drop_index(op.f('ix_connections_dataset_id'), table_name='connections')
    op.drop_index(op.f('ix_connections_tenant_id'), table_name='connections')
    op.drop_table('connections')

    op.drop_index(op.f('ix_dataset_fields_dataset_id'), table_name='dataset_fields')
    op.drop_table('dataset_fields')

    op.drop_index(op.f('ix_datasets_tenant_id'), table_name='datasets')
    op.drop_table('datasets')
