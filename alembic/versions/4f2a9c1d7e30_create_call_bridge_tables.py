"""create_call_bridge_tables

Revision ID: 4f2a9c1d7e30
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '4f2a9c1d7e30'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create tenant, call record, bridge claim and compliance tables."""
    # Tenant bindings (read by the resolver, written by onboarding)
    op.create_table('businesses',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('phone_number', sa.String(length=64), nullable=True, comment='Primary phone'),
        sa.Column('secondary_phone', sa.String(length=64), nullable=True),
        sa.Column('agent_id', sa.String(length=255), nullable=True, comment='Voice-AI agent identifier on the agent platform'),
        sa.Column('escalation_phone', sa.String(length=64), nullable=True, comment='Human fallback line'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_businesses_phone_number', 'businesses', ['phone_number'])
    op.create_index('ix_businesses_secondary_phone', 'businesses', ['secondary_phone'])

    op.create_table('toll_free_numbers',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('number', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='available', comment='available, assigned, released'),
        sa.Column('business_id', sa.Uuid(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ondelete='SET NULL'),
        sa.UniqueConstraint('number'),
    )
    op.create_index('ix_toll_free_numbers_business_id', 'toll_free_numbers', ['business_id'])
    op.create_index('ix_toll_free_numbers_number_status', 'toll_free_numbers', ['number', 'status'])

    op.create_table('agent_bindings',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('business_id', sa.Uuid(), nullable=False),
        sa.Column('phone_number', sa.String(length=64), nullable=True),
        sa.Column('agent_id', sa.String(length=255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_agent_bindings_business_id', 'agent_bindings', ['business_id'])
    op.create_index('ix_agent_bindings_phone_active', 'agent_bindings', ['phone_number', 'is_active'])

    # Call records (one row per provider call id, never deleted)
    op.create_table('call_records',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('call_id', sa.String(length=255), nullable=False, comment='Provider call-control id'),
        sa.Column('business_id', sa.Uuid(), nullable=True, comment='Resolved lazily, may stay null'),
        sa.Column('customer_phone', sa.String(length=64), nullable=True),
        sa.Column('dialed_number', sa.String(length=64), nullable=True),
        sa.Column('direction', sa.String(length=20), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='unknown', comment='unknown, initiated, answered, completed'),
        sa.Column('duration_seconds', sa.Integer(), nullable=True),
        sa.Column('outcome', sa.String(length=64), nullable=True, comment='Hangup cause reported on completion'),
        sa.Column('recording_url', sa.String(length=1024), nullable=True),
        sa.Column('answered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('ended_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('call_id'),
    )
    op.create_index('ix_call_records_business_id', 'call_records', ['business_id'])
    op.create_index('ix_call_records_customer_phone', 'call_records', ['customer_phone'])
    op.create_index('ix_call_records_status', 'call_records', ['status'])
    op.create_index('ix_call_records_business_created', 'call_records', ['business_id', 'created_at'])

    # Bridge claims (at most one live bridge per call id)
    op.create_table('bridge_claims',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('call_id', sa.String(length=255), nullable=False),
        sa.Column('owner', sa.String(length=255), nullable=False),
        sa.Column('claimed_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('final_state', sa.String(length=32), nullable=True, comment='Terminal bridge state once finished'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('call_id'),
    )
    op.create_index('ix_bridge_claims_expires_at', 'bridge_claims', ['expires_at'])

    # Compliance events (append-only, checksum chained)
    op.create_table('compliance_events',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False, comment='Position in the checksum chain'),
        sa.Column('received_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('channel', sa.String(length=32), nullable=False),
        sa.Column('event_kind', sa.String(length=64), nullable=False),
        sa.Column('path', sa.String(length=255), nullable=False),
        sa.Column('body_sha256', sa.String(length=64), nullable=False),
        sa.Column('raw_body', sa.Text(), nullable=True),
        sa.Column('body_truncated', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('checksum', sa.String(length=64), nullable=False),
        sa.Column('previous_checksum', sa.String(length=64), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sequence'),
    )
    op.create_index('ix_compliance_events_received_at', 'compliance_events', ['received_at'])
    op.create_index('ix_compliance_events_channel', 'compliance_events', ['channel'])
    op.create_index('ix_compliance_events_event_kind', 'compliance_events', ['event_kind'])
    op.create_index('ix_compliance_events_channel_received', 'compliance_events', ['channel', 'received_at'])


def downgrade() -> None:
    """Drop all call bridge tables."""
    op.drop_table('compliance_events')
    op.drop_table('bridge_claims')
    op.drop_table('call_records')
    op.drop_table('agent_bindings')
    op.drop_table('toll_free_numbers')
    op.drop_table('businesses')
