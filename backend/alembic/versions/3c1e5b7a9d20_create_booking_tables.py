"""Create businesses, resources and appointments tables

Revision ID: 3c1e5b7a9d20
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3c1e5b7a9d20'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Needed for "=" on uuid inside a GiST exclusion constraint
    op.execute('CREATE EXTENSION IF NOT EXISTS btree_gist')

    op.create_table(
        'businesses',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('phone', sa.String(), nullable=True),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('timezone', sa.String(), nullable=False, server_default='America/Chicago'),
        sa.Column('office_start', sa.Float(), nullable=False, server_default='9'),
        sa.Column('office_end', sa.Float(), nullable=False, server_default='17'),
        sa.Column('slot_duration_minutes', sa.Integer(), nullable=False, server_default='30'),
        sa.Column('capacity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('google_calendar_id', sa.String(), nullable=True),
        sa.Column('blocking_calendar_id', sa.String(), nullable=True),
        sa.Column('google_refresh_token', sa.String(), nullable=True),
        sa.Column('google_token_expires_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint('capacity >= 1', name='businesses_capacity_positive'),
        sa.CheckConstraint(
            'office_start >= 0 AND office_start < office_end AND office_end <= 24',
            name='businesses_office_hours_valid',
        ),
    )

    op.create_table(
        'resources',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('business_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('businesses.id'), nullable=False),
        sa.Column('model', sa.String(), nullable=False),
        sa.Column('trim', sa.String(), nullable=True),
        sa.Column('label', sa.String(), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('idx_resources_business_model', 'resources', ['business_id', 'model'])

    op.create_table(
        'appointments',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('business_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('businesses.id'), nullable=False),
        sa.Column('resource_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('resources.id'), nullable=True),
        sa.Column('appointment_type', sa.String(), nullable=False, server_default='appointment'),
        sa.Column('customer_name', sa.String(), nullable=False),
        sa.Column('customer_phone', sa.String(), nullable=True),
        sa.Column('customer_email', sa.String(), nullable=True),
        sa.Column('start_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('local_start', sa.String(), nullable=False),
        sa.Column('timezone', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='booked'),
        sa.Column('source', sa.String(), nullable=False, server_default='agent'),
        sa.Column('calendar_id', sa.String(), nullable=True),
        sa.Column('external_event_id', sa.String(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('idempotency_key', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('idempotency_key', name='appointments_idempotency_key_key'),
        sa.CheckConstraint('end_at > start_at', name='appointments_window_positive'),
    )
    op.create_index(
        'idx_appointments_business_status_start',
        'appointments',
        ['business_id', 'status', 'start_at'],
    )
    op.execute(
        """
        ALTER TABLE appointments
        ADD CONSTRAINT appointments_resource_no_overlap
        EXCLUDE USING gist (resource_id WITH =, tstzrange(start_at, end_at) WITH &&)
        WHERE (resource_id IS NOT NULL AND status = 'booked')
        """
    )


def downgrade() -> None:
    op.execute('ALTER TABLE appointments DROP CONSTRAINT IF EXISTS appointments_resource_no_overlap')
    op.drop_index('idx_appointments_business_status_start', table_name='appointments')
    op.drop_table('appointments')

    op.drop_index('idx_resources_business_model', table_name='resources')
    op.drop_table('resources')

    op.drop_table('businesses')
