"""Initial tour sync schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = '0001'
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Upgrade database schema."""
    # Create guides table
    op.create_table('guides',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=64), nullable=True),
        sa.Column('languages', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email')
    )
    op.create_index(op.f('ix_guides_name'), 'guides', ['name'], unique=False)

    # Create tour_groups table
    op.create_table('tour_groups',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('group_date', sa.Date(), nullable=False),
        sa.Column('group_time', sa.Time(), nullable=False),
        sa.Column('display_name', sa.String(length=255), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('guide_id', sa.Integer(), nullable=True),
        sa.Column('guide_name', sa.String(length=255), nullable=True),
        sa.Column('max_pax', sa.Integer(), nullable=False),
        sa.Column('total_pax', sa.Integer(), nullable=False),
        sa.Column('is_manual_merge', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('max_pax >= 1', name='ck_tour_group_max_pax_positive'),
        sa.CheckConstraint('total_pax >= 0', name='ck_tour_group_total_pax_non_negative'),
        sa.ForeignKeyConstraint(['guide_id'], ['guides.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_tour_groups_group_date'), 'tour_groups', ['group_date'], unique=False)
    op.create_index(op.f('ix_tour_groups_guide_id'), 'tour_groups', ['guide_id'], unique=False)

    # Create tours table
    op.create_table('tours',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('external_id', sa.String(length=64), nullable=True),
        sa.Column('confirmation_code', sa.String(length=64), nullable=True),
        sa.Column('product_id', sa.String(length=64), nullable=True),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('time', sa.Time(), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=True),
        sa.Column('participants', sa.Integer(), nullable=False),
        sa.Column('adults', sa.Integer(), nullable=False),
        sa.Column('children', sa.Integer(), nullable=False),
        sa.Column('infants', sa.Integer(), nullable=False),
        sa.Column('participant_names', sa.JSON(), nullable=True),
        sa.Column('language', sa.String(length=32), nullable=True),
        sa.Column('customer_name', sa.String(length=255), nullable=True),
        sa.Column('customer_email', sa.String(length=255), nullable=True),
        sa.Column('customer_phone', sa.String(length=64), nullable=True),
        sa.Column('special_requests', sa.Text(), nullable=True),
        sa.Column('booking_channel', sa.String(length=64), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('guide_id', sa.Integer(), nullable=True),
        sa.Column('group_id', sa.Integer(), nullable=True),
        sa.Column('needs_guide_assignment', sa.Boolean(), nullable=False),
        sa.Column('payment_status', sa.String(length=20), nullable=False),
        sa.Column('total_amount_paid', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('expected_amount', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('external_source', sa.String(length=20), nullable=False),
        sa.Column('channel_payload', sa.JSON(), nullable=True),
        sa.Column('last_synced', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled', sa.Boolean(), nullable=False),
        sa.Column('cancelled_locally', sa.Boolean(), nullable=False),
        sa.Column('rescheduled', sa.Boolean(), nullable=False),
        sa.Column('original_date', sa.Date(), nullable=True),
        sa.Column('original_time', sa.Time(), nullable=True),
        sa.Column('rescheduled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('participants >= 0', name='ck_tour_participants_non_negative'),
        sa.CheckConstraint('adults >= 0 AND children >= 0 AND infants >= 0', name='ck_tour_breakdown_non_negative'),
        sa.CheckConstraint('total_amount_paid >= 0', name='ck_tour_total_amount_paid_non_negative'),
        sa.CheckConstraint(
            "payment_status IN ('unpaid', 'partial', 'paid', 'overpaid')",
            name='ck_tour_payment_status'
        ),
        sa.CheckConstraint("external_source IN ('channel', 'manual')", name='ck_tour_external_source'),
        sa.ForeignKeyConstraint(['group_id'], ['tour_groups.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['guide_id'], ['guides.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('external_id')
    )
    op.create_index(op.f('ix_tours_confirmation_code'), 'tours', ['confirmation_code'], unique=False)
    op.create_index(op.f('ix_tours_date'), 'tours', ['date'], unique=False)
    op.create_index(op.f('ix_tours_guide_id'), 'tours', ['guide_id'], unique=False)
    op.create_index(op.f('ix_tours_group_id'), 'tours', ['group_id'], unique=False)

    # Create payments table
    op.create_table('payments',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('tour_id', sa.Integer(), nullable=False),
        sa.Column('guide_id', sa.Integer(), nullable=True),
        sa.Column('amount', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('method', sa.String(length=32), nullable=False),
        sa.Column('reference', sa.String(length=128), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('amount > 0', name='ck_payment_amount_positive'),
        sa.ForeignKeyConstraint(['guide_id'], ['guides.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['tour_id'], ['tours.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_payments_tour_id'), 'payments', ['tour_id'], unique=False)

    # Create sync_logs table
    op.create_table('sync_logs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('sync_type', sa.String(length=20), nullable=False),
        sa.Column('trigger_type', sa.String(length=20), nullable=False),
        sa.Column('triggered_by', sa.String(length=255), nullable=True),
        sa.Column('start_date', sa.Date(), nullable=True),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('bookings_found', sa.Integer(), nullable=False),
        sa.Column('bookings_synced', sa.Integer(), nullable=False),
        sa.Column('bookings_created', sa.Integer(), nullable=False),
        sa.Column('bookings_updated', sa.Integer(), nullable=False),
        sa.Column('bookings_unchanged', sa.Integer(), nullable=False),
        sa.Column('bookings_failed', sa.Integer(), nullable=False),
        sa.Column('groups_created', sa.Integer(), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('errors', sa.JSON(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('duration_seconds', sa.Float(), nullable=True),
        sa.CheckConstraint(
            "status IN ('started', 'completed', 'partial', 'failed', 'cancelled')",
            name='ck_sync_log_status'
        ),
        sa.CheckConstraint("trigger_type IN ('scheduled', 'manual', 'webhook')", name='ck_sync_log_trigger'),
        sa.CheckConstraint("sync_type IN ('incremental', 'full', 'single')", name='ck_sync_log_sync_type'),
        sa.PrimaryKeyConstraint('id')
    )


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_table('sync_logs')
    op.drop_table('payments')
    op.drop_table('tours')
    op.drop_table('tour_groups')
    op.drop_table('guides')
