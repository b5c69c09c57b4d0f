"""Create COD settlement tables

Revision ID: 001_settlement
Revises:
Create Date: 2026-10-19

Creates the tables used by the settlement core:
- vendors, orders, order_items, order_status_entries
- vendor_earnings (one row per vendor and order)
- payouts, payout_earning_lines (exact set of reserved earnings)
- cod_reconciliations (one row per day and delivery person)
- activity_logs
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID


# revision identifiers, used by Alembic.
revision = '001_settlement'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ====================
    # VENDORS TABLE
    # ====================
    op.create_table(
        'vendors',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('business_name', sa.String(200), nullable=False),
        sa.Column('status', sa.String(30), nullable=False, server_default='APPROVED',
                  comment='PENDING, APPROVED, SUSPENDED'),
        sa.Column('commission_percent', sa.Numeric(5, 2), nullable=True),
        sa.Column('bank_name', sa.String(200), nullable=True),
        sa.Column('bank_account_name', sa.String(200), nullable=True),
        sa.Column('bank_account_number', sa.String(34), nullable=True),
        sa.Column('bank_routing_number', sa.String(20), nullable=True),
        sa.Column('auto_payout_enabled', sa.Boolean(), nullable=True, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    # ====================
    # ORDERS TABLE
    # ====================
    op.create_table(
        'orders',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('order_number', sa.String(30), nullable=False, comment='e.g. ORD-20260106-0001'),
        sa.Column('customer_id', UUID(as_uuid=True), nullable=True),
        sa.Column('status', sa.String(30), nullable=False, server_default='PENDING'),
        sa.Column('payment_method', sa.String(30), nullable=False, server_default='COD'),
        sa.Column('fulfillment_status', sa.String(30), nullable=True),
        sa.Column('total_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('cod_fee_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('shipping_state', sa.String(100), nullable=True),
        sa.Column('shipping_city', sa.String(100), nullable=True),
        sa.Column('shipping_postal_code', sa.String(20), nullable=True),
        sa.Column('shipping_phone', sa.String(30), nullable=True),
        sa.Column('delivery_person_id', UUID(as_uuid=True), nullable=True),
        sa.Column('cod_collected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cod_amount_collected_cents', sa.BigInteger(), nullable=True),
        sa.Column('cod_collected_by', UUID(as_uuid=True), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_orders_order_number', 'orders', ['order_number'], unique=True)
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_cod_collection', 'orders', ['delivery_person_id', 'cod_collected_at'])

    # ====================
    # ORDER ITEMS TABLE
    # ====================
    op.create_table(
        'order_items',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('order_id', UUID(as_uuid=True), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('vendor_id', UUID(as_uuid=True), sa.ForeignKey('vendors.id', ondelete='SET NULL'), nullable=True),
        sa.Column('product_name', sa.String(255), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('price_at_purchase_cents', sa.BigInteger(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])
    op.create_index('ix_order_items_vendor_id', 'order_items', ['vendor_id'])

    # ====================
    # ORDER STATUS HISTORY (append-only)
    # ====================
    op.create_table(
        'order_status_entries',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('order_id', UUID(as_uuid=True), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False, comment="1-based position in the order's history"),
        sa.Column('actor_id', UUID(as_uuid=True), nullable=True),
        sa.Column('from_status', sa.String(30), nullable=True),
        sa.Column('status', sa.String(30), nullable=False),
        sa.Column('comment', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('order_id', 'sequence', name='uq_order_status_sequence'),
    )
    op.create_index('ix_order_status_entries_order_id', 'order_status_entries', ['order_id'])

    # ====================
    # VENDOR EARNINGS TABLE
    # ====================
    op.create_table(
        'vendor_earnings',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('vendor_id', UUID(as_uuid=True), sa.ForeignKey('vendors.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('order_id', UUID(as_uuid=True), sa.ForeignKey('orders.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('amount_cents', sa.BigInteger(), nullable=False, comment='Gross'),
        sa.Column('commission_rate', sa.Numeric(5, 2), nullable=False),
        sa.Column('commission_cents', sa.BigInteger(), nullable=False),
        sa.Column('net_amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('status', sa.String(30), nullable=False, server_default='PENDING',
                  comment='PENDING, AVAILABLE, WITHHELD, PROCESSING, PAID'),
        sa.Column('available_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('vendor_id', 'order_id', name='uq_vendor_earning_order'),
        sa.CheckConstraint('net_amount_cents + commission_cents = amount_cents', name='ck_vendor_earning_split'),
    )
    op.create_index('ix_vendor_earnings_order_id', 'vendor_earnings', ['order_id'])
    op.create_index('ix_vendor_earnings_vendor_status', 'vendor_earnings', ['vendor_id', 'status'])
    op.create_index('ix_vendor_earnings_status_available_at', 'vendor_earnings', ['status', 'available_at'])

    # ====================
    # PAYOUTS TABLE
    # ====================
    op.create_table(
        'payouts',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('vendor_id', UUID(as_uuid=True), sa.ForeignKey('vendors.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('payout_ref', sa.String(30), nullable=False),
        sa.Column('period_start', sa.DateTime(timezone=True), nullable=True),
        sa.Column('period_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('items_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('amount_cents', sa.BigInteger(), nullable=False, comment='Requested amount'),
        sa.Column('processing_fee_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('net_amount_cents', sa.BigInteger(), nullable=False, comment='Amount sent to vendor'),
        sa.Column('reserved_amount_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(30), nullable=False, server_default='PENDING',
                  comment='PENDING, PROCESSING, COMPLETED, FAILED, CANCELLED'),
        sa.Column('payout_method', sa.String(30), nullable=False, server_default='BANK_TRANSFER'),
        sa.Column('payout_details', sa.JSON(), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('requested_by', UUID(as_uuid=True), nullable=True),
        sa.Column('processed_by', UUID(as_uuid=True), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint('net_amount_cents + processing_fee_cents = amount_cents', name='ck_payout_net_split'),
    )
    op.create_index('ix_payouts_payout_ref', 'payouts', ['payout_ref'], unique=True)
    op.create_index('ix_payouts_vendor_id', 'payouts', ['vendor_id'])
    op.create_index('ix_payouts_vendor_status', 'payouts', ['vendor_id', 'status'])

    op.create_table(
        'payout_earning_lines',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('payout_id', UUID(as_uuid=True), sa.ForeignKey('payouts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('earning_id', UUID(as_uuid=True), sa.ForeignKey('vendor_earnings.id', ondelete='RESTRICT'),
                  nullable=False),
        sa.Column('net_amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('payout_id', 'earning_id', name='uq_payout_earning_line'),
    )
    op.create_index('ix_payout_earning_lines_payout_id', 'payout_earning_lines', ['payout_id'])
    op.create_index('ix_payout_earning_lines_earning_id', 'payout_earning_lines', ['earning_id'])

    # ====================
    # COD RECONCILIATIONS TABLE
    # ====================
    op.create_table(
        'cod_reconciliations',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('delivery_person_id', UUID(as_uuid=True), nullable=False),
        sa.Column('total_orders_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cod_amount_cents', sa.BigInteger(), nullable=False, server_default='0', comment='Expected'),
        sa.Column('collected_amount_cents', sa.BigInteger(), nullable=False, server_default='0', comment='Actual'),
        sa.Column('discrepancy_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(30), nullable=False, server_default='PENDING',
                  comment='PENDING, VERIFIED, DISPUTED, RESOLVED'),
        sa.Column('verified_by', UUID(as_uuid=True), nullable=True),
        sa.Column('verified_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('date', 'delivery_person_id', name='uq_cod_reconciliation_day_person'),
        sa.CheckConstraint(
            'discrepancy_cents = collected_amount_cents - total_cod_amount_cents',
            name='ck_cod_reconciliation_discrepancy'
        ),
    )
    op.create_index('ix_cod_reconciliations_date', 'cod_reconciliations', ['date'])
    op.create_index('ix_cod_reconciliations_status', 'cod_reconciliations', ['status'])
    op.create_index('ix_cod_reconciliations_date_status', 'cod_reconciliations', ['date', 'status'])

    # ====================
    # ACTIVITY LOGS TABLE
    # ====================
    op.create_table(
        'activity_logs',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('actor_id', UUID(as_uuid=True), nullable=True),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('entity_type', sa.String(50), nullable=False),
        sa.Column('entity_id', UUID(as_uuid=True), nullable=True),
        sa.Column('properties', sa.JSON(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_activity_logs_action', 'activity_logs', ['action'])
    op.create_index('ix_activity_logs_entity_type', 'activity_logs', ['entity_type'])
    op.create_index('ix_activity_logs_created_at', 'activity_logs', ['created_at'])


def downgrade():
    op.drop_table('activity_logs')
    op.drop_table('cod_reconciliations')
    op.drop_table('payout_earning_lines')
    op.drop_table('payouts')
    op.drop_table('vendor_earnings')
    op.drop_table('order_status_entries')
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('vendors')
