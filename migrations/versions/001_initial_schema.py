"""
Alembic migration: initial dealership schema.

Creates users, vehicles, orders with their items, invoices and payments,
deliveries, feedback and test drives. Every table carries the audit and
soft delete columns.

Revision ID: 001
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# Revision identifiers, used by Alembic
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

USER_ROLE = sa.Enum('customer', 'dealer_staff', 'dealer_manager', name='user_role')
ORDER_STATUS = sa.Enum('pending', 'confirmed', 'cancelled', name='order_status')
INVOICE_STATUS = sa.Enum(
    'pending', 'unpaid', 'paid', 'overdue', 'canceled', name='invoice_status'
)
PAYMENT_STATUS = sa.Enum('pending', 'paid', 'failed', name='payment_status')
DELIVERY_STATUS = sa.Enum(
    'pending', 'scheduled', 'in_transit', 'delivered', 'cancelled', name='delivery_status'
)
TEST_DRIVE_STATUS = sa.Enum(
    'pending', 'confirmed', 'completed', 'canceled', name='test_drive_status'
)


def _record_columns() -> list:
    """Primary key, audit and soft delete columns shared by every table."""
    return [
        sa.Column('id', sa.Uuid(), nullable=False, primary_key=True),
        sa.Column(
            'created_at',
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text('now()'),
        ),
        sa.Column('created_by', sa.Uuid(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_by', sa.Uuid(), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deleted_by', sa.Uuid(), nullable=True),
    ]


def upgrade() -> None:
    """
    Create the dealership tables, constraints and indexes.
    """
    op.create_table(
        'users',
        *_record_columns(),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('full_name', sa.String(200), nullable=False),
        sa.Column('phone_number', sa.String(20), nullable=True),
        sa.Column('password_hash', sa.String(255), nullable=True),
        sa.Column('role', USER_ROLE, nullable=False),
        comment='Customer and dealership staff accounts',
    )
    op.create_index('ix_users_role', 'users', ['role'])

    op.create_table(
        'vehicles',
        *_record_columns(),
        sa.Column('model_name', sa.String(100), nullable=False),
        sa.Column('trim_name', sa.String(100), nullable=False),
        sa.Column('model_year', sa.Integer(), nullable=True),
        sa.Column('base_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('image_url', sa.String(2048), nullable=True),
        sa.Column('battery_capacity', sa.Integer(), nullable=True),
        sa.Column('range_km', sa.Integer(), nullable=True),
        sa.Column('charging_time', sa.Integer(), nullable=True),
        sa.Column('top_speed', sa.Integer(), nullable=True),
        sa.Column('stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.CheckConstraint('stock >= 0', name='ck_vehicles_stock_non_negative'),
        sa.CheckConstraint('base_price >= 0', name='ck_vehicles_base_price_non_negative'),
    )
    op.create_index('ix_vehicles_active_stock', 'vehicles', ['is_active', 'stock'])

    op.create_table(
        'orders',
        *_record_columns(),
        sa.Column(
            'customer_id',
            sa.Uuid(),
            sa.ForeignKey('users.id', ondelete='RESTRICT'),
            nullable=False,
        ),
        sa.Column(
            'staff_id',
            sa.Uuid(),
            sa.ForeignKey('users.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column('order_number', sa.String(32), nullable=False, unique=True),
        sa.Column('status', ORDER_STATUS, nullable=False),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('total_amount >= 0', name='ck_orders_total_non_negative'),
    )
    op.create_index('ix_orders_customer_id', 'orders', ['customer_id'])
    op.create_index('ix_orders_staff_id', 'orders', ['staff_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_created_at', 'orders', ['created_at'])
    op.create_index('ix_orders_customer_status', 'orders', ['customer_id', 'status'])

    op.create_table(
        'order_items',
        *_record_columns(),
        sa.Column(
            'order_id',
            sa.Uuid(),
            sa.ForeignKey('orders.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column(
            'vehicle_id',
            sa.Uuid(),
            sa.ForeignKey('vehicles.id', ondelete='RESTRICT'),
            nullable=False,
        ),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
        sa.CheckConstraint('unit_price >= 0', name='ck_order_items_unit_price_non_negative'),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])
    op.create_index('ix_order_items_vehicle_id', 'order_items', ['vehicle_id'])

    op.create_table(
        'invoices',
        *_record_columns(),
        sa.Column(
            'order_id',
            sa.Uuid(),
            sa.ForeignKey('orders.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column(
            'customer_id',
            sa.Uuid(),
            sa.ForeignKey('users.id', ondelete='RESTRICT'),
            nullable=False,
        ),
        sa.Column('invoice_number', sa.String(32), nullable=False, unique=True),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('status', INVOICE_STATUS, nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.CheckConstraint('total_amount >= 0', name='ck_invoices_total_non_negative'),
    )
    op.create_index('ix_invoices_order_id', 'invoices', ['order_id'])
    op.create_index('ix_invoices_customer_id', 'invoices', ['customer_id'])
    op.create_index('ix_invoices_status', 'invoices', ['status'])
    op.create_index('ix_invoices_status_created_at', 'invoices', ['status', 'created_at'])

    op.create_table(
        'payments',
        *_record_columns(),
        sa.Column(
            'invoice_id',
            sa.Uuid(),
            sa.ForeignKey('invoices.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('status', PAYMENT_STATUS, nullable=False),
        sa.Column('payment_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('payment_intent_id', sa.String(255), nullable=True, unique=True),
        sa.Column('transaction_id', sa.String(255), nullable=True),
        sa.Column('payment_method', sa.String(50), nullable=True),
        sa.CheckConstraint('amount >= 0', name='ck_payments_amount_non_negative'),
    )
    op.create_index('ix_payments_invoice_id', 'payments', ['invoice_id'])
    op.create_index('ix_payments_status', 'payments', ['status'])

    op.create_table(
        'deliveries',
        *_record_columns(),
        sa.Column(
            'order_id',
            sa.Uuid(),
            sa.ForeignKey('orders.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('status', DELIVERY_STATUS, nullable=False),
        sa.Column('planned_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('actual_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('shipping_address', sa.String(500), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('staff_notes', sa.Text(), nullable=True),
    )
    op.create_index('ix_deliveries_status', 'deliveries', ['status'])
    op.create_index('ix_deliveries_created_at', 'deliveries', ['created_at'])
    op.create_index(
        'uq_deliveries_order_id_active',
        'deliveries',
        ['order_id'],
        unique=True,
        postgresql_where=sa.text('deleted_at IS NULL'),
    )

    op.create_table(
        'feedbacks',
        *_record_columns(),
        sa.Column(
            'customer_id',
            sa.Uuid(),
            sa.ForeignKey('users.id', ondelete='RESTRICT'),
            nullable=False,
        ),
        sa.Column(
            'order_id',
            sa.Uuid(),
            sa.ForeignKey('orders.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column(
            'resolved_by',
            sa.Uuid(),
            sa.ForeignKey('users.id', ondelete='SET NULL'),
            nullable=True,
        ),
    )
    op.create_index('ix_feedbacks_customer_id', 'feedbacks', ['customer_id'])
    op.create_index('ix_feedbacks_order_id', 'feedbacks', ['order_id'])

    op.create_table(
        'test_drives',
        *_record_columns(),
        sa.Column(
            'customer_id',
            sa.Uuid(),
            sa.ForeignKey('users.id', ondelete='RESTRICT'),
            nullable=False,
        ),
        sa.Column(
            'vehicle_id',
            sa.Uuid(),
            sa.ForeignKey('vehicles.id', ondelete='RESTRICT'),
            nullable=False,
        ),
        sa.Column(
            'staff_id',
            sa.Uuid(),
            sa.ForeignKey('users.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column('scheduled_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', TEST_DRIVE_STATUS, nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('canceled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancellation_reason', sa.String(500), nullable=True),
    )
    op.create_index('ix_test_drives_customer_id', 'test_drives', ['customer_id'])
    op.create_index('ix_test_drives_vehicle_id', 'test_drives', ['vehicle_id'])
    op.create_index('ix_test_drives_status', 'test_drives', ['status'])


def downgrade() -> None:
    """
    Drop every dealership table and enum type.
    """
    for table in (
        'test_drives',
        'feedbacks',
        'deliveries',
        'payments',
        'invoices',
        'order_items',
        'orders',
        'vehicles',
        'users',
    ):
        op.drop_table(table)

    bind = op.get_bind()
    for enum in (
        TEST_DRIVE_STATUS,
        DELIVERY_STATUS,
        PAYMENT_STATUS,
        INVOICE_STATUS,
        ORDER_STATUS,
        USER_ROLE,
    ):
        enum.drop(bind, checkfirst=True)
