"""
Alembic migration: Create return lifecycle schema.

Creates the users, product variant and order tables the return subsystem
reads, the returns table with its append-only status history, and the side
effect failure log used for manual replay.

Revision ID: 001
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# Revision identifiers, used by Alembic
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

USER_ROLES = ('customer', 'admin', 'super_admin')

ORDER_STATUSES = (
    'pending',
    'paid',
    'processing',
    'shipped',
    'delivered',
    'cancelled',
    'return_requested',
    'return_in_transit',
    'return_received',
    'return_completed',
)

PAYMENT_STATUSES = ('pending', 'paid', 'failed', 'refunded', 'partially_refunded')

RETURN_STATUSES = (
    'return_requested',
    'return_approved',
    'return_label_payment_pending',
    'return_label_payment_completed',
    'return_label_generated',
    'return_in_transit',
    'return_received',
    'refund_processing',
    'refunded',
    'return_rejected',
)

SIDE_EFFECT_TYPES = ('restock', 'order_sync', 'notification')

ENUM_TYPES = {
    'user_role': USER_ROLES,
    'order_status': ORDER_STATUSES,
    'payment_status': PAYMENT_STATUSES,
    'return_status': RETURN_STATUSES,
    'side_effect_type': SIDE_EFFECT_TYPES,
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUM_TYPES[name], name=name, create_type=False)


def _id_column() -> sa.Column:
    return sa.Column(
        'id',
        postgresql.UUID(as_uuid=True),
        nullable=False,
        server_default=sa.text('gen_random_uuid()'),
    )


def _timestamp_columns() -> list[sa.Column]:
    return [
        sa.Column(
            'created_at',
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text('CURRENT_TIMESTAMP'),
        ),
        sa.Column(
            'updated_at',
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text('CURRENT_TIMESTAMP'),
        ),
    ]


def upgrade() -> None:
    """Create enum types, tables and indexes for the return lifecycle."""
    for name, values in ENUM_TYPES.items():
        postgresql.ENUM(*values, name=name).create(op.get_bind(), checkfirst=True)

    op.create_table(
        'users',
        _id_column(),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('full_name', sa.String(length=255), nullable=True),
        sa.Column(
            'role',
            _enum('user_role'),
            nullable=False,
            server_default=sa.text("'customer'"),
        ),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamp_columns(),
        sa.PrimaryKeyConstraint('id', name='pk_users'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'product_variants',
        _id_column(),
        sa.Column('product_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('sku', sa.String(length=100), nullable=False),
        sa.Column('size', sa.String(length=50), nullable=True),
        sa.Column('color', sa.String(length=50), nullable=True),
        sa.Column('stock_quantity', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('is_available', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamp_columns(),
        sa.PrimaryKeyConstraint('id', name='pk_product_variants'),
        sa.UniqueConstraint('sku', name='uq_product_variants_sku'),
        sa.CheckConstraint('stock_quantity >= 0', name='check_stock_non_negative'),
    )
    op.create_index('ix_product_variants_product_id', 'product_variants', ['product_id'])

    op.create_table(
        'orders',
        _id_column(),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column(
            'status',
            _enum('order_status'),
            nullable=False,
            server_default=sa.text("'pending'"),
        ),
        sa.Column(
            'payment_status',
            _enum('payment_status'),
            nullable=False,
            server_default=sa.text("'pending'"),
        ),
        sa.Column('subtotal', sa.Numeric(10, 2), nullable=False, server_default=sa.text('0')),
        sa.Column('shipping_cost', sa.Numeric(10, 2), nullable=False, server_default=sa.text('0')),
        sa.Column('total', sa.Numeric(10, 2), nullable=False, server_default=sa.text('0')),
        sa.Column('shipping_address', postgresql.JSONB(), nullable=True),
        sa.Column('billing_address', postgresql.JSONB(), nullable=True),
        sa.Column('stripe_payment_intent_id', sa.String(length=255), nullable=True),
        sa.Column('has_returns', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('paid_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.TIMESTAMP(timezone=True), nullable=True),
        *_timestamp_columns(),
        sa.PrimaryKeyConstraint('id', name='pk_orders'),
        sa.ForeignKeyConstraint(
            ['user_id'], ['users.id'], name='fk_orders_user_id', ondelete='SET NULL'
        ),
        sa.CheckConstraint('total >= 0', name='check_total_non_negative'),
    )
    op.create_index('ix_orders_user_id', 'orders', ['user_id'])
    op.create_index('ix_orders_email', 'orders', ['email'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_user_status', 'orders', ['user_id', 'status'])

    op.create_table(
        'order_items',
        _id_column(),
        sa.Column('order_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('product_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('variant_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('size', sa.String(length=50), nullable=True),
        sa.Column('color', sa.String(length=50), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('price_at_purchase', sa.Numeric(10, 2), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_order_items'),
        sa.ForeignKeyConstraint(
            ['order_id'], ['orders.id'], name='fk_order_items_order_id', ondelete='CASCADE'
        ),
        sa.ForeignKeyConstraint(
            ['variant_id'],
            ['product_variants.id'],
            name='fk_order_items_variant_id',
            ondelete='SET NULL',
        ),
        sa.CheckConstraint('quantity > 0', name='check_item_quantity_positive'),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])

    op.create_table(
        'returns',
        _id_column(),
        sa.Column('order_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column(
            'status',
            _enum('return_status'),
            nullable=False,
            server_default=sa.text("'return_requested'"),
        ),
        sa.Column('return_reason', sa.Text(), nullable=True),
        sa.Column('customer_notes', sa.Text(), nullable=True),
        sa.Column(
            'return_items',
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column('admin_notes', sa.Text(), nullable=True),
        sa.Column('return_label_url', sa.String(length=1024), nullable=True),
        sa.Column('tracking_number', sa.String(length=255), nullable=True),
        sa.Column('refund_amount', sa.Numeric(10, 2), nullable=False, server_default=sa.text('0')),
        sa.Column('stripe_refund_id', sa.String(length=255), nullable=True),
        sa.Column('stripe_refund_status', sa.String(length=50), nullable=True),
        sa.Column('approved_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('received_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('refunded_at', sa.TIMESTAMP(timezone=True), nullable=True),
        *_timestamp_columns(),
        sa.PrimaryKeyConstraint('id', name='pk_returns'),
        sa.ForeignKeyConstraint(
            ['order_id'], ['orders.id'], name='fk_returns_order_id', ondelete='RESTRICT'
        ),
        sa.ForeignKeyConstraint(
            ['user_id'], ['users.id'], name='fk_returns_user_id', ondelete='SET NULL'
        ),
    )
    op.create_index('ix_returns_order_id', 'returns', ['order_id'])
    op.create_index('ix_returns_user_id', 'returns', ['user_id'])
    op.create_index('ix_returns_status', 'returns', ['status'])
    op.create_index('ix_returns_order_status', 'returns', ['order_id', 'status'])

    op.create_table(
        'return_status_history',
        _id_column(),
        sa.Column('return_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('status', _enum('return_status'), nullable=False),
        sa.Column('changed_by', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column(
            'created_at',
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text('CURRENT_TIMESTAMP'),
        ),
        sa.PrimaryKeyConstraint('id', name='pk_return_status_history'),
        sa.ForeignKeyConstraint(
            ['return_id'],
            ['returns.id'],
            name='fk_return_status_history_return_id',
            ondelete='CASCADE',
        ),
    )
    op.create_index(
        'ix_return_status_history_return_id', 'return_status_history', ['return_id']
    )

    op.create_table(
        'return_side_effect_failures',
        _id_column(),
        sa.Column('return_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('effect', _enum('side_effect_type'), nullable=False),
        sa.Column(
            'payload',
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column('error', sa.Text(), nullable=False),
        sa.Column(
            'created_at',
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text('CURRENT_TIMESTAMP'),
        ),
        sa.Column('resolved_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id', name='pk_return_side_effect_failures'),
        sa.ForeignKeyConstraint(
            ['return_id'],
            ['returns.id'],
            name='fk_return_side_effect_failures_return_id',
            ondelete='CASCADE',
        ),
    )
    op.create_index(
        'ix_return_side_effect_failures_return_id',
        'return_side_effect_failures',
        ['return_id'],
    )
    op.create_index(
        'ix_return_side_effect_failures_resolved_at',
        'return_side_effect_failures',
        ['resolved_at'],
    )


def downgrade() -> None:
    """Drop the return lifecycle schema."""
    op.drop_table('return_side_effect_failures')
    op.drop_table('return_status_history')
    op.drop_table('returns')
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('product_variants')
    op.drop_table('users')

    for name in reversed(list(ENUM_TYPES)):
        postgresql.ENUM(name=name).drop(op.get_bind(), checkfirst=True)
