from alembic import op
import sqlalchemy as sa

revision = '0001_init'
down_revision = None
branch_labels = None
depends_on = None

def upgrade():
    op.create_table(
        'orders',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('order_number', sa.String(100), nullable=False),
        sa.Column('buyer_id', sa.Uuid, nullable=False),
        sa.Column('farmer_id', sa.Uuid, nullable=False),
        sa.Column('transporter_id', sa.Uuid, nullable=True),
        sa.Column('vehicle_id', sa.String(100), nullable=True),
        sa.Column('sub_total', sa.Numeric(10,2), nullable=False),
        sa.Column('tax_amount', sa.Numeric(10,2), nullable=False),
        sa.Column('shipping_cost', sa.Numeric(10,2), nullable=False),
        sa.Column('discount_amount', sa.Numeric(10,2), nullable=False),
        sa.Column('total_amount', sa.Numeric(10,2), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('payment_status', sa.String(20), nullable=False),
        sa.Column('payment_method', sa.String(30), nullable=False),
        sa.Column('payment_id', sa.String(255), nullable=True),
        sa.Column('paid_at', sa.DateTime, nullable=True),
        sa.Column('shipping_address', sa.Text, nullable=False),
        sa.Column('shipping_city', sa.String(100), nullable=False),
        sa.Column('shipping_state', sa.String(100), nullable=False),
        sa.Column('shipping_zip_code', sa.String(20), nullable=True),
        sa.Column('shipping_notes', sa.Text, nullable=True),
        sa.Column('estimated_delivery', sa.DateTime, nullable=True),
        sa.Column('actual_delivery', sa.DateTime, nullable=True),
        sa.Column('tracking_number', sa.String(100), nullable=True),
        sa.Column('tracking_url', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=False),
        sa.Column('cancelled_at', sa.DateTime, nullable=True),
        sa.Column('version', sa.Integer, nullable=False),
    )
    op.create_index('ix_orders_order_number', 'orders', ['order_number'], unique=True)
    op.create_index('ix_orders_buyer_id', 'orders', ['buyer_id'])
    op.create_index('ix_orders_farmer_id', 'orders', ['farmer_id'])
    op.create_index('ix_orders_transporter_id', 'orders', ['transporter_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_payment_status', 'orders', ['payment_status'])
    op.create_index('ix_orders_created_at', 'orders', ['created_at'])

    op.create_table(
        'order_items',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('order_id', sa.Uuid, sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('product_id', sa.Uuid, nullable=False),
        sa.Column('product_name', sa.String(255), nullable=False),
        sa.Column('product_image', sa.Text, nullable=True),
        sa.Column('unit_price', sa.Numeric(10,2), nullable=False),
        sa.Column('quantity', sa.Numeric(10,2), nullable=False),
        sa.Column('unit', sa.String(50), nullable=False),
        sa.Column('total_price', sa.Numeric(10,2), nullable=False),
        sa.Column('quality_grade', sa.String(20), nullable=True),
        sa.Column('organic', sa.Boolean, nullable=False),
        sa.Column('harvest_date', sa.DateTime, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])
    op.create_index('ix_order_items_product_id', 'order_items', ['product_id'])

    op.create_table(
        'order_tracking',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('order_id', sa.Uuid, sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('sequence', sa.Integer, nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('location', sa.String(255), nullable=True),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.UniqueConstraint('order_id', 'sequence', name='uq_order_tracking_order_sequence'),
    )
    op.create_index('ix_order_tracking_order_id', 'order_tracking', ['order_id'])
    op.create_index('idx_order_tracking_order_created', 'order_tracking', ['order_id', 'created_at'])

def downgrade():
    op.drop_table('order_tracking')
    op.drop_table('order_items')
    op.drop_table('orders')
