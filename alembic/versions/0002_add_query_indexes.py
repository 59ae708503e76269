from alembic import op
import sqlalchemy as sa

revision = '0002_add_query_indexes'
down_revision = '0001_init'
branch_labels = None
depends_on = None

def upgrade():
    # Party dashboards filter by party and status, newest first
    op.create_index('idx_orders_buyer_status', 'orders', ['buyer_id', 'status'])
    op.create_index('idx_orders_farmer_status', 'orders', ['farmer_id', 'status'])
    op.create_index('idx_orders_created_status', 'orders', ['created_at', 'status'])

def downgrade():
    op.drop_index('idx_orders_created_status', table_name='orders')
    op.drop_index('idx_orders_farmer_status', table_name='orders')
    op.drop_index('idx_orders_buyer_status', table_name='orders')
