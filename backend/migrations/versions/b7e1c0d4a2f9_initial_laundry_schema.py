"""initial laundry schema

Revision ID: b7e1c0d4a2f9
Revises:
Create Date: 2026-10-18 00:00:00.000000

Creates the owner-scoped catalog and shipment tables:
- products: Pieces the owner sends out, priced in cents
- shipments: One batch sent to the laundry (versioned for concurrent writes)
- shipment_lines: Product quantities sent/returned per shipment
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'b7e1c0d4a2f9'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ============================================================================
    # products: Catalog
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('owner_id', sa.String(length=128), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('category', sa.String(length=120), nullable=True),
        sa.Column('price_cents', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_products_owner_id', 'products', ['owner_id'])
    op.create_index('ix_products_owner_name', 'products', ['owner_id', 'name'])

    # ============================================================================
    # shipments: Batches sent to the laundry
    # ============================================================================
    op.create_table(
        'shipments',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('owner_id', sa.String(length=128), nullable=False),
        sa.Column('sent_at', sa.Date(), nullable=False),
        sa.Column('expected_return_at', sa.Date(), nullable=True),
        sa.Column('notes', sa.String(length=240), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_shipments_owner_id', 'shipments', ['owner_id'])
    op.create_index('ix_shipments_owner_sent', 'shipments', ['owner_id', 'sent_at'])

    # ============================================================================
    # shipment_lines: Quantities per product per shipment
    # ============================================================================
    op.create_table(
        'shipment_lines',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('shipment_id', sa.String(length=32), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('product_id', sa.String(length=32), nullable=False),
        sa.Column('quantity_sent', sa.Integer(), nullable=False),
        sa.Column('quantity_returned', sa.Integer(), nullable=False, server_default='0'),
        sa.ForeignKeyConstraint(['shipment_id'], ['shipments.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('quantity_sent > 0', name='ck_shipment_lines_sent_positive'),
        sa.CheckConstraint(
            'quantity_returned >= 0 AND quantity_returned <= quantity_sent',
            name='ck_shipment_lines_returned_range',
        ),
    )
    op.create_index('ix_shipment_lines_shipment_id', 'shipment_lines', ['shipment_id'])
    op.create_index('ix_shipment_lines_product', 'shipment_lines', ['product_id'])


def downgrade():
    """Drop all tables (destructive operation)."""
    op.drop_table('shipment_lines')
    op.drop_table('shipments')
    op.drop_table('products')
