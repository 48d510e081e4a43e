"""stock ledger schema

Revision ID: sl001
Revises:
Create Date: 2026-10-18 00:00:00.000000

Creates the complete stock ledger schema:
- companies: owner of every product, document and ledger entry
- products: product master with dual-unit configuration
- product_formulas: one-level bills of materials
- sales / purchases / production_logs: source documents
- stock_ledger: append-only stock movements, primary unit only
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'sl001'
down_revision = None
branch_labels = None
depends_on = None


def _document_columns():
    return [
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('quantity', sa.Float(), nullable=False),
        sa.Column('unit', sa.String(length=32), nullable=True),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
    ]


def upgrade():
    # ============================================================================
    # companies
    # ============================================================================
    op.create_table(
        'companies',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('gst_number', sa.String(length=32), nullable=True),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_companies_is_active', 'companies', ['is_active'])

    # ============================================================================
    # products: has_dual_units -> secondary_unit and conversion_rate > 0
    # (checked in products_service; conversion_rate may be NULL otherwise)
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('hsn_code', sa.String(length=32), nullable=True),
        sa.Column('primary_unit', sa.String(length=32), nullable=False, server_default='PCS'),
        sa.Column('secondary_unit', sa.String(length=32), nullable=True),
        sa.Column('conversion_rate', sa.Float(), nullable=True),
        sa.Column('has_dual_units', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('maintain_stock', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('is_manufactured', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('formula_base_qty', sa.Float(), nullable=False, server_default='1'),
        sa.Column('allow_backorder', sa.Boolean(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('company_id', 'name', name='uq_products_company_name'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_company_id', 'products', ['company_id'])

    # ============================================================================
    # product_formulas: quantity per ONE unit of output
    # ============================================================================
    op.create_table(
        'product_formulas',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('ingredient_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Float(), nullable=False),
        sa.Column('unit_type', sa.String(length=16), nullable=False, server_default='primary'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['ingredient_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('product_id', 'ingredient_id', name='uq_product_formulas_product_ingredient'),
        sa.CheckConstraint('quantity > 0', name='ck_product_formulas_quantity_positive'),
        sa.CheckConstraint('product_id <> ingredient_id', name='ck_product_formulas_not_self'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_product_formulas_product_id', 'product_formulas', ['product_id'])
    op.create_index('ix_product_formulas_ingredient_id', 'product_formulas', ['ingredient_id'])

    # ============================================================================
    # source documents
    # ============================================================================
    op.create_table(
        'sales',
        *_document_columns(),
        sa.Column('bill_no', sa.String(length=64), nullable=False),
        sqlite_autoincrement=True
    )
    op.create_table(
        'purchases',
        *_document_columns(),
        sa.Column('bill_no', sa.String(length=64), nullable=False),
        sqlite_autoincrement=True
    )
    op.create_table(
        'production_logs',
        *_document_columns(),
        sa.Column('batch_no', sa.String(length=64), nullable=True),
        sqlite_autoincrement=True
    )
    for table in ('sales', 'purchases', 'production_logs'):
        op.create_index(f'ix_{table}_company_id', table, ['company_id'])
        op.create_index(f'ix_{table}_product_id', table, ['product_id'])
        op.create_index(f'ix_{table}_date', table, ['date'])

    # ============================================================================
    # stock_ledger: append-only; rows leave only through reverse()
    # ============================================================================
    op.create_table(
        'stock_ledger',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('transaction_type', sa.String(length=16), nullable=False),
        sa.Column('quantity_in', sa.Float(), nullable=False, server_default='0'),
        sa.Column('quantity_out', sa.Float(), nullable=False, server_default='0'),
        sa.Column('trans_unit', sa.String(length=32), nullable=True),
        sa.Column('trans_conversion_factor', sa.Float(), nullable=False, server_default='1'),
        sa.Column('source_type', sa.String(length=16), nullable=False),
        sa.Column('related_id', sa.Integer(), nullable=True),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('quantity_in >= 0', name='ck_stock_ledger_in_non_negative'),
        sa.CheckConstraint('quantity_out >= 0', name='ck_stock_ledger_out_non_negative'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_ledger_company_id', 'stock_ledger', ['company_id'])
    op.create_index('ix_stock_ledger_product_id', 'stock_ledger', ['product_id'])
    op.create_index('ix_stock_ledger_date', 'stock_ledger', ['date'])
    op.create_index('ix_stock_ledger_transaction_type', 'stock_ledger', ['transaction_type'])
    op.create_index('ix_stock_ledger_product_date', 'stock_ledger', ['product_id', 'date', 'id'])
    op.create_index('ix_stock_ledger_source', 'stock_ledger', ['source_type', 'related_id'])


def downgrade():
    op.drop_table('stock_ledger')
    op.drop_table('production_logs')
    op.drop_table('purchases')
    op.drop_table('sales')
    op.drop_table('product_formulas')
    op.drop_table('products')
    op.drop_table('companies')
