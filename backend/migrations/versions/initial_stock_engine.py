"""products, holds and reservations

Revision ID: initial_stock_engine
Revises:
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = 'initial_stock_engine'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('price', sa.DECIMAL(10, 2), nullable=False),
        sa.Column('shipping_fee', sa.DECIMAL(10, 2), server_default='0', nullable=True),
        sa.Column('quantity', sa.Integer(), server_default='0', nullable=False),
        sa.Column('status', sa.String(20), server_default='AVAILABLE', nullable=False),
        sa.Column('timer_enabled', sa.Boolean(), server_default='false', nullable=False),
        sa.Column('timer_duration', sa.Integer(), server_default='10', nullable=False),
        sa.Column('stream_key', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id', name='pk_products'),
    )
    op.create_index('ix_products_status', 'products', ['status'])

    op.create_table(
        'holds',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('product_name', sa.String(255), nullable=False),
        sa.Column('color', sa.String(50), nullable=True),
        sa.Column('size', sa.String(50), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.DECIMAL(10, 2), nullable=False),
        sa.Column('shipping_fee', sa.DECIMAL(10, 2), nullable=True),
        sa.Column('timer_enabled', sa.Boolean(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], name='fk_holds_product_id_products'),
        sa.PrimaryKeyConstraint('id', name='pk_holds'),
    )
    op.create_index('ix_holds_product_status', 'holds', ['product_id', 'status'])
    op.create_index('ix_holds_user_status', 'holds', ['user_id', 'status'])
    op.create_index('ix_holds_status_expires_at', 'holds', ['status', 'expires_at'])

    op.create_table(
        'reservations',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('product_name', sa.String(255), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('sequence_number', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('promoted_at', sa.DateTime(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], name='fk_reservations_product_id_products'),
        sa.PrimaryKeyConstraint('id', name='pk_reservations'),
        sa.UniqueConstraint('product_id', 'sequence_number', name='uq_reservations_product_sequence'),
    )
    op.create_index('ix_reservations_product_status_seq', 'reservations', ['product_id', 'status', 'sequence_number'])
    op.create_index('ix_reservations_user_status', 'reservations', ['user_id', 'status'])
    op.create_index('ix_reservations_status_expires_at', 'reservations', ['status', 'expires_at'])


def downgrade() -> None:
    op.drop_index('ix_reservations_status_expires_at', 'reservations')
    op.drop_index('ix_reservations_user_status', 'reservations')
    op.drop_index('ix_reservations_product_status_seq', 'reservations')
    op.drop_table('reservations')
    op.drop_index('ix_holds_status_expires_at', 'holds')
    op.drop_index('ix_holds_user_status', 'holds')
    op.drop_index('ix_holds_product_status', 'holds')
    op.drop_table('holds')
    op.drop_index('ix_products_status', 'products')
    op.drop_table('products')
