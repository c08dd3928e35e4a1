"""create users, orders, balances and withdrawals tables

Revision ID: 0001_create_loyalty_tables
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""
from alembic import op
import sqlalchemy as sa

revision = '0001_create_loyalty_tables'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('login', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(), nullable=False),
    )
    op.create_index('ix_users_id', 'users', ['id'])
    op.create_index('ix_users_login', 'users', ['login'], unique=True)

    op.create_table(
        'orders',
        sa.Column('number', sa.String(length=64), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('accrual', sa.Numeric(12, 2), nullable=True),
        sa.Column('uploaded_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('accrual IS NULL OR accrual >= 0', name='ck_orders_accrual_nonneg'),
    )
    op.create_index('ix_orders_user_uploaded', 'orders', ['user_id', 'uploaded_at'])
    op.create_index('ix_orders_status', 'orders', ['status'])

    op.create_table(
        'balances',
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('earned', sa.Numeric(12, 2), nullable=False),
        sa.Column('withdrawn', sa.Numeric(12, 2), nullable=False),
        sa.CheckConstraint('earned >= 0', name='ck_balances_earned_nonneg'),
        sa.CheckConstraint('withdrawn >= 0', name='ck_balances_withdrawn_nonneg'),
        sa.CheckConstraint('withdrawn <= earned', name='ck_balances_not_overdrawn'),
    )

    op.create_table(
        'withdrawals',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('order_number', sa.String(length=64), nullable=False, unique=True),
        sa.Column('sum', sa.Numeric(12, 2), nullable=False),
        sa.Column('processed_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('sum > 0', name='ck_withdrawals_sum_pos'),
    )
    op.create_index('ix_withdrawals_id', 'withdrawals', ['id'])
    op.create_index('ix_withdrawals_user_processed', 'withdrawals', ['user_id', 'processed_at'])


def downgrade():
    op.drop_table('withdrawals')
    op.drop_table('balances')
    op.drop_table('orders')
    op.drop_table('users')
