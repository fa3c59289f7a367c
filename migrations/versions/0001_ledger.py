"""ledger schema

Revision ID: 0001_ledger
Revises:
Create Date: 2026-10-18 00:00:00
"""

from alembic import op
import sqlalchemy as sa

revision = "0001_ledger"
down_revision = None
branch_labels = None
depends_on = None

MONEY = sa.Numeric(20, 6)
RATE = sa.Numeric(12, 10)


def upgrade():
    op.create_table('users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=50), nullable=True),
        sa.Column('kyc_status', sa.String(length=20), nullable=False),
        sa.Column('payout_destination', sa.String(length=120), nullable=True),
        sa.Column('funds_customer_id', sa.String(length=120), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email')
    )
    op.create_table('properties',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('location', sa.String(length=255), nullable=True),
        sa.Column('token_id', sa.Integer(), nullable=True),
        sa.Column('token_price', MONEY, nullable=False),
        sa.Column('total_tokens', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('token_id')
    )
    op.create_table('vault_accounts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('total_balance', MONEY, nullable=False),
        sa.Column('locked_balance', MONEY, nullable=False),
        sa.Column('total_deposited', MONEY, nullable=False),
        sa.Column('total_withdrawn', MONEY, nullable=False),
        sa.Column('total_earned', MONEY, nullable=False),
        sa.Column('wallet_address', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id'),
        sa.CheckConstraint('locked_balance >= 0 AND locked_balance <= total_balance',
                           name='ck_vault_locked_within_total')
    )
    op.create_table('holdings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('property_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('average_cost', MONEY, nullable=False),
        sa.Column('total_invested', MONEY, nullable=False),
        sa.Column('rent_earned', MONEY, nullable=False),
        sa.Column('last_rent_date', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['property_id'], ['properties.id']),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'property_id', name='uq_holding_user_property')
    )
    op.create_index('ix_holdings_user_id', 'holdings', ['user_id'])
    op.create_index('ix_holdings_property_id', 'holdings', ['property_id'])

    op.create_table('borrow_positions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('vault_account_id', sa.Integer(), nullable=False),
        sa.Column('principal', MONEY, nullable=False),
        sa.Column('interest_rate', RATE, nullable=False),
        sa.Column('accrued_interest', MONEY, nullable=False),
        sa.Column('collateral_value', MONEY, nullable=False),
        sa.Column('collateral_ratio', RATE, nullable=False),
        sa.Column('liquidation_threshold', RATE, nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('borrowed_at', sa.DateTime(), nullable=False),
        sa.Column('last_interest_update', sa.DateTime(), nullable=True),
        sa.Column('repaid_at', sa.DateTime(), nullable=True),
        sa.Column('loan_tx_ref', sa.String(length=120), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['vault_account_id'], ['vault_accounts.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_borrow_positions_user_id', 'borrow_positions', ['user_id'])
    op.create_index('ix_borrow_positions_status', 'borrow_positions', ['status'])
    op.create_index('uq_borrow_positions_one_active', 'borrow_positions', ['user_id'], unique=True,
                    sqlite_where=sa.text("status = 'ACTIVE'"),
                    postgresql_where=sa.text("status = 'ACTIVE'"))

    op.create_table('borrow_collaterals',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('borrow_position_id', sa.Integer(), nullable=False),
        sa.Column('property_id', sa.Integer(), nullable=False),
        sa.Column('token_id', sa.Integer(), nullable=True),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('value_at_lock', MONEY, nullable=False),
        sa.Column('current_value', MONEY, nullable=False),
        sa.Column('locked_at', sa.DateTime(), nullable=False),
        sa.Column('unlocked_at', sa.DateTime(), nullable=True),
        sa.Column('lock_tx_ref', sa.String(length=120), nullable=True),
        sa.Column('unlock_tx_ref', sa.String(length=120), nullable=True),
        sa.ForeignKeyConstraint(['borrow_position_id'], ['borrow_positions.id']),
        sa.ForeignKeyConstraint(['property_id'], ['properties.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_borrow_collaterals_borrow_position_id', 'borrow_collaterals', ['borrow_position_id'])

    op.create_table('borrow_repayments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('borrow_position_id', sa.Integer(), nullable=False),
        sa.Column('principal_paid', MONEY, nullable=False),
        sa.Column('interest_paid', MONEY, nullable=False),
        sa.Column('total_paid', MONEY, nullable=False),
        sa.Column('amount_from_vault', MONEY, nullable=False),
        sa.Column('amount_from_payment', MONEY, nullable=False),
        sa.Column('source', sa.String(length=20), nullable=False),
        sa.Column('payment_reference', sa.String(length=120), nullable=True),
        sa.Column('mirror_tx_ref', sa.String(length=120), nullable=True),
        sa.Column('paid_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['borrow_position_id'], ['borrow_positions.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_borrow_repayments_borrow_position_id', 'borrow_repayments', ['borrow_position_id'])

    op.create_table('rent_payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('property_id', sa.Integer(), nullable=False),
        sa.Column('period_start', sa.Date(), nullable=False),
        sa.Column('period_end', sa.Date(), nullable=False),
        sa.Column('gross_amount', MONEY, nullable=False),
        sa.Column('management_fee', MONEY, nullable=False),
        sa.Column('net_amount', MONEY, nullable=False),
        sa.Column('per_token_amount', sa.Numeric(28, 12), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('distributed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['property_id'], ['properties.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_rent_payments_property_id', 'rent_payments', ['property_id'])
    op.create_index('ix_rent_payments_status', 'rent_payments', ['status'])

    op.create_table('rent_distributions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('rent_payment_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('holding_id', sa.Integer(), nullable=False),
        sa.Column('property_id', sa.Integer(), nullable=False),
        sa.Column('borrow_position_id', sa.Integer(), nullable=True),
        sa.Column('tokens_held', sa.Integer(), nullable=False),
        sa.Column('total_tokens', sa.Integer(), nullable=False),
        sa.Column('ownership_percent', RATE, nullable=False),
        sa.Column('gross_amount', MONEY, nullable=False),
        sa.Column('interest_deducted', MONEY, nullable=False),
        sa.Column('net_amount', MONEY, nullable=False),
        sa.Column('distributed_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['rent_payment_id'], ['rent_payments.id']),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['holding_id'], ['holdings.id']),
        sa.ForeignKeyConstraint(['property_id'], ['properties.id']),
        sa.ForeignKeyConstraint(['borrow_position_id'], ['borrow_positions.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('rent_payment_id', 'user_id', name='uq_distribution_payment_user')
    )
    op.create_index('ix_rent_distributions_rent_payment_id', 'rent_distributions', ['rent_payment_id'])
    op.create_index('ix_rent_distributions_user_id', 'rent_distributions', ['user_id'])
    op.create_index('ix_rent_distributions_property_id', 'rent_distributions', ['property_id'])

    op.create_table('distribution_runs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('run_type', sa.String(length=20), nullable=False),
        sa.Column('triggered_by', sa.String(length=120), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('properties_processed', sa.Integer(), nullable=False),
        sa.Column('rent_payments_processed', sa.Integer(), nullable=False),
        sa.Column('holders_distributed', sa.Integer(), nullable=False),
        sa.Column('total_gross_distributed', MONEY, nullable=False),
        sa.Column('total_interest_deducted', MONEY, nullable=False),
        sa.Column('total_net_distributed', MONEY, nullable=False),
        sa.Column('errors', sa.JSON(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_distribution_runs_status', 'distribution_runs', ['status'])

    op.create_table('transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('property_id', sa.Integer(), nullable=True),
        sa.Column('type', sa.String(length=30), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('fee', MONEY, nullable=False),
        sa.Column('currency', sa.String(length=10), nullable=False),
        sa.Column('reference', sa.String(length=120), nullable=True),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['property_id'], ['properties.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_transactions_user_id', 'transactions', ['user_id'])
    op.create_index('ix_transactions_type', 'transactions', ['type'])


def downgrade():
    op.drop_table('transactions')
    op.drop_table('distribution_runs')
    op.drop_table('rent_distributions')
    op.drop_table('rent_payments')
    op.drop_table('borrow_repayments')
    op.drop_table('borrow_collaterals')
    op.drop_index('uq_borrow_positions_one_active', table_name='borrow_positions')
    op.drop_table('borrow_positions')
    op.drop_table('holdings')
    op.drop_table('vault_accounts')
    op.drop_table('properties')
    op.drop_table('users')
