"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-01-12 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None

market_status = sa.Enum('Draft', 'Open', 'Closed', 'Settled', name='market_status')


def upgrade() -> None:
    # Create protocol table
    op.create_table(
        'protocol',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('admin_authority', sa.String(44), nullable=False),
        sa.Column('treasury', sa.String(44), nullable=False),
        sa.Column('protocol_fee_bps', sa.Integer(), nullable=False),
        sa.Column('paused', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('market_count', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('protocol_fee_bps >= 0 AND protocol_fee_bps <= 10000', name='protocol_fee_bps_check'),
        sa.PrimaryKeyConstraint('id')
    )

    # Create markets table
    op.create_table(
        'markets',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('market_id', sa.BigInteger(), nullable=False),
        sa.Column('protocol_id', sa.Integer(), nullable=False),
        sa.Column('category_id', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('status', market_status, nullable=False, server_default='Draft'),
        sa.Column('start_ts', sa.BigInteger(), nullable=False),
        sa.Column('end_ts', sa.BigInteger(), nullable=False),
        sa.Column('item_count', sa.Integer(), nullable=False),
        sa.Column('items_hash', sa.String(64), nullable=False),
        sa.Column('token_mint', sa.String(44), nullable=False),
        sa.Column('vault', sa.String(44), nullable=False, server_default=''),
        sa.Column('winning_item_index', sa.Integer(), nullable=True),
        sa.Column('total_raw_stake', sa.Numeric(20, 0), nullable=False, server_default='0'),
        sa.Column('total_effective_stake', sa.Numeric(39, 0), nullable=False, server_default='0'),
        sa.Column('protocol_fee_amount', sa.Numeric(20, 0), nullable=True),
        sa.Column('distributable_pool', sa.Numeric(20, 0), nullable=True),
        sa.Column('total_winning_effective_stake', sa.Numeric(39, 0), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('item_count >= 2 AND item_count <= 255', name='markets_item_count_check'),
        sa.CheckConstraint('end_ts > start_ts', name='markets_window_check'),
        sa.ForeignKeyConstraint(['protocol_id'], ['protocol.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_markets_market_id'), 'markets', ['market_id'], unique=True)
    op.create_index(op.f('ix_markets_status'), 'markets', ['status'], unique=False)
    op.create_index(op.f('ix_markets_end_ts'), 'markets', ['end_ts'], unique=False)
    op.create_index('idx_markets_status_end_ts', 'markets', ['status', 'end_ts'], unique=False)

    # Create positions table
    op.create_table(
        'positions',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('market_ref', sa.Integer(), nullable=False),
        sa.Column('wallet', sa.String(44), nullable=False),
        sa.Column('selected_item_index', sa.Integer(), nullable=False),
        sa.Column('raw_stake', sa.Numeric(20, 0), nullable=False),
        sa.Column('effective_stake', sa.Numeric(39, 0), nullable=False),
        sa.Column('fairscore', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('reputation_multiplier', sa.Double(), nullable=False, server_default='1.0'),
        sa.Column('timing_multiplier', sa.Double(), nullable=False, server_default='1.0'),
        sa.Column('claimed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('raw_stake > 0', name='positions_raw_stake_check'),
        sa.ForeignKeyConstraint(['market_ref'], ['markets.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('market_ref', 'wallet', name='uq_positions_market_wallet')
    )
    op.create_index(op.f('ix_positions_market_ref'), 'positions', ['market_ref'], unique=False)
    op.create_index(op.f('ix_positions_wallet'), 'positions', ['wallet'], unique=False)
    op.create_index('idx_positions_market_item', 'positions', ['market_ref', 'selected_item_index'], unique=False)


def downgrade() -> None:
    op.drop_table('positions')
    op.drop_table('markets')
    op.drop_table('protocol')
    market_status.drop(op.get_bind(), checkfirst=True)
