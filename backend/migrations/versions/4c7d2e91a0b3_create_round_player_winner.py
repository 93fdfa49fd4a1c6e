"""create player, round and winner tables

Revision ID: 4c7d2e91a0b3
Revises:
Create Date: 2026-10-19 00:00:00

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '4c7d2e91a0b3'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    existing_tables = set(insp.get_table_names())

    if 'player' not in existing_tables:
        op.create_table(
            'player',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('wallet', sa.String(length=64), nullable=False),
            sa.Column('staked_amount', sa.Float(), nullable=False, server_default='0'),
            sa.Column('score', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('last_active', sa.BigInteger(), nullable=True),
        )
        op.create_index('ix_player_wallet', 'player', ['wallet'], unique=True)

    if 'round' not in existing_tables:
        op.create_table(
            'round',
            sa.Column('id', sa.Integer(), primary_key=True, autoincrement=False),
            sa.Column('round_number', sa.Integer(), nullable=False, server_default='1'),
            sa.Column('target_position', sa.Text(), nullable=True),
            sa.Column('current_phase', sa.String(length=32), nullable=False),
            sa.Column('phase_start_time', sa.BigInteger(), nullable=False),
            sa.Column('round_end_time', sa.BigInteger(), nullable=False),
        )

    if 'winner' not in existing_tables:
        op.create_table(
            'winner',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('wallet', sa.String(length=64), nullable=False),
            sa.Column('amount', sa.Float(), nullable=False),
            sa.Column('round', sa.Integer(), nullable=False),
            sa.Column('created_at', sa.BigInteger(), nullable=False),
            sa.UniqueConstraint('round', 'wallet', name='uq_winner_round_wallet'),
        )
        op.create_index('ix_winner_wallet', 'winner', ['wallet'])
        op.create_index('ix_winner_round', 'winner', ['round'])


def downgrade():
    op.drop_index('ix_winner_round', table_name='winner')
    op.drop_index('ix_winner_wallet', table_name='winner')
    op.drop_table('winner')
    op.drop_table('round')
    op.drop_index('ix_player_wallet', table_name='player')
    op.drop_table('player')
