"""Add country admission rules to raffles and country to users

Revision ID: duxxan_country_002
Revises: duxxan_initial_001
Create Date: 2026-10-19 12:00:00

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = 'duxxan_country_002'
down_revision = 'duxxan_initial_001'
branch_labels = None
depends_on = None


def upgrade():
    op.add_column('users', sa.Column('country', sa.String(2), nullable=True))

    op.add_column('raffles', sa.Column('country_restriction', sa.String(20), nullable=False, server_default='all'))
    op.add_column('raffles', sa.Column('allowed_countries', sa.JSON(), nullable=True))
    op.add_column('raffles', sa.Column('excluded_countries', sa.JSON(), nullable=True))


def downgrade():
    op.drop_column('raffles', 'excluded_countries')
    op.drop_column('raffles', 'allowed_countries')
    op.drop_column('raffles', 'country_restriction')
    op.drop_column('users', 'country')
