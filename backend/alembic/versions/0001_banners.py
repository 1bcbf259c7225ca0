"""banners and banner_locations tables

Revision ID: 0001_banners
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0001_banners'
down_revision = None
branch_labels = None
depends_on = None

def upgrade():
    op.create_table(
        'banners',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('title', sa.String(length=100), nullable=False),
        sa.Column('description', sa.String(length=500), nullable=True),
        sa.Column('image', sa.Text(), nullable=False),
        sa.Column('link', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('display_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('category', sa.String(length=32), nullable=False, server_default='promotional'),
        sa.Column('audience', sa.String(length=32), nullable=False, server_default='all'),
        sa.Column('start_at', sa.DateTime(), nullable=False),
        sa.Column('end_at', sa.DateTime(), nullable=True),
        sa.Column('impressions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('clicks', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_by', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('display_order >= 0', name='ck_banners_order_non_negative'),
        sa.CheckConstraint('impressions >= 0 AND clicks >= 0', name='ck_banners_counters_non_negative'),
    )
    op.create_index('ix_banners_id', 'banners', ['id'])
    op.create_index('ix_banners_is_active', 'banners', ['is_active'])
    op.create_index('ix_banners_display_order', 'banners', ['display_order'])
    op.create_index('ix_banners_category', 'banners', ['category'])
    op.create_index('ix_banners_window', 'banners', ['start_at', 'end_at'])

    op.create_table(
        'banner_locations',
        sa.Column('banner_id', sa.Integer(), sa.ForeignKey('banners.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('location', sa.String(length=32), primary_key=True),
    )
    op.create_index('ix_banner_locations_location', 'banner_locations', ['location'])


def downgrade():
    op.drop_index('ix_banner_locations_location', table_name='banner_locations')
    op.drop_table('banner_locations')
    op.drop_index('ix_banners_window', table_name='banners')
    op.drop_index('ix_banners_category', table_name='banners')
    op.drop_index('ix_banners_display_order', table_name='banners')
    op.drop_index('ix_banners_is_active', table_name='banners')
    op.drop_index('ix_banners_id', table_name='banners')
    op.drop_table('banners')
