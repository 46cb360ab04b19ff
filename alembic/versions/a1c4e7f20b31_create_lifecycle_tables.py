"""Create client, campaign cache and campaign summary tables

Revision ID: a1c4e7f20b31
Revises:
Create Date: 2025-01-06

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a1c4e7f20b31'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # clients
    op.create_table(
        'clients',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('meta_ad_account_id', sa.String(), nullable=True),
        sa.Column('google_ads_customer_id', sa.String(), nullable=True),
        sa.Column('is_active', sa.Boolean(), default=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_clients_id', 'clients', ['id'])
    op.create_index('ix_clients_is_active', 'clients', ['is_active'])

    # campaign_cache
    op.create_table(
        'campaign_cache',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('client_id', sa.String(), nullable=False),
        sa.Column('platform', sa.String(), nullable=False),
        sa.Column('period_id', sa.String(), nullable=False),
        sa.Column('scope', sa.String(), nullable=False),
        sa.Column('period_start', sa.Date(), nullable=False),
        sa.Column('period_end', sa.Date(), nullable=False),
        sa.Column('aggregated_metrics', sa.JSON(), nullable=False),
        sa.Column('raw_campaign_rows', sa.JSON(), nullable=False),
        sa.Column('last_refreshed_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('client_id', 'platform', 'period_id', name='uq_campaign_cache_key'),
    )
    op.create_index('ix_campaign_cache_id', 'campaign_cache', ['id'])
    op.create_index('ix_campaign_cache_client_id', 'campaign_cache', ['client_id'])
    op.create_index('ix_campaign_cache_platform', 'campaign_cache', ['platform'])
    op.create_index('ix_campaign_cache_period_id', 'campaign_cache', ['period_id'])
    op.create_index('ix_campaign_cache_scope', 'campaign_cache', ['scope'])
    op.create_index('ix_campaign_cache_last_refreshed_at', 'campaign_cache', ['last_refreshed_at'])

    # campaign_summaries
    op.create_table(
        'campaign_summaries',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('client_id', sa.String(), nullable=False),
        sa.Column('summary_type', sa.String(), nullable=False),
        sa.Column('summary_date', sa.Date(), nullable=False),
        sa.Column('platform', sa.String(), nullable=False),
        sa.Column('aggregated_metrics', sa.JSON(), nullable=False),
        sa.Column('raw_campaign_rows', sa.JSON(), nullable=False),
        sa.Column('data_source', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint(
            'client_id', 'summary_type', 'summary_date', 'platform',
            name='uq_campaign_summaries_key'
        ),
    )
    op.create_index('ix_campaign_summaries_id', 'campaign_summaries', ['id'])
    op.create_index('ix_campaign_summaries_client_id', 'campaign_summaries', ['client_id'])
    op.create_index('ix_campaign_summaries_summary_type', 'campaign_summaries', ['summary_type'])
    op.create_index('ix_campaign_summaries_summary_date', 'campaign_summaries', ['summary_date'])
    op.create_index('ix_campaign_summaries_platform', 'campaign_summaries', ['platform'])
    op.create_index('ix_campaign_summaries_created_at', 'campaign_summaries', ['created_at'])


def downgrade() -> None:
    op.drop_table('campaign_summaries')
    op.drop_table('campaign_cache')
    op.drop_table('clients')
