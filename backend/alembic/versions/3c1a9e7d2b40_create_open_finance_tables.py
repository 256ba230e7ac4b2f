"""create open finance tables

Revision ID: 3c1a9e7d2b40
Revises:
Create Date: 2026-10-18 10:12:03.418552

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3c1a9e7d2b40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table('open_finance_institutions',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('code', sa.String(length=50), nullable=False),
    sa.Column('name', sa.String(), nullable=False),
    sa.Column('api_base_url', sa.String(length=512), nullable=False),
    sa.Column('authorization_url', sa.String(length=512), nullable=False),
    sa.Column('token_url', sa.String(length=512), nullable=False),
    sa.Column('revocation_url', sa.String(length=512), nullable=True),
    sa.Column('certificate_required', sa.Boolean(), nullable=False),
    sa.Column('is_active', sa.Boolean(), nullable=False),
    sa.Column('last_refreshed_at', sa.DateTime(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.Column('updated_at', sa.DateTime(), nullable=True),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_open_finance_institutions_code'), 'open_finance_institutions', ['code'], unique=True)
    op.create_index(op.f('ix_open_finance_institutions_is_active'), 'open_finance_institutions', ['is_active'], unique=False)

    op.create_table('open_finance_consents',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('user_id', sa.String(length=36), nullable=False),
    sa.Column('institution_id', sa.String(length=36), nullable=False),
    sa.Column('status', sa.String(length=50), nullable=False),
    sa.Column('scopes', sa.Text(), nullable=False),
    sa.Column('state_token', sa.String(length=64), nullable=True),
    sa.Column('access_token', sa.Text(), nullable=True),
    sa.Column('refresh_token', sa.Text(), nullable=True),
    sa.Column('expires_at', sa.DateTime(), nullable=True),
    sa.Column('revoked_at', sa.DateTime(), nullable=True),
    sa.Column('failure_reason', sa.Text(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.Column('updated_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['institution_id'], ['open_finance_institutions.id'], ),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_open_finance_consents_user_id'), 'open_finance_consents', ['user_id'], unique=False)
    op.create_index(op.f('ix_open_finance_consents_institution_id'), 'open_finance_consents', ['institution_id'], unique=False)
    op.create_index(op.f('ix_open_finance_consents_status'), 'open_finance_consents', ['status'], unique=False)
    op.create_index(op.f('ix_open_finance_consents_expires_at'), 'open_finance_consents', ['expires_at'], unique=False)

    op.create_table('connected_accounts',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('user_id', sa.String(length=36), nullable=False),
    sa.Column('consent_id', sa.String(length=36), nullable=False),
    sa.Column('institution_id', sa.String(length=36), nullable=False),
    sa.Column('external_account_id', sa.String(length=255), nullable=False),
    sa.Column('account_type', sa.String(length=50), nullable=False),
    sa.Column('account_number', sa.String(length=100), nullable=True),
    sa.Column('branch', sa.String(length=50), nullable=True),
    sa.Column('account_holder_name', sa.String(length=255), nullable=True),
    sa.Column('balance', sa.Numeric(precision=19, scale=2), nullable=True),
    sa.Column('currency', sa.String(length=3), nullable=False),
    sa.Column('sync_status', sa.String(length=50), nullable=False),
    sa.Column('sync_started_at', sa.DateTime(), nullable=True),
    sa.Column('last_synced_at', sa.DateTime(), nullable=True),
    sa.Column('transactions_synced_at', sa.DateTime(), nullable=True),
    sa.Column('last_sync_error', sa.Text(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.Column('updated_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['consent_id'], ['open_finance_consents.id'], ),
    sa.ForeignKeyConstraint(['institution_id'], ['open_finance_institutions.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('institution_id', 'external_account_id', name='uix_connected_account_institution_external_id')
    )
    op.create_index(op.f('ix_connected_accounts_user_id'), 'connected_accounts', ['user_id'], unique=False)
    op.create_index(op.f('ix_connected_accounts_consent_id'), 'connected_accounts', ['consent_id'], unique=False)
    op.create_index(op.f('ix_connected_accounts_institution_id'), 'connected_accounts', ['institution_id'], unique=False)
    op.create_index(op.f('ix_connected_accounts_sync_status'), 'connected_accounts', ['sync_status'], unique=False)
    op.create_index(op.f('ix_connected_accounts_last_synced_at'), 'connected_accounts', ['last_synced_at'], unique=False)

    op.create_table('account_sync_logs',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('account_id', sa.String(length=36), nullable=False),
    sa.Column('sync_type', sa.String(length=50), nullable=False),
    sa.Column('status', sa.String(length=50), nullable=False),
    sa.Column('records_imported', sa.Integer(), nullable=False),
    sa.Column('error_message', sa.Text(), nullable=True),
    sa.Column('synced_at', sa.DateTime(), nullable=False),
    sa.ForeignKeyConstraint(['account_id'], ['connected_accounts.id'], ),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_account_sync_logs_account_id'), 'account_sync_logs', ['account_id'], unique=False)
    op.create_index(op.f('ix_account_sync_logs_sync_type'), 'account_sync_logs', ['sync_type'], unique=False)
    op.create_index(op.f('ix_account_sync_logs_status'), 'account_sync_logs', ['status'], unique=False)
    op.create_index(op.f('ix_account_sync_logs_synced_at'), 'account_sync_logs', ['synced_at'], unique=False)

    op.create_table('transaction_categories',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('name', sa.String(), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('name')
    )

    op.create_table('transaction_source_entities',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('user_id', sa.String(length=36), nullable=False),
    sa.Column('name', sa.String(), nullable=False),
    sa.Column('source_type', sa.String(length=50), nullable=False),
    sa.Column('bank_name', sa.String(), nullable=True),
    sa.Column('account_number', sa.String(length=100), nullable=True),
    sa.Column('is_active', sa.Boolean(), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('user_id', 'name', name='uix_source_entity_user_name')
    )
    op.create_index(op.f('ix_transaction_source_entities_user_id'), 'transaction_source_entities', ['user_id'], unique=False)

    op.create_table('transactions',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('user_id', sa.String(length=36), nullable=False),
    sa.Column('connected_account_id', sa.String(length=36), nullable=True),
    sa.Column('description', sa.String(), nullable=False),
    sa.Column('amount', sa.Numeric(precision=19, scale=2), nullable=False),
    sa.Column('type', sa.String(length=20), nullable=False),
    sa.Column('subtype', sa.String(length=20), nullable=False),
    sa.Column('source', sa.String(length=50), nullable=False),
    sa.Column('transaction_date', sa.DateTime(), nullable=False),
    sa.Column('external_reference', sa.String(length=255), nullable=True),
    sa.Column('bank_reference', sa.String(length=255), nullable=True),
    sa.Column('category_id', sa.String(length=36), nullable=True),
    sa.Column('source_entity_id', sa.String(length=36), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['category_id'], ['transaction_categories.id'], ),
    sa.ForeignKeyConstraint(['connected_account_id'], ['connected_accounts.id'], ),
    sa.ForeignKeyConstraint(['source_entity_id'], ['transaction_source_entities.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('connected_account_id', 'external_reference', name='uix_transaction_account_external_reference')
    )
    op.create_index(op.f('ix_transactions_user_id'), 'transactions', ['user_id'], unique=False)
    op.create_index(op.f('ix_transactions_connected_account_id'), 'transactions', ['connected_account_id'], unique=False)
    op.create_index(op.f('ix_transactions_external_reference'), 'transactions', ['external_reference'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('transactions')
    op.drop_table('transaction_source_entities')
    op.drop_table('transaction_categories')
    op.drop_table('account_sync_logs')
    op.drop_table('connected_accounts')
    op.drop_table('open_finance_consents')
    op.drop_table('open_finance_institutions')
