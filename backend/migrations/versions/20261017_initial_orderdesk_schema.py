"""initial orderdesk schema

Revision ID: 20261017_initial
Revises:
Create Date: 2026-10-17 00:00:00.000000

Creates the complete OrderDesk schema:
- users / roles / permissions / session_tokens: authentication and RBAC
- document_sequences: per-type, per-year document number counters
- orders, expense_orders, quotes (+ items, payments, discounts)
- approval request tables with partial unique indexes on PENDING rows
- editable_status_policies, notifications, audit_logs
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261017_initial'
down_revision = None
branch_labels = None
depends_on = None


PENDING_ONLY = sa.text("status = 'PENDING'")


def _financial_columns():
    """Computed money fields; all cents, tax rate in basis points."""
    return [
        sa.Column(name, sa.Integer(), nullable=False, server_default='0')
        for name in (
            'subtotal_cents',
            'tax_rate_bps',
            'tax_cents',
            'discount_cents',
            'total_cents',
            'paid_cents',
            'balance_cents',
        )
    ]


def _create_line_tables(prefix, parent_table, parent_key, with_payments=True):
    op.create_table(
        f'{prefix}_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column(parent_key, sa.Integer(), nullable=False),
        sa.Column('description', sa.String(length=500), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('total_cents', sa.Integer(), nullable=False),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint([parent_key], [f'{parent_table}.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index(f'ix_{prefix}_items_{parent_key}', f'{prefix}_items', [parent_key])

    op.create_table(
        f'{prefix}_discounts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column(parent_key, sa.Integer(), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('applied_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint([parent_key], [f'{parent_table}.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index(f'ix_{prefix}_discounts_{parent_key}', f'{prefix}_discounts', [parent_key])

    if not with_payments:
        return

    op.create_table(
        f'{prefix}_payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column(parent_key, sa.Integer(), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('method', sa.String(length=16), nullable=False),
        sa.Column('reference', sa.String(length=128), nullable=True),
        sa.Column('paid_at', sa.DateTime(), nullable=False),
        sa.Column('recorded_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint([parent_key], [f'{parent_table}.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index(f'ix_{prefix}_payments_{parent_key}', f'{prefix}_payments', [parent_key])


def _approval_columns():
    return [
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('requested_status', sa.String(length=32), nullable=True),
        sa.Column('justification', sa.Text(), nullable=True),
        sa.Column('review_notes', sa.Text(), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('requested_by_user_id', sa.Integer(), nullable=False),
        sa.Column('reviewed_by_user_id', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['requested_by_user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['reviewed_by_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
    ]


def _create_approval_indexes(table, resource_key, pending_columns):
    op.create_index(f'ix_{table}_status', table, ['status'])
    op.create_index(f'ix_{table}_expires_at', table, ['expires_at'])
    op.create_index(f'ix_{table}_requested_by_user_id', table, ['requested_by_user_id'])
    op.create_index(f'ix_{table}_{resource_key}', table, [resource_key])
    # At most one PENDING request per requester (and target)
    op.create_index(
        f'uq_{table}_pending',
        table,
        pending_columns,
        unique=True,
        sqlite_where=PENDING_ONLY,
        postgresql_where=PENDING_ONLY,
    )


def upgrade():
    # ============================================================================
    # Authentication / RBAC
    # ============================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('full_name', sa.String(length=128), nullable=True),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('last_login_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_users_username', 'users', ['username'], unique=True)

    op.create_table(
        'roles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'user_roles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('role_id', sa.Integer(), nullable=False),
        sa.Column('assigned_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['role_id'], ['roles.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'role_id', name='uq_user_roles'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_user_roles_user_id', 'user_roles', ['user_id'])
    op.create_index('ix_user_roles_role_id', 'user_roles', ['role_id'])

    op.create_table(
        'permissions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category', sa.String(length=64), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_permissions_code', 'permissions', ['code'], unique=True)
    op.create_index('ix_permissions_category', 'permissions', ['category'])

    op.create_table(
        'role_permissions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('role_id', sa.Integer(), nullable=False),
        sa.Column('permission_id', sa.Integer(), nullable=False),
        sa.Column('granted_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['role_id'], ['roles.id'], ),
        sa.ForeignKeyConstraint(['permission_id'], ['permissions.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('role_id', 'permission_id', name='uq_role_permissions'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_role_permissions_role_id', 'role_permissions', ['role_id'])
    op.create_index('ix_role_permissions_permission_id', 'role_permissions', ['permission_id'])

    op.create_table(
        'session_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('token_hash', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('last_used_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('is_revoked', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('revoked_at', sa.DateTime(), nullable=True),
        sa.Column('revoked_reason', sa.String(length=255), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_session_tokens_user_id', 'session_tokens', ['user_id'])
    op.create_index('ix_session_tokens_token_hash', 'session_tokens', ['token_hash'], unique=True)
    op.create_index('ix_session_tokens_expires_at', 'session_tokens', ['expires_at'])
    op.create_index('ix_session_tokens_user_active', 'session_tokens', ['user_id', 'is_revoked'])

    # ============================================================================
    # document_sequences: one counter row per document type
    # ============================================================================
    op.create_table(
        'document_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('document_type', sa.String(length=32), nullable=False),
        sa.Column('prefix', sa.String(length=16), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('last_number', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('document_type', name='uq_document_sequences_type'),
        sqlite_autoincrement=True
    )

    # ============================================================================
    # orders
    # ============================================================================
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_number', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='DRAFT'),
        sa.Column('client_name', sa.String(length=255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('delivery_date', sa.Date(), nullable=True),
        sa.Column('previous_delivery_date', sa.Date(), nullable=True),
        sa.Column('delivery_date_reason', sa.String(length=255), nullable=True),
        sa.Column('source_quote_id', sa.Integer(), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('status_changed_at', sa.DateTime(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_financial_columns(),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_number', name='uq_orders_order_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_source_quote_id', 'orders', ['source_quote_id'])
    op.create_index('ix_orders_status_created', 'orders', ['status', 'created_at'])
    _create_line_tables('order', 'orders', 'order_id')

    # ============================================================================
    # expense_orders
    # ============================================================================
    op.create_table(
        'expense_orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('expense_number', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='DRAFT'),
        sa.Column('payee_name', sa.String(length=255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('authorized_by_user_id', sa.Integer(), nullable=True),
        sa.Column('authorized_at', sa.DateTime(), nullable=True),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('status_changed_at', sa.DateTime(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_financial_columns(),
        sa.ForeignKeyConstraint(['authorized_by_user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('expense_number', name='uq_expense_orders_expense_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_expense_orders_status', 'expense_orders', ['status'])
    op.create_index('ix_expense_orders_status_created', 'expense_orders', ['status', 'created_at'])
    _create_line_tables('expense_order', 'expense_orders', 'expense_order_id')

    # ============================================================================
    # quotes (no payments)
    # ============================================================================
    op.create_table(
        'quotes',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('quote_number', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='DRAFT'),
        sa.Column('client_name', sa.String(length=255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('valid_until', sa.Date(), nullable=True),
        sa.Column('converted_order_id', sa.Integer(), nullable=True),
        sa.Column('converted_at', sa.DateTime(), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_financial_columns(),
        sa.ForeignKeyConstraint(['converted_order_id'], ['orders.id'], ),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('quote_number', name='uq_quotes_quote_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_quotes_status', 'quotes', ['status'])
    _create_line_tables('quote', 'quotes', 'quote_id', with_payments=False)

    # ============================================================================
    # Approval requests
    # ============================================================================
    op.create_table(
        'order_edit_requests',
        *_approval_columns(),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sqlite_autoincrement=True
    )
    _create_approval_indexes('order_edit_requests', 'order_id', ['order_id', 'requested_by_user_id'])

    op.create_table(
        'order_status_change_requests',
        *_approval_columns(),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('current_status', sa.String(length=32), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sqlite_autoincrement=True
    )
    _create_approval_indexes(
        'order_status_change_requests',
        'order_id',
        ['order_id', 'requested_by_user_id', 'requested_status'],
    )

    op.create_table(
        'expense_order_auth_requests',
        *_approval_columns(),
        sa.Column('expense_order_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['expense_order_id'], ['expense_orders.id'], ),
        sqlite_autoincrement=True
    )
    _create_approval_indexes(
        'expense_order_auth_requests',
        'expense_order_id',
        ['expense_order_id', 'requested_by_user_id', 'requested_status'],
    )

    op.create_table(
        'editable_status_policies',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_status', sa.String(length=32), nullable=False),
        sa.Column('allow_edit_requests', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('updated_by_user_id', sa.Integer(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['updated_by_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_status', name='uq_editable_status_policies_status'),
        sqlite_autoincrement=True
    )

    # ============================================================================
    # notifications / audit_logs: written after commit
    # ============================================================================
    op.create_table(
        'notifications',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=64), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('related_id', sa.Integer(), nullable=True),
        sa.Column('related_type', sa.String(length=64), nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('read_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])
    op.create_index('ix_notifications_user_read', 'notifications', ['user_id', 'is_read'])

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(length=16), nullable=False),
        sa.Column('resource_type', sa.String(length=64), nullable=False),
        sa.Column('resource_id', sa.Integer(), nullable=True),
        sa.Column('actor_user_id', sa.Integer(), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.Column('before_data', sa.JSON(), nullable=True),
        sa.Column('after_data', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['actor_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_audit_logs_actor_user_id', 'audit_logs', ['actor_user_id'])
    op.create_index('ix_audit_logs_created_at', 'audit_logs', ['created_at'])
    op.create_index('ix_audit_logs_resource', 'audit_logs', ['resource_type', 'resource_id'])


def downgrade():
    for table in (
        'audit_logs',
        'notifications',
        'editable_status_policies',
        'expense_order_auth_requests',
        'order_status_change_requests',
        'order_edit_requests',
        'quote_discounts',
        'quote_items',
        'quotes',
        'expense_order_payments',
        'expense_order_discounts',
        'expense_order_items',
        'expense_orders',
        'order_payments',
        'order_discounts',
        'order_items',
        'orders',
        'document_sequences',
        'session_tokens',
        'role_permissions',
        'permissions',
        'user_roles',
        'roles',
        'users',
    ):
        op.drop_table(table)
