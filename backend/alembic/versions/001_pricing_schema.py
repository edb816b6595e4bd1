"""pricing_schema

Revision ID: 001_pricing_schema
Revises:
Create Date: 2026-10-18

Creates the pricing and authorization tables:
- roles, users (auth guards read these)
- pricing_settings (single active rate row, enforced by a partial unique index)
- margin_tiers (revenue brackets per settings row)
- quotes (lifecycle + authorization status, optimistic version column)
- quote_line_items (frozen minimum/ideal unit prices)
- authorization_events (append-only gate audit)

Every CREATE is guarded by an existence check so the migration is idempotent
when Base.metadata.create_all() already ran at startup.
"""
import logging
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from sqlalchemy import text

revision = '001_pricing_schema'
down_revision = None
branch_labels = None
depends_on = None

logger = logging.getLogger("alembic.001")

_TABLES_IN_DROP_ORDER = [
    'authorization_events',
    'quote_line_items',
    'quotes',
    'margin_tiers',
    'pricing_settings',
    'users',
    'roles',
]


def _table_exists(conn, table_name: str) -> bool:
    result = conn.execute(
        text(
            "SELECT EXISTS("
            "  SELECT 1 FROM information_schema.tables"
            "  WHERE table_name = :tname"
            ")"
        ),
        {"tname": table_name},
    )
    return bool(result.scalar())


def _rate_column(name: str, default: str = None, nullable: bool = False) -> sa.Column:
    if default is None:
        return sa.Column(name, sa.Numeric(6, 4), nullable=nullable)
    return sa.Column(name, sa.Numeric(6, 4), nullable=nullable, server_default=default)


def upgrade() -> None:
    conn = op.get_bind()

    # ── roles / users ─────────────────────────────────────────────────────────
    if not _table_exists(conn, 'roles'):
        op.create_table(
            'roles',
            sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
            sa.Column('name', sa.String(50), nullable=False, unique=True),
        )
        logger.info("Created table: roles")

    if not _table_exists(conn, 'users'):
        op.create_table(
            'users',
            sa.Column('id', postgresql.UUID(as_uuid=False), primary_key=True),
            sa.Column('email', sa.String(255), nullable=False, unique=True),
            sa.Column('full_name', sa.String(255), nullable=True),
            sa.Column('role_id', sa.Integer, sa.ForeignKey('roles.id'), nullable=True),
            sa.Column('is_active', sa.Boolean, server_default=sa.true()),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
        logger.info("Created table: users")

    # ── pricing_settings ──────────────────────────────────────────────────────
    if not _table_exists(conn, 'pricing_settings'):
        op.create_table(
            'pricing_settings',
            sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
            _rate_column('tax_rate', '0.0900'),
            _rate_column('commission_rate', '0.1500'),
            _rate_column('cash_discount_rate', '0.0500'),
            _rate_column('fallback_minimum_margin_rate', '0.2000', nullable=True),
            sa.Column('is_active', sa.Boolean, server_default=sa.true(), index=True),
            sa.Column('last_updated', sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column('updated_by', postgresql.UUID(as_uuid=False), sa.ForeignKey('users.id'), nullable=True),
        )
        logger.info("Created table: pricing_settings")
    else:
        logger.info("Table pricing_settings already exists, skipping create")
    # One active settings row at a time
    conn.execute(text(
        "CREATE UNIQUE INDEX IF NOT EXISTS uq_pricing_settings_one_active "
        "ON pricing_settings (is_active) WHERE is_active"
    ))

    # ── margin_tiers ──────────────────────────────────────────────────────────
    if not _table_exists(conn, 'margin_tiers'):
        op.create_table(
            'margin_tiers',
            sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
            sa.Column('settings_id', sa.Integer, sa.ForeignKey('pricing_settings.id'), nullable=False),
            sa.Column('min_revenue', sa.Numeric(14, 2), nullable=False, server_default='0'),
            sa.Column('max_revenue', sa.Numeric(14, 2), nullable=True),
            _rate_column('margin_rate'),
            _rate_column('minimum_margin_rate'),
            sa.Column('display_order', sa.Integer, server_default='0'),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
        logger.info("Created table: margin_tiers")
    else:
        logger.info("Table margin_tiers already exists, skipping create")

    # ── quotes ────────────────────────────────────────────────────────────────
    if not _table_exists(conn, 'quotes'):
        op.create_table(
            'quotes',
            sa.Column('id', postgresql.UUID(as_uuid=False), primary_key=True),
            sa.Column('quote_number', sa.String(40), nullable=False, unique=True),
            sa.Column('vendor_id', postgresql.UUID(as_uuid=False), sa.ForeignKey('users.id'), nullable=False),
            sa.Column('client_id', postgresql.UUID(as_uuid=False), sa.ForeignKey('users.id'), nullable=True),
            sa.Column('title', sa.String(255), nullable=False),
            sa.Column('discount_kind', sa.String(20), server_default='percentage'),
            sa.Column('discount_value', sa.Numeric(12, 2), server_default='0'),
            sa.Column('shipping_cost', sa.Numeric(12, 2), server_default='0'),
            sa.Column('subtotal', sa.Numeric(14, 2), server_default='0'),
            sa.Column('discount_amount', sa.Numeric(14, 2), server_default='0'),
            sa.Column('total_value', sa.Numeric(14, 2), server_default='0'),
            sa.Column('below_minimum', sa.Boolean, server_default=sa.false()),
            sa.Column('lifecycle_status', sa.String(30), server_default='draft', index=True),
            sa.Column('authorization_status', sa.String(20), server_default='none'),
            sa.Column('revision', sa.Integer, server_default='0'),
            sa.Column('rejection_reason', sa.Text, nullable=True),
            sa.Column('authorized_by', postgresql.UUID(as_uuid=False), nullable=True),
            sa.Column('authorized_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('version', sa.Integer, nullable=False, server_default='1'),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
        logger.info("Created table: quotes")
    else:
        logger.info("Table quotes already exists, skipping create")

    # ── quote_line_items ──────────────────────────────────────────────────────
    if not _table_exists(conn, 'quote_line_items'):
        op.create_table(
            'quote_line_items',
            sa.Column('id', postgresql.UUID(as_uuid=False), primary_key=True),
            sa.Column('quote_id', postgresql.UUID(as_uuid=False), sa.ForeignKey('quotes.id'), nullable=False),
            sa.Column('position', sa.Integer, server_default='0'),
            sa.Column('product_id', sa.String(100), nullable=True),
            sa.Column('description', sa.Text, nullable=True),
            sa.Column('cost_price', sa.Numeric(12, 4), nullable=False),
            sa.Column('quantity', sa.Numeric(12, 3), nullable=False),
            sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
            sa.Column('surcharge', sa.Numeric(12, 2), server_default='0'),
            sa.Column('minimum_unit_price', sa.Numeric(12, 2), nullable=False),
            sa.Column('ideal_unit_price', sa.Numeric(12, 2), nullable=False),
            _rate_column('margin_rate'),
            _rate_column('minimum_margin_rate'),
            sa.Column('total_price', sa.Numeric(14, 2), nullable=False),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
        logger.info("Created table: quote_line_items")
    else:
        logger.info("Table quote_line_items already exists, skipping create")

    # ── authorization_events ──────────────────────────────────────────────────
    if not _table_exists(conn, 'authorization_events'):
        op.create_table(
            'authorization_events',
            sa.Column('id', postgresql.UUID(as_uuid=False), primary_key=True),
            sa.Column('quote_id', postgresql.UUID(as_uuid=False), sa.ForeignKey('quotes.id'), nullable=False),
            sa.Column('action', sa.String(30), nullable=False),
            sa.Column('actor_id', postgresql.UUID(as_uuid=False), nullable=True),
            sa.Column('from_lifecycle', sa.String(30), nullable=False),
            sa.Column('to_lifecycle', sa.String(30), nullable=False),
            sa.Column('from_authorization', sa.String(20), nullable=False),
            sa.Column('to_authorization', sa.String(20), nullable=False),
            sa.Column('revision', sa.Integer, server_default='0'),
            sa.Column('reason', sa.Text, nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
        op.create_index('ix_authorization_events_quote', 'authorization_events', ['quote_id', 'created_at'])
        logger.info("Created table: authorization_events")
    else:
        logger.info("Table authorization_events already exists, skipping create")


def downgrade() -> None:
    conn = op.get_bind()
    for table_name in _TABLES_IN_DROP_ORDER:
        if _table_exists(conn, table_name):
            op.drop_table(table_name)
            logger.info(f"Dropped table: {table_name}")
