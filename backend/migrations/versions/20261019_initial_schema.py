"""Initial schema: listings, price history, audit log, approval queue, cost breakdown

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19

Enum columns are stored as their string values (VARCHAR(32), no native enum).
audit_log is append-only; nothing in the application updates or deletes it.
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. LISTINGS
    # ==========================================================================
    op.create_table('listings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('source', sa.String(length=32), nullable=False),
        sa.Column('source_id', sa.String(length=128), nullable=False),
        sa.Column('source_url', sa.String(length=1024), nullable=False),
        sa.Column('vin', sa.String(length=17), nullable=True),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('make', sa.String(length=64), nullable=False),
        sa.Column('model', sa.String(length=64), nullable=False),
        sa.Column('trim', sa.String(length=64), nullable=True),
        sa.Column('mileage_km', sa.Integer(), nullable=True),
        sa.Column('price', sa.Integer(), nullable=True),
        sa.Column('seller_type', sa.String(length=32), nullable=True),
        sa.Column('seller_name', sa.String(length=255), nullable=True),
        sa.Column('seller_phone', sa.String(length=32), nullable=True),
        sa.Column('seller_email', sa.String(length=255), nullable=True),
        sa.Column('dealer_rating', sa.Float(), nullable=True),
        sa.Column('city', sa.String(length=128), nullable=True),
        sa.Column('province', sa.String(length=8), nullable=True),
        sa.Column('postal_code', sa.String(length=16), nullable=True),
        sa.Column('distance_km', sa.Integer(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('info_status', sa.String(length=32), nullable=False),
        sa.Column('score', sa.Float(), nullable=True),
        sa.Column('red_flags', sa.JSON(), nullable=True),
        sa.Column('ai_analysis', sa.JSON(), nullable=True),
        sa.Column('carfax_received', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('accident_count', sa.Integer(), nullable=True),
        sa.Column('owner_count', sa.Integer(), nullable=True),
        sa.Column('service_record_count', sa.Integer(), nullable=True),
        sa.Column('carfax_summary', sa.Text(), nullable=True),
        sa.Column('last_contacted_at', sa.DateTime(), nullable=True),
        sa.Column('contact_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('first_response_at', sa.DateTime(), nullable=True),
        sa.Column('last_seller_response_at', sa.DateTime(), nullable=True),
        sa.Column('last_our_response_at', sa.DateTime(), nullable=True),
        sa.Column('viewing_scheduled_for', sa.DateTime(), nullable=True),
        sa.Column('conversation', sa.JSON(), nullable=False),
        sa.Column('readiness_score', sa.Integer(), nullable=True),
        sa.Column('price_negotiated', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('negotiated_price', sa.Integer(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('discovered_at', sa.DateTime(), nullable=False),
        sa.Column('analyzed_at', sa.DateTime(), nullable=True),
        sa.Column('contacted_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('source', 'source_id', name='uq_listings_source_source_id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('listings', schema=None) as batch_op:
        batch_op.create_index('ix_listings_status', ['status'], unique=False)
        batch_op.create_index('ix_listings_score', ['score'], unique=False)
        batch_op.create_index(batch_op.f('ix_listings_source'), ['source'], unique=False)
        batch_op.create_index(batch_op.f('ix_listings_vin'), ['vin'], unique=False)

    # ==========================================================================
    # 2. PRICE HISTORY
    # ==========================================================================
    op.create_table('price_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('listing_id', sa.Integer(), nullable=False),
        sa.Column('price', sa.Integer(), nullable=False),
        sa.Column('recorded_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['listing_id'], ['listings.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('price_history', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_price_history_listing_id'), ['listing_id'], unique=False)

    # ==========================================================================
    # 3. AUDIT LOG (append-only)
    # ==========================================================================
    op.create_table('audit_log',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('listing_id', sa.Integer(), nullable=True),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('from_state', sa.String(length=32), nullable=True),
        sa.Column('to_state', sa.String(length=32), nullable=True),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('reasoning', sa.Text(), nullable=True),
        sa.Column('context', sa.JSON(), nullable=True),
        sa.Column('triggered_by', sa.String(length=32), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['listing_id'], ['listings.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('audit_log', schema=None) as batch_op:
        batch_op.create_index('ix_audit_log_listing_created', ['listing_id', 'created_at'], unique=False)
        batch_op.create_index('ix_audit_log_action', ['action'], unique=False)
        batch_op.create_index(batch_op.f('ix_audit_log_listing_id'), ['listing_id'], unique=False)

    # ==========================================================================
    # 4. APPROVAL QUEUE
    # ==========================================================================
    op.create_table('approval_queue',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('listing_id', sa.Integer(), nullable=True),
        sa.Column('action_type', sa.String(length=64), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('reasoning', sa.Text(), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('checkpoint_type', sa.String(length=64), nullable=True),
        sa.Column('threshold_value', sa.String(length=64), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('resolved_by', sa.String(length=16), nullable=True),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.Column('resolution_notes', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['listing_id'], ['listings.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('approval_queue', schema=None) as batch_op:
        batch_op.create_index('ix_approval_queue_status_created', ['status', 'created_at'], unique=False)
        batch_op.create_index(batch_op.f('ix_approval_queue_listing_id'), ['listing_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_approval_queue_action_type'), ['action_type'], unique=False)

    # ==========================================================================
    # 5. COST BREAKDOWN (one snapshot per listing)
    # ==========================================================================
    op.create_table('cost_breakdown',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('listing_id', sa.Integer(), nullable=False),
        sa.Column('asking_price', sa.Integer(), nullable=False),
        sa.Column('negotiated_price', sa.Integer(), nullable=True),
        sa.Column('effective_price', sa.Integer(), nullable=False),
        sa.Column('fees', sa.JSON(), nullable=False),
        sa.Column('total_fees', sa.Integer(), nullable=False),
        sa.Column('taxable_amount', sa.Integer(), nullable=False),
        sa.Column('tax_rate', sa.Numeric(precision=6, scale=4), nullable=False),
        sa.Column('tax_amount', sa.Integer(), nullable=False),
        sa.Column('registration_included', sa.Boolean(), nullable=False),
        sa.Column('plate_transfer', sa.Boolean(), nullable=False),
        sa.Column('registration_cost', sa.Integer(), nullable=False),
        sa.Column('total_estimated_cost', sa.Integer(), nullable=False),
        sa.Column('budget', sa.Integer(), nullable=False),
        sa.Column('remaining_budget', sa.Integer(), nullable=False),
        sa.Column('within_budget', sa.Boolean(), nullable=False),
        sa.Column('calculated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['listing_id'], ['listings.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('listing_id'),
        sqlite_autoincrement=True
    )


def downgrade():
    op.drop_table('cost_breakdown')

    with op.batch_alter_table('approval_queue', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_approval_queue_action_type'))
        batch_op.drop_index(batch_op.f('ix_approval_queue_listing_id'))
        batch_op.drop_index('ix_approval_queue_status_created')
    op.drop_table('approval_queue')

    with op.batch_alter_table('audit_log', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_audit_log_listing_id'))
        batch_op.drop_index('ix_audit_log_action')
        batch_op.drop_index('ix_audit_log_listing_created')
    op.drop_table('audit_log')

    with op.batch_alter_table('price_history', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_price_history_listing_id'))
    op.drop_table('price_history')

    with op.batch_alter_table('listings', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_listings_vin'))
        batch_op.drop_index(batch_op.f('ix_listings_source'))
        batch_op.drop_index('ix_listings_score')
        batch_op.drop_index('ix_listings_status')
    op.drop_table('listings')
