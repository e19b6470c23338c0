"""Initial schema: profiles, weddings, pending signups, Stripe event ledger, support tickets

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '0001_initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


SERVICE_ROLE_ONLY = ('pending_signups', 'stripe_events', 'support_tickets')


def upgrade() -> None:
    """Create the signup, tenant and billing tables."""

    op.create_table(
        'profiles',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('full_name', sa.String()),
        sa.Column('subscription_status', sa.String(), server_default='trial', nullable=False),
        sa.Column('subscription_end_date', sa.DateTime(timezone=True)),
        sa.Column('stripe_customer_id', sa.String()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint(
            "subscription_status IN ('trial', 'active', 'expired', 'cancelled')",
            name='profiles_subscription_status_check',
        ),
    )
    op.create_index('ix_profiles_email', 'profiles', ['email'])
    op.create_index('ix_profiles_stripe_customer_id', 'profiles', ['stripe_customer_id'], unique=True)

    op.create_table(
        'weddings',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            'owner_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('profiles.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('slug', sa.String(50), nullable=False),
        sa.Column('pin_code', sa.String(6), nullable=False),
        sa.Column('magic_token', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('bride_name', sa.String(), nullable=False),
        sa.Column('groom_name', sa.String(), nullable=False),
        sa.Column('wedding_date', sa.Date()),
        sa.Column('config', postgresql.JSONB(), server_default='{}', nullable=False),
        sa.Column('is_published', sa.Boolean(), server_default='true', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('owner_id', name='weddings_owner_id_key'),
    )
    op.create_index('ix_weddings_slug', 'weddings', ['slug'], unique=True)

    op.create_table(
        'pending_signups',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('stripe_session_id', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('partner1_name', sa.String(100), nullable=False),
        sa.Column('partner2_name', sa.String(100), nullable=False),
        sa.Column('wedding_date', sa.Date()),
        sa.Column('slug', sa.String(50), nullable=False),
        sa.Column('theme_id', sa.String(), server_default='classic', nullable=False),
        sa.Column('checkout_status', sa.String(), server_default='pending', nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint(
            "checkout_status IN ('pending', 'completed')",
            name='pending_signups_checkout_status_check',
        ),
    )
    op.create_index(
        'ix_pending_signups_stripe_session_id',
        'pending_signups',
        ['stripe_session_id'],
        unique=True,
    )
    op.create_index('idx_pending_signups_expires_at', 'pending_signups', ['expires_at'])
    # One live reservation per slug; completed rows keep their history
    op.create_index(
        'idx_pending_signups_active_slug',
        'pending_signups',
        ['slug'],
        unique=True,
        postgresql_where=sa.text('completed_at IS NULL'),
    )

    op.create_table(
        'stripe_events',
        sa.Column('event_id', sa.String(), primary_key=True),
        sa.Column('type', sa.String(), nullable=False),
        sa.Column('status', sa.String(), server_default='processing', nullable=False),
        sa.Column('error_message', sa.String()),
        sa.Column('processed_at', sa.DateTime(timezone=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint(
            "status IN ('processing', 'completed', 'failed')",
            name='stripe_events_status_check',
        ),
    )
    op.create_index('ix_stripe_events_type', 'stripe_events', ['type'])

    op.create_table(
        'support_tickets',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('kind', sa.String(), nullable=False),
        sa.Column('status', sa.String(), server_default='open', nullable=False),
        sa.Column('stripe_session_id', sa.String()),
        sa.Column('email', sa.String()),
        sa.Column('slug', sa.String()),
        sa.Column('user_id', sa.String()),
        sa.Column('details', postgresql.JSONB(), server_default='{}', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint(
            "kind IN ('slug_conflict_post_payment', 'orphaned_identity')",
            name='support_tickets_kind_check',
        ),
    )
    op.create_index('ix_support_tickets_kind', 'support_tickets', ['kind'])
    op.create_index('ix_support_tickets_stripe_session_id', 'support_tickets', ['stripe_session_id'])

    # Enable RLS
    for table in ('profiles', 'weddings') + SERVICE_ROLE_ONLY:
        op.execute(f'ALTER TABLE {table} ENABLE ROW LEVEL SECURITY')

    # RLS Policy: Users can only see their own profile and wedding
    op.execute("""
        CREATE POLICY "Users can view own profile"
        ON profiles FOR SELECT
        TO authenticated
        USING (id = auth.uid())
    """)
    op.execute("""
        CREATE POLICY "Owners can view own wedding"
        ON weddings FOR SELECT
        TO authenticated
        USING (owner_id = auth.uid())
    """)

    # RLS Policy: Service role manages everything (backend, webhooks)
    for table in ('profiles', 'weddings') + SERVICE_ROLE_ONLY:
        op.execute(f"""
            CREATE POLICY "Service role manages {table}"
            ON {table} FOR ALL
            TO service_role
            USING (true)
            WITH CHECK (true)
        """)


def downgrade() -> None:
    """Drop all tables created by this revision."""

    for table in ('support_tickets', 'stripe_events', 'pending_signups', 'weddings', 'profiles'):
        op.drop_table(table)
