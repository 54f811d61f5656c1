"""Create discount tables

Revision ID: 001_discounts
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

# revision identifiers
revision = '001_discounts'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    """Create discount codes, assignments and redemption ledger"""

    # ====================
    # DISCOUNT CODES TABLE
    # ====================
    op.create_table(
        'discount_codes',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('code', sa.String(32), nullable=False, comment='Uppercase alphanumeric code, immutable'),
        sa.Column('kind', sa.String(20), nullable=False, comment='PERCENT, FIXED'),
        sa.Column('value', sa.Numeric(14, 2), nullable=False),
        sa.Column('max_discount_amount', sa.Integer, server_default='0', nullable=False),
        sa.Column('min_order_amount', sa.Integer, server_default='0', nullable=False),
        sa.Column('start_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('usage_limit', sa.Integer, server_default='0', nullable=False),
        sa.Column('used_count', sa.Integer, server_default='0', nullable=False),
        sa.Column('owner_id', UUID(as_uuid=True), nullable=True),
        sa.Column('item_id', UUID(as_uuid=True), nullable=True),
        sa.Column('is_public', sa.Boolean, server_default='true', nullable=False),
        sa.Column('active', sa.Boolean, server_default='true', nullable=False),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('created_by', UUID(as_uuid=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.CheckConstraint('used_count >= 0', name='ck_discount_codes_used_count'),
        sa.CheckConstraint('start_at < end_at', name='ck_discount_codes_window'),
    )

    op.create_index('ix_discount_codes_code', 'discount_codes', ['code'], unique=True)
    op.create_index('ix_discount_codes_owner_id', 'discount_codes', ['owner_id'])
    op.create_index('ix_discount_codes_item_id', 'discount_codes', ['item_id'])

    # ====================
    # DISCOUNT ASSIGNMENTS TABLE
    # ====================
    op.create_table(
        'discount_assignments',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('discount_id', UUID(as_uuid=True), sa.ForeignKey('discount_codes.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('per_user_limit', sa.Integer, server_default='1', nullable=False),
        sa.Column('used_count', sa.Integer, server_default='0', nullable=False),
        sa.Column('effective_from', sa.DateTime(timezone=True), nullable=True),
        sa.Column('effective_to', sa.DateTime(timezone=True), nullable=True),
        sa.Column('active', sa.Boolean, server_default='true', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.UniqueConstraint('discount_id', 'user_id', name='uq_discount_assignment_user'),
        sa.CheckConstraint('used_count >= 0', name='ck_discount_assignments_used_count'),
    )

    op.create_index('ix_discount_assignments_discount_id', 'discount_assignments', ['discount_id'])
    op.create_index('ix_discount_assignments_user_id', 'discount_assignments', ['user_id'])

    # ====================
    # DISCOUNT REDEMPTIONS TABLE
    # ====================
    op.create_table(
        'discount_redemptions',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('discount_id', UUID(as_uuid=True), sa.ForeignKey('discount_codes.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('user_id', UUID(as_uuid=True), nullable=True),
        sa.Column('order_id', UUID(as_uuid=True), nullable=False),
        sa.Column('amount_applied', sa.Integer, nullable=False),
        sa.Column('status', sa.String(20), server_default='APPLIED', nullable=False, comment='APPLIED'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.UniqueConstraint('discount_id', 'order_id', name='uq_discount_redemption_order'),
    )

    op.create_index('ix_discount_redemptions_discount_id', 'discount_redemptions', ['discount_id'])
    op.create_index('ix_discount_redemptions_user_id', 'discount_redemptions', ['user_id'])
    op.create_index('ix_discount_redemptions_order_id', 'discount_redemptions', ['order_id'])


def downgrade():
    """Drop discount tables"""
    op.drop_table('discount_redemptions')
    op.drop_table('discount_assignments')
    op.drop_table('discount_codes')
