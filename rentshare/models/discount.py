"""
Discount Code Models for the rental marketplace

A DiscountCode is the global coupon definition. Private codes (is_public=False)
are redeemable only by users holding a DiscountAssignment. Every successful
redemption is recorded in DiscountRedemption.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    String, Boolean, Integer, Text, Numeric, ForeignKey,
    UniqueConstraint, CheckConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from rentshare.database import Base
from rentshare.core.enum_utils import enum_comment
from rentshare.db_types import UUIDType, TZDateTime


class DiscountKind(str, Enum):
    """Discount kind enumeration."""
    PERCENT = "PERCENT"  # e.g., 10% off the base amount
    FIXED = "FIXED"  # e.g., 50000 minor units off


class RedemptionStatus(str, Enum):
    """Redemption ledger status."""
    APPLIED = "APPLIED"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DiscountCode(Base):
    """
    Discount/coupon code definition.

    Codes are never hard-deleted; `active` is the soft enable flag and is
    independent of the start_at/end_at window.
    """
    __tablename__ = "discount_codes"
    __table_args__ = (
        CheckConstraint("used_count >= 0", name="ck_discount_codes_used_count"),
        CheckConstraint("start_at < end_at", name="ck_discount_codes_window"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    code: Mapped[str] = mapped_column(
        String(32),
        unique=True,
        nullable=False,
        index=True,
        comment="Uppercase alphanumeric code, immutable"
    )

    # Kind & Value
    kind: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment=enum_comment(DiscountKind)
    )
    value: Mapped[Decimal] = mapped_column(
        Numeric(14, 2),
        nullable=False,
        comment="Percentage in [0,100] or fixed amount in minor units"
    )
    max_discount_amount: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Cap on computed discount (0 = uncapped)"
    )
    min_order_amount: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Minimum base amount to use the code (0 = no minimum)"
    )

    # Validity Period
    start_at: Mapped[datetime] = mapped_column(TZDateTime, nullable=False)
    end_at: Mapped[datetime] = mapped_column(TZDateTime, nullable=False)

    # Usage Limits
    usage_limit: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Global redemption cap (0 = unlimited)"
    )
    used_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0
    )

    # Scoping
    owner_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        nullable=True,
        index=True,
        comment="Restrict to items of this owner"
    )
    item_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        nullable=True,
        index=True,
        comment="Restrict to this item"
    )

    # Visibility & Status
    is_public: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="False = requires a per-user assignment"
    )
    active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True
    )

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        TZDateTime,
        default=_utcnow,
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TZDateTime,
        default=_utcnow,
        onupdate=_utcnow,
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<DiscountCode(code='{self.code}', kind='{self.kind}', value={self.value})>"


class DiscountAssignment(Base):
    """
    Grant of a private code to one user, with its own window and cap.
    """
    __tablename__ = "discount_assignments"
    __table_args__ = (
        UniqueConstraint("discount_id", "user_id", name="uq_discount_assignment_user"),
        CheckConstraint("used_count >= 0", name="ck_discount_assignments_used_count"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    discount_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("discount_codes.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        nullable=False,
        index=True
    )
    per_user_limit: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        comment="Per-user cap (0 = unlimited)"
    )
    used_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0
    )
    effective_from: Mapped[Optional[datetime]] = mapped_column(TZDateTime, nullable=True)
    effective_to: Mapped[Optional[datetime]] = mapped_column(TZDateTime, nullable=True)
    active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True
    )

    created_at: Mapped[datetime] = mapped_column(
        TZDateTime,
        default=_utcnow,
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TZDateTime,
        default=_utcnow,
        onupdate=_utcnow,
        nullable=False
    )

    def __repr__(self) -> str:
        return (
            f"<DiscountAssignment(discount_id='{self.discount_id}', user_id='{self.user_id}', "
            f"used={self.used_count}/{self.per_user_limit})>"
        )


class DiscountRedemption(Base):
    """
    Tracks each successful redemption of a code against an order.

    A code is redeemed at most once per order.
    """
    __tablename__ = "discount_redemptions"
    __table_args__ = (
        UniqueConstraint("discount_id", "order_id", name="uq_discount_redemption_order"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    discount_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("discount_codes.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        nullable=True,
        index=True
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        nullable=False,
        index=True
    )
    amount_applied: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Discount actually applied, in minor units"
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=RedemptionStatus.APPLIED.value,
        comment=enum_comment(RedemptionStatus)
    )
    created_at: Mapped[datetime] = mapped_column(
        TZDateTime,
        default=_utcnow,
        nullable=False
    )
