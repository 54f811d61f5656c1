"""
Discount Repository

All persistence for discount codes, assignments and redemptions goes through
this class so the engine and service stay storage-agnostic.

Usage counters are only ever changed through the conditional increments
below (UPDATE ... WHERE used_count < cap), which is what keeps two
concurrent redemptions from jointly exceeding a cap.
"""

import uuid
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import select, update, func, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from rentshare.models.discount import (
    DiscountCode, DiscountAssignment, DiscountRedemption, RedemptionStatus,
)


class DiscountRepository:
    """Async data access for the discount tables."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== Discount Codes ====================

    async def code_exists(self, code: str) -> bool:
        result = await self.db.execute(
            select(func.count(DiscountCode.id)).where(DiscountCode.code == code)
        )
        return (result.scalar() or 0) > 0

    async def create(self, discount: DiscountCode) -> DiscountCode:
        self.db.add(discount)
        await self.db.flush()
        await self.db.refresh(discount)
        return discount

    async def get(self, discount_id: uuid.UUID) -> Optional[DiscountCode]:
        result = await self.db.execute(
            select(DiscountCode).where(DiscountCode.id == discount_id)
        )
        return result.scalar_one_or_none()

    async def find_by_code(self, code: str, active_only: bool = False) -> Optional[DiscountCode]:
        """Find by already-normalized (uppercase) code."""
        query = select(DiscountCode).where(DiscountCode.code == code).execution_options(
            populate_existing=True
        )
        if active_only:
            query = query.where(DiscountCode.active == True)  # noqa: E712
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def find(
        self,
        active: Optional[bool] = None,
        owner_id: Optional[uuid.UUID] = None,
        item_id: Optional[uuid.UUID] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[DiscountCode], int]:
        """Filtered, newest-first page of codes plus the total match count."""
        filters = []
        if active is not None:
            filters.append(DiscountCode.active == active)
        if owner_id:
            filters.append(DiscountCode.owner_id == owner_id)
        if item_id:
            filters.append(DiscountCode.item_id == item_id)

        query = select(DiscountCode)
        count_query = select(func.count(DiscountCode.id))
        if filters:
            query = query.where(and_(*filters))
            count_query = count_query.where(and_(*filters))

        total_result = await self.db.execute(count_query)
        total = total_result.scalar() or 0

        query = query.order_by(DiscountCode.created_at.desc()).offset(skip).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def update(self, discount_id: uuid.UUID, **values) -> Optional[DiscountCode]:
        """Set attributes on a code and flush. Returns None if it doesn't exist."""
        discount = await self.get(discount_id)
        if discount is None:
            return None
        for field, value in values.items():
            setattr(discount, field, value)
        await self.db.flush()
        await self.db.refresh(discount)
        return discount

    def _window_filters(self, now: datetime, owner_id, item_id) -> list:
        filters = [
            DiscountCode.active == True,  # noqa: E712
            DiscountCode.start_at <= now,
            DiscountCode.end_at >= now,
        ]
        if owner_id:
            filters.append(DiscountCode.owner_id == owner_id)
        if item_id:
            filters.append(DiscountCode.item_id == item_id)
        return filters

    async def find_public_in_window(
        self,
        now: datetime,
        owner_id: Optional[uuid.UUID] = None,
        item_id: Optional[uuid.UUID] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[DiscountCode], int]:
        filters = self._window_filters(now, owner_id, item_id)
        filters.append(DiscountCode.is_public == True)  # noqa: E712

        total_result = await self.db.execute(
            select(func.count(DiscountCode.id)).where(and_(*filters))
        )
        total = total_result.scalar() or 0

        result = await self.db.execute(
            select(DiscountCode)
            .where(and_(*filters))
            .order_by(DiscountCode.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    async def find_assigned_in_window(
        self,
        user_id: uuid.UUID,
        now: datetime,
        owner_id: Optional[uuid.UUID] = None,
        item_id: Optional[uuid.UUID] = None,
    ) -> List[DiscountCode]:
        """Private in-window codes the user holds an active assignment for."""
        filters = self._window_filters(now, owner_id, item_id)
        filters.append(DiscountCode.is_public == False)  # noqa: E712

        assigned_ids = select(DiscountAssignment.discount_id).where(
            and_(
                DiscountAssignment.user_id == user_id,
                DiscountAssignment.active == True,  # noqa: E712
            )
        )
        result = await self.db.execute(
            select(DiscountCode)
            .where(and_(DiscountCode.id.in_(assigned_ids), *filters))
            .order_by(DiscountCode.created_at.desc())
        )
        return list(result.scalars().all())

    async def increment_usage(self, discount_id: uuid.UUID) -> bool:
        """
        Atomically consume one global use.

        Returns False when the code is already at its usage_limit.
        """
        result = await self.db.execute(
            update(DiscountCode)
            .where(
                and_(
                    DiscountCode.id == discount_id,
                    or_(
                        DiscountCode.usage_limit <= 0,
                        DiscountCode.used_count < DiscountCode.usage_limit,
                    ),
                )
            )
            .values(used_count=DiscountCode.used_count + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # ==================== Assignments ====================

    async def find_assignment(
        self,
        discount_id: uuid.UUID,
        user_id: uuid.UUID,
        active_only: bool = True,
    ) -> Optional[DiscountAssignment]:
        query = select(DiscountAssignment).where(
            and_(
                DiscountAssignment.discount_id == discount_id,
                DiscountAssignment.user_id == user_id,
            )
        ).execution_options(populate_existing=True)
        if active_only:
            query = query.where(DiscountAssignment.active == True)  # noqa: E712
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def list_assignments(self, discount_id: uuid.UUID) -> List[DiscountAssignment]:
        result = await self.db.execute(
            select(DiscountAssignment)
            .where(DiscountAssignment.discount_id == discount_id)
            .order_by(DiscountAssignment.created_at)
        )
        return list(result.scalars().all())

    async def bulk_upsert_assignments(
        self,
        discount_id: uuid.UUID,
        user_ids: Iterable[uuid.UUID],
        per_user_limit: int,
        effective_from: Optional[datetime],
        effective_to: Optional[datetime],
    ) -> List[DiscountAssignment]:
        """
        Create or refresh one assignment per user.

        Existing rows get limit, window and active overwritten; used_count is
        never touched. New rows start at used_count = 0.
        """
        unique_ids = list(dict.fromkeys(user_ids))
        if not unique_ids:
            return []

        result = await self.db.execute(
            select(DiscountAssignment).where(
                and_(
                    DiscountAssignment.discount_id == discount_id,
                    DiscountAssignment.user_id.in_(unique_ids),
                )
            ).execution_options(populate_existing=True)
        )
        existing = {a.user_id: a for a in result.scalars().all()}

        assignments = []
        for user_id in unique_ids:
            assignment = existing.get(user_id)
            if assignment is None:
                assignment = DiscountAssignment(
                    discount_id=discount_id,
                    user_id=user_id,
                    used_count=0,
                )
                self.db.add(assignment)
            assignment.per_user_limit = per_user_limit
            assignment.effective_from = effective_from
            assignment.effective_to = effective_to
            assignment.active = True
            assignments.append(assignment)

        await self.db.flush()
        return assignments

    async def increment_assignment_usage(
        self,
        discount_id: uuid.UUID,
        user_id: uuid.UUID,
        enforce_cap: bool = True,
    ) -> bool:
        """
        Atomically consume one use of the user's assignment.

        With enforce_cap the update only applies while used_count is under
        per_user_limit. Returns False when no row was updated.
        """
        conditions = [
            DiscountAssignment.discount_id == discount_id,
            DiscountAssignment.user_id == user_id,
        ]
        if enforce_cap:
            conditions.append(DiscountAssignment.active == True)  # noqa: E712
            conditions.append(
                or_(
                    DiscountAssignment.per_user_limit <= 0,
                    DiscountAssignment.used_count < DiscountAssignment.per_user_limit,
                )
            )
        result = await self.db.execute(
            update(DiscountAssignment)
            .where(and_(*conditions))
            .values(used_count=DiscountAssignment.used_count + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def release_assignment_usage(self, discount_id: uuid.UUID, user_id: uuid.UUID) -> None:
        """Give back one use taken by increment_assignment_usage in this transaction."""
        await self.db.execute(
            update(DiscountAssignment)
            .where(
                and_(
                    DiscountAssignment.discount_id == discount_id,
                    DiscountAssignment.user_id == user_id,
                    DiscountAssignment.used_count > 0,
                )
            )
            .values(used_count=DiscountAssignment.used_count - 1)
            .execution_options(synchronize_session=False)
        )

    # ==================== Redemptions ====================

    async def find_redemption(
        self,
        discount_id: uuid.UUID,
        order_id: uuid.UUID,
    ) -> Optional[DiscountRedemption]:
        result = await self.db.execute(
            select(DiscountRedemption).where(
                and_(
                    DiscountRedemption.discount_id == discount_id,
                    DiscountRedemption.order_id == order_id,
                )
            )
        )
        return result.scalar_one_or_none()

    async def add_redemption(
        self,
        discount_id: uuid.UUID,
        order_id: uuid.UUID,
        amount_applied: int,
        user_id: Optional[uuid.UUID] = None,
    ) -> DiscountRedemption:
        redemption = DiscountRedemption(
            discount_id=discount_id,
            user_id=user_id,
            order_id=order_id,
            amount_applied=amount_applied,
            status=RedemptionStatus.APPLIED.value,
        )
        self.db.add(redemption)
        await self.db.flush()
        return redemption
