"""
Discount Service

Orchestrates code issuance, eligibility validation, redemption and
assignment management on top of DiscountRepository and the pure
discount_engine.

USAGE (from the order-commit flow):
    service = DiscountService(db)
    result = await service.validate_and_compute(
        code="SUMMER24AB", base_amount=250000,
        owner_id=item.owner_id, item_id=item.id, user_id=renter_id,
    )
    if result.valid:
        ...
        result, redemption = await service.redeem(
            code="SUMMER24AB", base_amount=250000, order_id=order.id,
            owner_id=item.owner_id, item_id=item.id, user_id=renter_id,
        )

validate_and_compute is read-only. redeem re-validates and consumes the
usage caps with conditional updates inside the caller's transaction.
"""

import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_FLOOR, InvalidOperation
from typing import Callable, List, Optional, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from rentshare.config import settings
from rentshare.core.enum_utils import to_enum, get_enum_value
from rentshare.models.discount import (
    DiscountCode, DiscountAssignment, DiscountRedemption, DiscountKind,
)
from rentshare.schemas.discount import DiscountCreate
from rentshare.services.discount_codes import generate_unique_code, normalize_code
from rentshare.services.discount_engine import (
    DiscountRejection, ValidationResult, check_assignment, ensure_utc,
    evaluate_discount, utcnow,
)
from rentshare.services.discount_repository import DiscountRepository
from rentshare.services.exceptions import (
    DiscountAccessDenied, DiscountNotFound, DiscountValidationError,
)


logger = logging.getLogger(__name__)

# Matches the scale of discount_codes.value
PERCENT_SCALE = Decimal("0.01")


@dataclass
class QuoteLineResult:
    code: str
    applied: bool
    amount: int = 0
    reason: Optional[DiscountRejection] = None


@dataclass
class CheckoutQuote:
    base_amount: int
    lines: List[QuoteLineResult] = field(default_factory=list)

    @property
    def total_discount(self) -> int:
        return sum(line.amount for line in self.lines if line.applied)

    @property
    def final_amount(self) -> int:
        return max(0, self.base_amount - self.total_discount)


@dataclass
class Page:
    items: Sequence[DiscountCode]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


def _floor_non_negative(value, field_name: str) -> int:
    try:
        number = Decimal(str(value if value is not None else 0))
    except InvalidOperation:
        raise DiscountValidationError(f"{field_name} must be a number", details={"field": field_name})
    if not number.is_finite():
        raise DiscountValidationError(f"{field_name} must be a finite number", details={"field": field_name})
    return max(0, int(number.to_integral_value(rounding=ROUND_FLOOR)))


class DiscountService:
    """
    Service for issuing, validating and redeeming discount codes.
    """

    def __init__(
        self,
        db: AsyncSession,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.repo = DiscountRepository(db)
        self.clock = clock

    def _now(self, now: Optional[datetime]) -> datetime:
        return ensure_utc(now or self.clock())

    # ==================== ISSUANCE ====================

    def _normalize_issue_input(self, data: DiscountCreate) -> dict:
        """Validate and normalize issuance input. Raises DiscountValidationError."""
        kind = to_enum(data.kind, DiscountKind)
        if kind is None:
            raise DiscountValidationError(
                "Invalid discount kind",
                details={"kind": get_enum_value(data.kind)},
            )

        if data.start_at is None or data.end_at is None or data.value is None:
            raise DiscountValidationError("kind, value, start_at and end_at are required")

        start_at = ensure_utc(data.start_at)
        end_at = ensure_utc(data.end_at)
        if end_at <= start_at:
            raise DiscountValidationError("end_at must be after start_at")

        try:
            value = Decimal(str(data.value))
        except InvalidOperation:
            raise DiscountValidationError("value must be a number")
        if not value.is_finite():
            raise DiscountValidationError("value must be a finite number")

        max_discount = _floor_non_negative(data.max_discount_amount, "max_discount_amount")
        min_order = _floor_non_negative(data.min_order_amount, "min_order_amount")

        if kind == DiscountKind.PERCENT:
            # Floor to the stored scale so the persisted value never grows
            value = max(Decimal("0"), min(Decimal("100"), value))
            value = value.quantize(PERCENT_SCALE, rounding=ROUND_FLOOR)
        else:
            value = Decimal(_floor_non_negative(value, "value"))
            if value <= 0:
                raise DiscountValidationError("Fixed discount value must be greater than 0")

        return {
            "kind": kind.value,
            "value": value,
            "max_discount_amount": max_discount,
            "min_order_amount": min_order,
            "start_at": start_at,
            "end_at": end_at,
            "usage_limit": max(0, int(data.usage_limit or 0)),
        }

    async def issue_code(
        self,
        data: DiscountCreate,
        created_by: Optional[uuid.UUID] = None,
    ) -> DiscountCode:
        """
        Issue a new discount code.

        Raises:
            DiscountValidationError: malformed input
            CodeGenerationFailed: no unique code after the configured attempts
        """
        values = self._normalize_issue_input(data)

        code = await generate_unique_code(
            prefix=data.code_prefix,
            length=data.code_length,
            exists=self.repo.code_exists,
        )

        allowed_user_ids = list(data.allowed_user_ids or [])
        discount = DiscountCode(
            code=code,
            owner_id=data.owner_id,
            item_id=data.item_id,
            is_public=bool(data.is_public) and not allowed_user_ids,
            active=True,
            used_count=0,
            notes=data.notes,
            created_by=created_by,
            **values,
        )
        discount = await self.repo.create(discount)

        if allowed_user_ids:
            await self.repo.bulk_upsert_assignments(
                discount.id, allowed_user_ids,
                per_user_limit=1, effective_from=None, effective_to=None,
            )

        logger.info(
            f"Issued discount code {discount.code} ({discount.kind} {discount.value}) "
            f"public={discount.is_public} by {created_by}"
        )
        return discount

    # ==================== VALIDATION ====================

    async def validate_and_compute(
        self,
        code: str,
        base_amount: int,
        owner_id: Optional[uuid.UUID] = None,
        item_id: Optional[uuid.UUID] = None,
        user_id: Optional[uuid.UUID] = None,
        now: Optional[datetime] = None,
    ) -> ValidationResult:
        """
        Decide whether `code` applies to this redemption context and how much
        it takes off. Never raises for ineligible codes; see result.reason.
        """
        discount = await self.repo.find_by_code(normalize_code(code), active_only=True)
        return await evaluate_discount(
            discount,
            base_amount,
            now=self._now(now),
            load_assignment=self.repo.find_assignment,
            owner_id=owner_id,
            item_id=item_id,
            user_id=user_id,
        )

    async def redeem(
        self,
        code: str,
        base_amount: int,
        order_id: uuid.UUID,
        owner_id: Optional[uuid.UUID] = None,
        item_id: Optional[uuid.UUID] = None,
        user_id: Optional[uuid.UUID] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[ValidationResult, Optional[DiscountRedemption]]:
        """
        Validate and consume one use of the code for an order.

        Both counters move through conditional updates, so a cap reached by a
        concurrent redemption turns into USAGE_LIMIT / PER_USER_LIMIT here
        instead of an over-redemption. Commit is left to the caller's session.

        Redeeming the same code for the same order again returns the recorded
        redemption without consuming anything.
        """
        existing = await self._find_existing_redemption(code, order_id)
        if existing is not None:
            return existing

        result = await self.validate_and_compute(
            code, base_amount, owner_id=owner_id, item_id=item_id, user_id=user_id, now=now,
        )
        if not result.valid:
            return result, None

        discount = result.discount

        if not discount.is_public:
            if not await self.repo.increment_assignment_usage(discount.id, user_id):
                logger.warning(f"Per-user cap reached concurrently for {discount.code} / {user_id}")
                return ValidationResult.reject(DiscountRejection.PER_USER_LIMIT, discount), None

        if not await self.repo.increment_usage(discount.id):
            if not discount.is_public:
                await self.repo.release_assignment_usage(discount.id, user_id)
            logger.warning(f"Usage limit reached concurrently for {discount.code}")
            return ValidationResult.reject(DiscountRejection.USAGE_LIMIT, discount), None

        if discount.is_public and user_id:
            # Public codes may still carry a claim for this user; keep its counter in step
            await self.repo.increment_assignment_usage(discount.id, user_id, enforce_cap=False)

        redemption = await self.repo.add_redemption(
            discount_id=discount.id,
            order_id=order_id,
            amount_applied=result.amount,
            user_id=user_id,
        )
        await self.db.refresh(discount)

        logger.info(
            f"Redeemed {discount.code} on order {order_id} for {result.amount} "
            f"(used {discount.used_count}/{discount.usage_limit or 'unlimited'})"
        )
        return result, redemption

    async def _find_existing_redemption(
        self,
        code: str,
        order_id: uuid.UUID,
    ) -> Optional[Tuple[ValidationResult, DiscountRedemption]]:
        discount = await self.repo.find_by_code(normalize_code(code))
        if discount is None:
            return None
        redemption = await self.repo.find_redemption(discount.id, order_id)
        if redemption is None:
            return None
        logger.info(f"Order {order_id} already redeemed {discount.code}, returning recorded redemption")
        return ValidationResult.accept(discount, redemption.amount_applied), redemption

    async def quote(
        self,
        base_amount: int,
        public_code: Optional[str] = None,
        private_code: Optional[str] = None,
        owner_id: Optional[uuid.UUID] = None,
        item_id: Optional[uuid.UUID] = None,
        user_id: Optional[uuid.UUID] = None,
        now: Optional[datetime] = None,
    ) -> CheckoutQuote:
        """
        Stack a public code and a private code on one order.

        The public code applies to the full base amount, the private code to
        what is left. A code of the wrong visibility for its slot is skipped.
        """
        quote = CheckoutQuote(base_amount=base_amount)
        remaining = base_amount

        if public_code:
            result = await self.validate_and_compute(
                public_code, remaining, owner_id=owner_id, item_id=item_id, user_id=user_id, now=now,
            )
            line = QuoteLineResult(code=normalize_code(public_code), applied=False, reason=result.reason)
            if result.valid and result.discount.is_public:
                line.applied = True
                line.amount = result.amount
                remaining = max(0, remaining - result.amount)
            quote.lines.append(line)

        if private_code and remaining > 0:
            result = await self.validate_and_compute(
                private_code, remaining, owner_id=owner_id, item_id=item_id, user_id=user_id, now=now,
            )
            line = QuoteLineResult(code=normalize_code(private_code), applied=False, reason=result.reason)
            if result.valid and not result.discount.is_public:
                line.applied = True
                line.amount = result.amount
            quote.lines.append(line)

        return quote

    # ==================== LOOKUPS ====================

    async def list_codes(
        self,
        active: Optional[bool] = None,
        owner_id: Optional[uuid.UUID] = None,
        item_id: Optional[uuid.UUID] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> Page:
        limit = limit or settings.DEFAULT_PAGE_SIZE
        skip = (max(1, page) - 1) * limit
        rows, total = await self.repo.find(
            active=active, owner_id=owner_id, item_id=item_id, skip=skip, limit=limit,
        )
        return Page(items=rows, total=total, page=max(1, page), limit=limit)

    async def get_by_code(self, code: str) -> DiscountCode:
        discount = await self.repo.find_by_code(normalize_code(code))
        if discount is None:
            raise DiscountNotFound("Discount code not found", details={"code": normalize_code(code)})
        return discount

    async def get_public_by_code(
        self,
        code: str,
        user_id: Optional[uuid.UUID],
        now: Optional[datetime] = None,
    ) -> DiscountCode:
        """
        User-facing lookup: the code must be active and inside its window;
        private codes additionally need a usable assignment for the user.
        """
        now = self._now(now)
        discount = await self.repo.find_by_code(normalize_code(code), active_only=True)
        if (
            discount is None
            or now < ensure_utc(discount.start_at)
            or now > ensure_utc(discount.end_at)
        ):
            raise DiscountNotFound("Discount code is not available")

        if not discount.is_public:
            assignment = await self.repo.find_assignment(discount.id, user_id) if user_id else None
            reason = check_assignment(assignment, now)
            if reason is not None:
                raise DiscountAccessDenied(
                    "You are not allowed to use this discount code",
                    details={"reason": reason.value},
                )
        return discount

    async def list_available(
        self,
        user_id: Optional[uuid.UUID],
        owner_id: Optional[uuid.UUID] = None,
        item_id: Optional[uuid.UUID] = None,
        page: int = 1,
        limit: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Page:
        """
        Codes the user can see right now: a page of public in-window codes
        plus every private in-window code assigned to the user.
        """
        now = self._now(now)
        limit = limit or settings.DEFAULT_PAGE_SIZE
        skip = (max(1, page) - 1) * limit

        public_rows, public_total = await self.repo.find_public_in_window(
            now, owner_id=owner_id, item_id=item_id, skip=skip, limit=limit,
        )
        private_rows: List[DiscountCode] = []
        if user_id:
            private_rows = await self.repo.find_assigned_in_window(
                user_id, now, owner_id=owner_id, item_id=item_id,
            )

        return Page(
            items=[*public_rows, *private_rows],
            total=public_total + len(private_rows),
            page=max(1, page),
            limit=limit,
        )

    # ==================== ADMINISTRATION ====================

    async def _set_flags(self, discount_id: uuid.UUID, **flags) -> DiscountCode:
        discount = await self.repo.update(discount_id, **flags)
        if discount is None:
            raise DiscountNotFound("Discount code not found", details={"id": str(discount_id)})
        logger.info(f"Discount {discount.code} updated: {flags}")
        return discount

    async def activate(self, discount_id: uuid.UUID) -> DiscountCode:
        return await self._set_flags(discount_id, active=True)

    async def deactivate(self, discount_id: uuid.UUID) -> DiscountCode:
        return await self._set_flags(discount_id, active=False)

    async def set_public(self, discount_id: uuid.UUID) -> DiscountCode:
        """Make the code public. Existing assignments are kept but no longer consulted."""
        return await self._set_flags(discount_id, is_public=True)

    async def assign_users(
        self,
        discount_id: uuid.UUID,
        user_ids: Sequence[uuid.UUID],
        per_user_limit: int = 1,
        effective_from: Optional[datetime] = None,
        effective_to: Optional[datetime] = None,
    ) -> Tuple[DiscountCode, List[DiscountAssignment]]:
        """
        Privatize the code and upsert one assignment per user.

        Re-assigning an existing user refreshes limit, window and active flag
        but keeps used_count.
        """
        effective_from = ensure_utc(effective_from)
        effective_to = ensure_utc(effective_to)
        if effective_from and effective_to and effective_to <= effective_from:
            raise DiscountValidationError("effective_to must be after effective_from")

        discount = await self._set_flags(discount_id, is_public=False)
        assignments = await self.repo.bulk_upsert_assignments(
            discount.id,
            user_ids,
            per_user_limit=max(0, int(per_user_limit or 0)),
            effective_from=effective_from,
            effective_to=effective_to,
        )
        logger.info(f"Assigned {len(assignments)} users to discount {discount.code}")
        return discount, assignments
