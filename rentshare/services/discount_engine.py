"""
Discount Eligibility & Amount Engine

Pure decision logic over a loaded DiscountCode (and, for private codes, the
user's DiscountAssignment). Nothing here touches the database; the caller
supplies the records, the redemption context and the current time.

Check order (first failure wins, one reason per failure):
    1. code exists and is active ........... INVALID_CODE
    2. now < start_at ...................... NOT_STARTED
    3. now > end_at ........................ EXPIRED
    4. global usage cap reached ............ USAGE_LIMIT
    5. base amount under the minimum ....... BELOW_MIN_ORDER
    6. owner scope mismatch ................ OWNER_NOT_MATCH
    7. item scope mismatch ................. ITEM_NOT_MATCH
    8. private code:
       a/b. no user or no active assignment  NOT_ALLOWED_USER
       c.   now < effective_from ........... ASSIGN_NOT_STARTED
       d.   now > effective_to ............. ASSIGN_EXPIRED
       e.   per-user cap reached ........... PER_USER_LIMIT

Amount:
    raw = base * value / 100 (PERCENT) or value (FIXED)
    raw = min(raw, max_discount_amount) when a cap is set
    amount = clamp(floor(raw), 0, base)
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, ROUND_FLOOR
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, Union

from rentshare.core.enum_utils import to_enum
from rentshare.models.discount import DiscountAssignment, DiscountCode, DiscountKind


Number = Union[int, float, Decimal]

HUNDRED = Decimal("100")


class DiscountRejection(str, Enum):
    """Why a code cannot be applied. Stable taxonomy exposed to clients."""
    INVALID_CODE = "INVALID_CODE"
    NOT_STARTED = "NOT_STARTED"
    EXPIRED = "EXPIRED"
    USAGE_LIMIT = "USAGE_LIMIT"
    BELOW_MIN_ORDER = "BELOW_MIN_ORDER"
    OWNER_NOT_MATCH = "OWNER_NOT_MATCH"
    ITEM_NOT_MATCH = "ITEM_NOT_MATCH"
    NOT_ALLOWED_USER = "NOT_ALLOWED_USER"
    ASSIGN_NOT_STARTED = "ASSIGN_NOT_STARTED"
    ASSIGN_EXPIRED = "ASSIGN_EXPIRED"
    PER_USER_LIMIT = "PER_USER_LIMIT"

    @property
    def message(self) -> str:
        return REJECTION_MESSAGES[self]


REJECTION_MESSAGES: Dict[DiscountRejection, str] = {
    DiscountRejection.INVALID_CODE: "Invalid discount code",
    DiscountRejection.NOT_STARTED: "This discount code is not active yet",
    DiscountRejection.EXPIRED: "This discount code has expired",
    DiscountRejection.USAGE_LIMIT: "This discount code has reached its usage limit",
    DiscountRejection.BELOW_MIN_ORDER: "Order amount is below the minimum for this code",
    DiscountRejection.OWNER_NOT_MATCH: "This discount code does not apply to this owner",
    DiscountRejection.ITEM_NOT_MATCH: "This discount code does not apply to this item",
    DiscountRejection.NOT_ALLOWED_USER: "You are not allowed to use this discount code",
    DiscountRejection.ASSIGN_NOT_STARTED: "Your access to this code has not started yet",
    DiscountRejection.ASSIGN_EXPIRED: "Your access to this code has expired",
    DiscountRejection.PER_USER_LIMIT: "You have already used this discount code",
}


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validate-and-compute: either an amount or a reason."""
    valid: bool
    amount: int = 0
    discount: Optional[DiscountCode] = None
    reason: Optional[DiscountRejection] = None

    @classmethod
    def accept(cls, discount: DiscountCode, amount: int) -> "ValidationResult":
        return cls(valid=True, amount=amount, discount=discount)

    @classmethod
    def reject(
        cls,
        reason: DiscountRejection,
        discount: Optional[DiscountCode] = None,
    ) -> "ValidationResult":
        return cls(valid=False, reason=reason, discount=discount)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize to aware UTC; naive values (e.g. read back from SQLite) are UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ==================== Amount Computation ====================

def _percent_raw(value: Decimal, base_amount: Decimal) -> Decimal:
    return base_amount * value / HUNDRED


def _fixed_raw(value: Decimal, base_amount: Decimal) -> Decimal:
    return value


RAW_AMOUNT_POLICIES: Dict[DiscountKind, Callable[[Decimal, Decimal], Decimal]] = {
    DiscountKind.PERCENT: _percent_raw,
    DiscountKind.FIXED: _fixed_raw,
}


def compute_discount_amount(
    kind: Union[DiscountKind, str],
    value: Number,
    base_amount: Number,
    max_discount_amount: Optional[Number] = 0,
) -> int:
    """
    Compute the discount for an order total, in integer minor units.

    Rounding happens once, on the final value; the result is always within
    [0, base_amount].
    """
    policy_kind = to_enum(kind, DiscountKind)
    if policy_kind is None:
        raise ValueError(f"Unsupported discount kind: {kind!r}")

    base = Decimal(str(base_amount))
    raw = RAW_AMOUNT_POLICIES[policy_kind](Decimal(str(value)), base)

    cap = Decimal(str(max_discount_amount or 0))
    if cap > 0:
        raw = min(raw, cap)

    floored = raw.to_integral_value(rounding=ROUND_FLOOR)
    upper = base.to_integral_value(rounding=ROUND_FLOOR)
    return int(max(Decimal(0), min(upper, floored)))


# ==================== Eligibility Checks ====================

def check_code(
    discount: Optional[DiscountCode],
    base_amount: Number,
    owner_id: Optional[uuid.UUID],
    item_id: Optional[uuid.UUID],
    now: datetime,
) -> Optional[DiscountRejection]:
    """Checks 1-7: code-level state, window, usage, minimum and scoping."""
    if discount is None or not discount.active:
        return DiscountRejection.INVALID_CODE

    now = ensure_utc(now)
    if discount.start_at and now < ensure_utc(discount.start_at):
        return DiscountRejection.NOT_STARTED
    if discount.end_at and now > ensure_utc(discount.end_at):
        return DiscountRejection.EXPIRED

    if discount.usage_limit and discount.usage_limit > 0:
        if (discount.used_count or 0) >= discount.usage_limit:
            return DiscountRejection.USAGE_LIMIT

    if discount.min_order_amount and discount.min_order_amount > 0:
        if Decimal(str(base_amount)) < Decimal(discount.min_order_amount):
            return DiscountRejection.BELOW_MIN_ORDER

    if discount.owner_id and owner_id and str(discount.owner_id) != str(owner_id):
        return DiscountRejection.OWNER_NOT_MATCH
    if discount.item_id and item_id and str(discount.item_id) != str(item_id):
        return DiscountRejection.ITEM_NOT_MATCH

    return None


def check_assignment(
    assignment: Optional[DiscountAssignment],
    now: datetime,
) -> Optional[DiscountRejection]:
    """Checks 8b-8e: the user's grant for a private code."""
    if assignment is None or not assignment.active:
        return DiscountRejection.NOT_ALLOWED_USER

    now = ensure_utc(now)
    if assignment.effective_from and now < ensure_utc(assignment.effective_from):
        return DiscountRejection.ASSIGN_NOT_STARTED
    if assignment.effective_to and now > ensure_utc(assignment.effective_to):
        return DiscountRejection.ASSIGN_EXPIRED

    if assignment.per_user_limit and assignment.per_user_limit > 0:
        if (assignment.used_count or 0) >= assignment.per_user_limit:
            return DiscountRejection.PER_USER_LIMIT

    return None


AssignmentLoader = Callable[[uuid.UUID, uuid.UUID], Awaitable[Optional[DiscountAssignment]]]


async def evaluate_discount(
    discount: Optional[DiscountCode],
    base_amount: Number,
    *,
    now: datetime,
    load_assignment: AssignmentLoader,
    owner_id: Optional[uuid.UUID] = None,
    item_id: Optional[uuid.UUID] = None,
    user_id: Optional[uuid.UUID] = None,
) -> ValidationResult:
    """
    Run the ordered checks and compute the amount.

    `load_assignment(discount_id, user_id)` is awaited only for private codes
    that passed every code-level check.
    """
    reason = check_code(discount, base_amount, owner_id, item_id, now)
    if reason is not None:
        return ValidationResult.reject(reason, discount if reason != DiscountRejection.INVALID_CODE else None)

    if not discount.is_public:
        if not user_id:
            return ValidationResult.reject(DiscountRejection.NOT_ALLOWED_USER, discount)
        assignment = await load_assignment(discount.id, user_id)
        reason = check_assignment(assignment, now)
        if reason is not None:
            return ValidationResult.reject(reason, discount)

    amount = compute_discount_amount(
        discount.kind,
        discount.value,
        base_amount,
        discount.max_discount_amount,
    )
    return ValidationResult.accept(discount, amount)
