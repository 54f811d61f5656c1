"""Pydantic schemas for discount codes, assignments and redemptions."""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from rentshare.core.enum_utils import normalize_to_uppercase, VALID_DISCOUNT_KINDS
from rentshare.models.discount import DiscountKind
from rentshare.schemas.base import BaseResponseSchema, BaseCreateSchema


# ==================== Discount Code Schemas ====================

class DiscountCreate(BaseCreateSchema):
    """Schema for issuing a discount code."""
    kind: DiscountKind
    value: Decimal
    max_discount_amount: Decimal = Decimal("0")
    min_order_amount: Decimal = Decimal("0")
    start_at: datetime
    end_at: datetime
    usage_limit: int = Field(0, ge=0)

    # Scoping
    owner_id: Optional[UUID] = None
    item_id: Optional[UUID] = None

    # Visibility
    is_public: bool = True
    allowed_user_ids: List[UUID] = Field(default_factory=list)

    # Code generation
    code_prefix: Optional[str] = Field(None, max_length=64)
    code_length: Optional[int] = None

    notes: Optional[str] = None

    @field_validator("kind", mode="before")
    @classmethod
    def normalize_kind(cls, v):
        return normalize_to_uppercase(v, VALID_DISCOUNT_KINDS)


class DiscountResponse(BaseResponseSchema):
    """Schema for DiscountCode response."""
    id: UUID
    code: str
    kind: str
    value: Decimal
    max_discount_amount: int
    min_order_amount: int
    start_at: datetime
    end_at: datetime
    usage_limit: int
    used_count: int
    owner_id: Optional[UUID] = None
    item_id: Optional[UUID] = None
    is_public: bool
    active: bool
    notes: Optional[str] = None
    created_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime


class DiscountListResponse(BaseModel):
    """Paginated discount codes."""
    items: List[DiscountResponse]
    total: int
    page: int
    limit: int
    total_pages: int


# ==================== Assignment Schemas ====================

class AssignUsersRequest(BaseCreateSchema):
    """Grant a (now private) code to specific users."""
    user_ids: List[UUID]
    per_user_limit: int = 1
    effective_from: Optional[datetime] = None
    effective_to: Optional[datetime] = None


class AssignmentResponse(BaseResponseSchema):
    """Schema for DiscountAssignment response."""
    id: UUID
    discount_id: UUID
    user_id: UUID
    per_user_limit: int
    used_count: int
    effective_from: Optional[datetime] = None
    effective_to: Optional[datetime] = None
    active: bool


class AssignUsersResponse(BaseModel):
    discount: DiscountResponse
    assignments: List[AssignmentResponse]


# ==================== Validation & Redemption Schemas ====================

class ValidateDiscountRequest(BaseCreateSchema):
    """Redemption context supplied by checkout."""
    code: str = Field(..., min_length=1, max_length=64)
    base_amount: int = Field(..., ge=0, description="Order base amount in minor units")
    owner_id: Optional[UUID] = None
    item_id: Optional[UUID] = None


class ValidateDiscountResponse(BaseModel):
    valid: bool
    amount: int = 0
    reason: Optional[str] = None
    discount: Optional[DiscountResponse] = None


class RedeemDiscountRequest(ValidateDiscountRequest):
    order_id: UUID


class RedemptionResponse(BaseResponseSchema):
    """Schema for DiscountRedemption response."""
    id: UUID
    discount_id: UUID
    user_id: Optional[UUID] = None
    order_id: UUID
    amount_applied: int
    status: str
    created_at: datetime


class QuoteRequest(BaseCreateSchema):
    """Stacked checkout quote: public code first, private code on the rest."""
    base_amount: int = Field(..., ge=0)
    public_code: Optional[str] = Field(None, max_length=64)
    private_code: Optional[str] = Field(None, max_length=64)
    owner_id: Optional[UUID] = None
    item_id: Optional[UUID] = None


class QuoteLine(BaseModel):
    code: str
    applied: bool
    amount: int = 0
    reason: Optional[str] = None


class QuoteResponse(BaseModel):
    base_amount: int
    lines: List[QuoteLine]
    total_discount: int
    final_amount: int
