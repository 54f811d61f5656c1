"""
Discount Code API Endpoints

Issuance and administration for owners/admins, plus the checkout-facing
validate / redeem / quote calls.
"""

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from rentshare.api.deps import CurrentUserId, OptionalUserId, Discounts, require_permissions
from rentshare.config import settings
from rentshare.core.permissions import DISCOUNTS_MANAGE
from rentshare.schemas.discount import (
    DiscountCreate, DiscountResponse, DiscountListResponse,
    AssignUsersRequest, AssignUsersResponse, AssignmentResponse,
    ValidateDiscountRequest, ValidateDiscountResponse,
    RedeemDiscountRequest, RedemptionResponse,
    QuoteRequest, QuoteResponse, QuoteLine,
)
from rentshare.services.discount_engine import ValidationResult
from rentshare.services.discount_service import Page
from rentshare.services.exceptions import (
    CodeGenerationFailed, DiscountAccessDenied, DiscountNotFound, DiscountValidationError,
)

logger = logging.getLogger(__name__)
router = APIRouter()

manage_discounts = [Depends(require_permissions(DISCOUNTS_MANAGE))]


def _page_response(page: Page) -> DiscountListResponse:
    return DiscountListResponse(
        items=[DiscountResponse.model_validate(d) for d in page.items],
        total=page.total,
        page=page.page,
        limit=page.limit,
        total_pages=page.total_pages,
    )


def _result_response(result: ValidationResult) -> ValidateDiscountResponse:
    return ValidateDiscountResponse(
        valid=result.valid,
        amount=result.amount,
        reason=result.reason.value if result.reason else None,
        discount=DiscountResponse.model_validate(result.discount) if result.discount else None,
    )


def _rejection_detail(result: ValidationResult) -> dict:
    return {
        "reason": result.reason.value,
        "message": result.reason.message,
    }


# ==================== Administration ====================

@router.post(
    "",
    response_model=DiscountResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=manage_discounts,
)
async def issue_discount(
    data: DiscountCreate,
    user_id: CurrentUserId,
    service: Discounts,
):
    """
    Issue a new discount code.

    A non-empty `allowed_user_ids` makes the code private and grants each
    listed user one use.
    """
    try:
        discount = await service.issue_code(data, created_by=user_id)
    except DiscountValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except CodeGenerationFailed as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)
    return DiscountResponse.model_validate(discount)


@router.get("", response_model=DiscountListResponse, dependencies=manage_discounts)
async def list_discounts(
    service: Discounts,
    active: Optional[bool] = Query(None),
    owner_id: Optional[uuid.UUID] = Query(None),
    item_id: Optional[uuid.UUID] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
):
    """List discount codes, newest first."""
    result = await service.list_codes(
        active=active, owner_id=owner_id, item_id=item_id, page=page, limit=limit,
    )
    return _page_response(result)


@router.get("/code/{code}", response_model=DiscountResponse, dependencies=manage_discounts)
async def get_discount_by_code(
    code: str,
    service: Discounts,
):
    try:
        discount = await service.get_by_code(code)
    except DiscountNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    return DiscountResponse.model_validate(discount)


@router.patch("/{discount_id}/deactivate", response_model=DiscountResponse, dependencies=manage_discounts)
async def deactivate_discount(
    discount_id: uuid.UUID,
    service: Discounts,
):
    try:
        discount = await service.deactivate(discount_id)
    except DiscountNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    return DiscountResponse.model_validate(discount)


@router.patch("/{discount_id}/activate", response_model=DiscountResponse, dependencies=manage_discounts)
async def activate_discount(
    discount_id: uuid.UUID,
    service: Discounts,
):
    try:
        discount = await service.activate(discount_id)
    except DiscountNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    return DiscountResponse.model_validate(discount)


@router.post("/{discount_id}/assign-users", response_model=AssignUsersResponse, dependencies=manage_discounts)
async def assign_users(
    discount_id: uuid.UUID,
    data: AssignUsersRequest,
    service: Discounts,
):
    """
    Make the code private and grant it to the given users.

    Re-assigning a user refreshes their limit and window but keeps their
    usage count.
    """
    try:
        discount, assignments = await service.assign_users(
            discount_id,
            data.user_ids,
            per_user_limit=data.per_user_limit,
            effective_from=data.effective_from,
            effective_to=data.effective_to,
        )
    except DiscountNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except DiscountValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)

    return AssignUsersResponse(
        discount=DiscountResponse.model_validate(discount),
        assignments=[AssignmentResponse.model_validate(a) for a in assignments],
    )


@router.patch("/{discount_id}/public", response_model=DiscountResponse, dependencies=manage_discounts)
async def make_discount_public(
    discount_id: uuid.UUID,
    service: Discounts,
):
    try:
        discount = await service.set_public(discount_id)
    except DiscountNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    return DiscountResponse.model_validate(discount)


# ==================== User-facing ====================

@router.get("/available", response_model=DiscountListResponse)
async def list_available_discounts(
    user_id: CurrentUserId,
    service: Discounts,
    owner_id: Optional[uuid.UUID] = Query(None),
    item_id: Optional[uuid.UUID] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
):
    """Public codes in their window plus private codes assigned to the caller."""
    result = await service.list_available(
        user_id, owner_id=owner_id, item_id=item_id, page=page, limit=limit,
    )
    return _page_response(result)


@router.get("/public/{code}", response_model=DiscountResponse)
async def get_public_discount(
    code: str,
    user_id: CurrentUserId,
    service: Discounts,
):
    try:
        discount = await service.get_public_by_code(code, user_id)
    except DiscountNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except DiscountAccessDenied as e:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"reason": e.details.get("reason"), "message": e.message},
        )
    return DiscountResponse.model_validate(discount)


# ==================== Checkout ====================

@router.post("/validate", response_model=ValidateDiscountResponse)
async def validate_discount(
    data: ValidateDiscountRequest,
    user_id: OptionalUserId,
    service: Discounts,
):
    """
    Check a code against a redemption context and return the amount it
    would take off. Nothing is consumed.
    """
    result = await service.validate_and_compute(
        data.code,
        data.base_amount,
        owner_id=data.owner_id,
        item_id=data.item_id,
        user_id=user_id,
    )
    if not result.valid:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=_rejection_detail(result))
    return _result_response(result)


@router.post("/redeem", response_model=RedemptionResponse, status_code=status.HTTP_201_CREATED)
async def redeem_discount(
    data: RedeemDiscountRequest,
    user_id: OptionalUserId,
    service: Discounts,
):
    """Consume one use of the code for an order and record the redemption."""
    result, redemption = await service.redeem(
        data.code,
        data.base_amount,
        order_id=data.order_id,
        owner_id=data.owner_id,
        item_id=data.item_id,
        user_id=user_id,
    )
    if redemption is None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=_rejection_detail(result))
    return RedemptionResponse.model_validate(redemption)


@router.post("/quote", response_model=QuoteResponse)
async def quote_discounts(
    data: QuoteRequest,
    user_id: OptionalUserId,
    service: Discounts,
):
    """Price an order with an optional public code and an optional private code."""
    quote = await service.quote(
        data.base_amount,
        public_code=data.public_code,
        private_code=data.private_code,
        owner_id=data.owner_id,
        item_id=data.item_id,
        user_id=user_id,
    )
    return QuoteResponse(
        base_amount=quote.base_amount,
        lines=[
            QuoteLine(
                code=line.code,
                applied=line.applied,
                amount=line.amount,
                reason=line.reason.value if line.reason else None,
            )
            for line in quote.lines
        ],
        total_discount=quote.total_discount,
        final_amount=quote.final_amount,
    )
