import uuid
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, inspect as sa_inspect, select

from rentshare.models.discount import (
    DiscountAssignment, DiscountCode, DiscountKind, DiscountRedemption, RedemptionStatus,
)
from rentshare.services.discount_engine import DiscountRejection
from rentshare.services.discount_service import DiscountService
from rentshare.services.exceptions import (
    CodeGenerationFailed, DiscountAccessDenied, DiscountNotFound, DiscountValidationError,
)

from tests.conftest import NOW, make_create


@pytest.fixture
def service(db_session):
    return DiscountService(db_session, clock=lambda: NOW)


# ==================== Issuance ====================

async def test_issue_public_percent_code(service):
    discount = await service.issue_code(make_create(usage_limit=5), created_by=uuid.uuid4())

    assert discount.code.startswith("RENT")
    assert len(discount.code) == 10
    assert discount.kind == DiscountKind.PERCENT.value
    assert discount.value == Decimal("10")
    assert discount.is_public is True
    assert discount.active is True
    assert discount.used_count == 0
    assert discount.usage_limit == 5


async def test_issue_clamps_percent_value(service):
    high = await service.issue_code(make_create(value=Decimal("150")))
    low = await service.issue_code(make_create(value=Decimal("-5")))
    assert high.value == Decimal("100")
    assert low.value == Decimal("0")


async def test_issue_floors_fractional_percent_to_stored_scale(service):
    discount = await service.issue_code(make_create(value=Decimal("33.335")))
    await service.db.refresh(discount)

    assert discount.value == Decimal("33.33")
    result = await service.validate_and_compute(discount.code, 1_000_000)
    assert result.amount == 333300


async def test_issue_floors_fixed_value_and_amounts(service):
    discount = await service.issue_code(make_create(
        kind="FIXED",
        value=Decimal("499.99"),
        max_discount_amount=Decimal("1000.7"),
        min_order_amount=Decimal("-3"),
    ))
    assert discount.value == Decimal("499")
    assert discount.max_discount_amount == 1000
    assert discount.min_order_amount == 0


async def test_issue_rejects_non_positive_fixed_value(service):
    with pytest.raises(DiscountValidationError):
        await service.issue_code(make_create(kind="FIXED", value=Decimal("0.5")))


async def test_issue_rejects_empty_window(service):
    with pytest.raises(DiscountValidationError):
        await service.issue_code(make_create(start_at=NOW, end_at=NOW))


async def test_issue_rejects_non_finite_value(service):
    with pytest.raises(DiscountValidationError):
        await service.issue_code(make_create().model_copy(update={"value": Decimal("NaN")}))


async def test_issue_with_allowed_users_is_private(service):
    user = uuid.uuid4()
    discount = await service.issue_code(make_create(allowed_user_ids=[user]))

    assert discount.is_public is False
    assignment = await service.repo.find_assignment(discount.id, user)
    assert assignment is not None
    assert assignment.per_user_limit == 1
    assert assignment.used_count == 0


async def test_issue_surfaces_generation_failure(service, monkeypatch):
    monkeypatch.setattr(service.repo, "code_exists", AsyncMock(return_value=True))
    with pytest.raises(CodeGenerationFailed):
        await service.issue_code(make_create())


# ==================== Validation ====================

async def test_validate_is_case_insensitive_and_read_only(service):
    discount = await service.issue_code(make_create(usage_limit=1))

    result = await service.validate_and_compute(discount.code.lower(), 250000)
    again = await service.validate_and_compute(f"  {discount.code} ", 250000)

    assert result.valid and again.valid
    assert result.amount == 25000
    await service.db.refresh(discount)
    assert discount.used_count == 0


async def test_validate_unknown_code(service):
    result = await service.validate_and_compute("NOPE", 1000)
    assert result.reason == DiscountRejection.INVALID_CODE


async def test_validate_deactivated_code(service):
    discount = await service.issue_code(make_create())
    await service.deactivate(discount.id)

    result = await service.validate_and_compute(discount.code, 1000)
    assert result.reason == DiscountRejection.INVALID_CODE

    await service.activate(discount.id)
    assert (await service.validate_and_compute(discount.code, 1000)).valid


async def test_private_gating_before_and_after_assignment(service):
    outsider = uuid.uuid4()
    discount = await service.issue_code(make_create(allowed_user_ids=[uuid.uuid4()]))

    before = await service.validate_and_compute(discount.code, 250000, user_id=outsider)
    assert before.reason == DiscountRejection.NOT_ALLOWED_USER

    await service.assign_users(discount.id, [outsider])

    after = await service.validate_and_compute(discount.code, 250000, user_id=outsider)
    assert after.valid
    assert after.amount == 25000


# ==================== Assignment ====================

async def test_assign_users_privatizes_code(service):
    discount = await service.issue_code(make_create())
    user = uuid.uuid4()

    updated, assignments = await service.assign_users(discount.id, [user, user], per_user_limit=3)

    assert updated.is_public is False
    assert len(assignments) == 1
    assert assignments[0].per_user_limit == 3


async def test_reassign_keeps_used_count(service):
    user = uuid.uuid4()
    discount = await service.issue_code(make_create())
    await service.assign_users(discount.id, [user], per_user_limit=2)

    result, redemption = await service.redeem(discount.code, 1000, uuid.uuid4(), user_id=user)
    assert redemption is not None

    _, assignments = await service.assign_users(
        discount.id, [user], per_user_limit=5,
        effective_from=NOW - timedelta(hours=1), effective_to=NOW + timedelta(hours=1),
    )
    assert assignments[0].used_count == 1
    assert assignments[0].per_user_limit == 5
    assert len(await service.repo.list_assignments(discount.id)) == 1


async def test_assign_rejects_inverted_window(service):
    discount = await service.issue_code(make_create())
    with pytest.raises(DiscountValidationError):
        await service.assign_users(
            discount.id, [uuid.uuid4()],
            effective_from=NOW, effective_to=NOW - timedelta(minutes=1),
        )


async def test_assign_unknown_code(service):
    with pytest.raises(DiscountNotFound):
        await service.assign_users(uuid.uuid4(), [uuid.uuid4()])


async def test_set_public_reopens_private_code(service):
    discount = await service.issue_code(make_create(allowed_user_ids=[uuid.uuid4()]))
    await service.set_public(discount.id)

    assert (await service.validate_and_compute(discount.code, 1000)).valid


# ==================== Redemption ====================

async def test_redeem_records_ledger_and_counts(service):
    discount = await service.issue_code(make_create(usage_limit=2))
    order_id = uuid.uuid4()

    result, redemption = await service.redeem(discount.code, 250000, order_id)

    assert result.valid
    assert redemption.order_id == order_id
    assert redemption.amount_applied == 25000
    assert redemption.status == RedemptionStatus.APPLIED.value
    assert result.discount.used_count == 1


async def test_redeem_respects_usage_limit(service):
    discount = await service.issue_code(make_create(usage_limit=1))

    _, first = await service.redeem(discount.code, 1000, uuid.uuid4())
    second_result, second = await service.redeem(discount.code, 1000, uuid.uuid4())

    assert first is not None
    assert second is None
    assert second_result.reason == DiscountRejection.USAGE_LIMIT


async def test_redeem_respects_per_user_limit(service):
    user = uuid.uuid4()
    discount = await service.issue_code(make_create(allowed_user_ids=[user]))

    _, first = await service.redeem(discount.code, 1000, uuid.uuid4(), user_id=user)
    result, second = await service.redeem(discount.code, 1000, uuid.uuid4(), user_id=user)

    assert first is not None
    assert second is None
    assert result.reason == DiscountRejection.PER_USER_LIMIT


async def test_lost_global_race_gives_back_user_use(service, monkeypatch):
    user = uuid.uuid4()
    discount = await service.issue_code(make_create(allowed_user_ids=[user], usage_limit=1))
    monkeypatch.setattr(service.repo, "increment_usage", AsyncMock(return_value=False))

    result, redemption = await service.redeem(discount.code, 1000, uuid.uuid4(), user_id=user)

    assert redemption is None
    assert result.reason == DiscountRejection.USAGE_LIMIT
    assignment = await service.repo.find_assignment(discount.id, user)
    assert assignment.used_count == 0


async def test_rejected_redeem_changes_nothing(service):
    discount = await service.issue_code(make_create(min_order_amount=5000))

    result, redemption = await service.redeem(discount.code, 100, uuid.uuid4())

    assert redemption is None
    assert result.reason == DiscountRejection.BELOW_MIN_ORDER
    await service.db.refresh(discount)
    assert discount.used_count == 0


async def test_redeem_same_order_twice_is_recorded_once(service):
    discount = await service.issue_code(make_create(usage_limit=5))
    order_id = uuid.uuid4()

    _, first = await service.redeem(discount.code, 250000, order_id)
    result, again = await service.redeem(discount.code.lower(), 250000, order_id)

    assert result.valid
    assert again.id == first.id
    assert result.amount == 25000
    await service.db.refresh(discount)
    assert discount.used_count == 1
    rows = await service.db.scalar(
        select(func.count()).select_from(DiscountRedemption).where(DiscountRedemption.order_id == order_id)
    )
    assert rows == 1


async def test_redeem_same_order_twice_keeps_user_count(service):
    user = uuid.uuid4()
    discount = await service.issue_code(make_create(allowed_user_ids=[user]))
    order_id = uuid.uuid4()

    _, first = await service.redeem(discount.code, 1000, order_id, user_id=user)
    _, again = await service.redeem(discount.code, 1000, order_id, user_id=user)

    assert again.id == first.id
    assignment = await service.repo.find_assignment(discount.id, user)
    assert assignment.used_count == 1


async def test_redeem_after_deactivation_still_returns_recorded_order(service):
    discount = await service.issue_code(make_create())
    order_id = uuid.uuid4()
    _, first = await service.redeem(discount.code, 1000, order_id)
    await service.deactivate(discount.id)

    _, again = await service.redeem(discount.code, 1000, order_id)
    result, other = await service.redeem(discount.code, 1000, uuid.uuid4())

    assert again.id == first.id
    assert other is None
    assert result.reason == DiscountRejection.INVALID_CODE


def test_only_applied_redemptions_exist():
    assert [s.value for s in RedemptionStatus] == ["APPLIED"]


def test_models_carry_no_lazy_relationships():
    for model in (DiscountCode, DiscountAssignment, DiscountRedemption):
        assert not sa_inspect(model).relationships


# ==================== Quote ====================

async def test_quote_stacks_public_then_private(service):
    user = uuid.uuid4()
    public = await service.issue_code(make_create())
    private = await service.issue_code(make_create(
        kind="FIXED", value=Decimal("50000"), allowed_user_ids=[user],
    ))

    quote = await service.quote(
        250000, public_code=public.code, private_code=private.code, user_id=user,
    )

    assert [line.amount for line in quote.lines] == [25000, 50000]
    assert quote.total_discount == 75000
    assert quote.final_amount == 175000


async def test_quote_skips_code_in_wrong_slot(service):
    user = uuid.uuid4()
    private = await service.issue_code(make_create(allowed_user_ids=[user]))

    quote = await service.quote(1000, public_code=private.code, user_id=user)

    assert quote.lines[0].applied is False
    assert quote.total_discount == 0
    assert quote.final_amount == 1000


async def test_quote_reports_rejections_per_code(service):
    public = await service.issue_code(make_create())

    quote = await service.quote(1000, public_code=public.code, private_code="MISSING")

    assert quote.lines[0].applied is True
    assert quote.lines[1].applied is False
    assert quote.lines[1].reason == DiscountRejection.INVALID_CODE


async def test_quote_never_goes_negative(service):
    user = uuid.uuid4()
    public = await service.issue_code(make_create(kind="FIXED", value=Decimal("900")))
    private = await service.issue_code(make_create(
        kind="FIXED", value=Decimal("900"), allowed_user_ids=[user],
    ))

    quote = await service.quote(1000, public_code=public.code, private_code=private.code, user_id=user)

    assert quote.total_discount == 1000
    assert quote.final_amount == 0


# ==================== Lookups ====================

async def test_get_by_code(service):
    discount = await service.issue_code(make_create())
    assert (await service.get_by_code(discount.code.lower())).id == discount.id
    with pytest.raises(DiscountNotFound):
        await service.get_by_code("UNKNOWN")


async def test_get_public_by_code(service):
    allowed = uuid.uuid4()
    public = await service.issue_code(make_create())
    private = await service.issue_code(make_create(allowed_user_ids=[allowed]))
    expired = await service.issue_code(make_create(
        start_at=NOW - timedelta(days=10), end_at=NOW - timedelta(days=1),
    ))

    assert (await service.get_public_by_code(public.code, None)).id == public.id
    assert (await service.get_public_by_code(private.code, allowed)).id == private.id

    with pytest.raises(DiscountAccessDenied) as exc_info:
        await service.get_public_by_code(private.code, uuid.uuid4())
    assert exc_info.value.details["reason"] == DiscountRejection.NOT_ALLOWED_USER.value

    with pytest.raises(DiscountNotFound):
        await service.get_public_by_code(expired.code, allowed)


async def test_list_available(service):
    user = uuid.uuid4()
    public = await service.issue_code(make_create())
    await service.issue_code(make_create(start_at=NOW - timedelta(days=5), end_at=NOW - timedelta(days=1)))
    mine = await service.issue_code(make_create(allowed_user_ids=[user]))
    await service.issue_code(make_create(allowed_user_ids=[uuid.uuid4()]))

    page = await service.list_available(user)
    assert {d.id for d in page.items} == {public.id, mine.id}
    assert page.total == 2

    anonymous = await service.list_available(None)
    assert [d.id for d in anonymous.items] == [public.id]


async def test_list_codes_filters_and_paginates(service):
    owner = uuid.uuid4()
    for _ in range(3):
        await service.issue_code(make_create(owner_id=owner))
    other = await service.issue_code(make_create())
    await service.deactivate(other.id)

    page = await service.list_codes(owner_id=owner, page=1, limit=2)
    assert page.total == 3
    assert len(page.items) == 2
    assert page.total_pages == 2

    inactive = await service.list_codes(active=False)
    assert [d.id for d in inactive.items] == [other.id]
