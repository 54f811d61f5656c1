# Models module
from rentshare.models.discount import (
    DiscountCode,
    DiscountAssignment,
    DiscountRedemption,
    DiscountKind,
    RedemptionStatus,
)

__all__ = [
    "DiscountCode",
    "DiscountAssignment",
    "DiscountRedemption",
    "DiscountKind",
    "RedemptionStatus",
]
