# Services module
from rentshare.services.discount_service import DiscountService
from rentshare.services.discount_repository import DiscountRepository

__all__ = [
    "DiscountService",
    "DiscountRepository",
]
