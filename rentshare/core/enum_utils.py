"""
Enum Utilities for VARCHAR-based Enum Fields

ARCHITECTURE STANDARD:
━━━━━━━━━━━━━━━━━━━━━━
• Database: VARCHAR - NOT PostgreSQL ENUM
• SQLAlchemy: String(20) with Mapped[str]
• Pydantic: Python Enum for API validation
• Case: All enum values stored in UPPERCASE

DATA FLOW:
━━━━━━━━━━
INPUT (API Request):
    Pydantic Enum → .value → String → Database
    Example: DiscountKind.PERCENT → "PERCENT" → VARCHAR

OUTPUT (API Response):
    Database → String → Return directly

CASE NORMALIZATION:
━━━━━━━━━━━━━━━━━━━
Requests may send "percent" or "Fixed"; schemas run normalize_to_uppercase()
in a before-validator so any case is accepted and UPPERCASE is stored.
"""

from enum import Enum
from typing import Any, Optional, TypeVar, Type, Set


T = TypeVar('T', bound=Enum)


def get_enum_value(value: Any) -> Optional[str]:
    """
    Safely get string value from an enum or string.

    Examples:
        >>> get_enum_value(DiscountKind.FIXED)  # Pydantic input
        'FIXED'
        >>> get_enum_value("FIXED")  # Database value
        'FIXED'
        >>> get_enum_value(None)
        None
    """
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    return str(value)


def to_enum(value: Any, enum_class: Type[T]) -> Optional[T]:
    """
    Convert a string value to an enum instance.

    Examples:
        >>> to_enum("PERCENT", DiscountKind)
        DiscountKind.PERCENT
        >>> to_enum("BOGUS", DiscountKind)
        None
    """
    if value is None:
        return None
    if isinstance(value, enum_class):
        return value
    try:
        return enum_class(value)
    except (ValueError, KeyError):
        return None


def enum_values(enum_class: Type[Enum]) -> list:
    """Get all values from an enum class."""
    return [e.value for e in enum_class]


def enum_comment(enum_class: Type[Enum]) -> str:
    """
    Generate a comment string for a VARCHAR column.

    Examples:
        >>> enum_comment(DiscountKind)
        'PERCENT, FIXED'
    """
    return ", ".join(enum_values(enum_class))


# =============================================================================
# CASE NORMALIZATION FOR PYDANTIC SCHEMAS
# =============================================================================

def normalize_to_uppercase(value: Any, valid_values: Set[str]) -> Any:
    """
    Normalize a string value to UPPERCASE if it's a valid enum value.

    Returns the original value when it does not match, so Pydantic raises
    the validation error.

    Examples:
        >>> normalize_to_uppercase('percent', {'PERCENT', 'FIXED'})
        'PERCENT'
        >>> normalize_to_uppercase('bogus', {'PERCENT', 'FIXED'})
        'bogus'
    """
    if value is None:
        return value
    if isinstance(value, str):
        upper_v = value.strip().upper()
        if upper_v in valid_values:
            return upper_v
    return value


# =============================================================================
# PRE-DEFINED VALID VALUE SETS
# =============================================================================

VALID_DISCOUNT_KINDS = {"PERCENT", "FIXED"}
