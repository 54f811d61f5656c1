"""
Discount Code Generation

Codes are an optional sanitized prefix followed by a random uppercase
alphanumeric suffix. Uniqueness is checked against the store through an
async `exists` callback, with a bounded number of attempts:

    code = await generate_unique_code(
        prefix="summer-24",      # -> "SUMMER24"
        length=10,               # -> "SUMMER24" + 2 random chars
        exists=repo.code_exists,
    )

The check is read-then-write; the unique index on discount_codes.code stays
the final arbiter under concurrent issuance.
"""

import logging
import re
import secrets
import string
from typing import Awaitable, Callable, Optional

from rentshare.config import settings
from rentshare.services.exceptions import CodeGenerationFailed


logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits

_NON_CODE_CHARS = re.compile(r"[^A-Z0-9]")


def normalize_code(code: Optional[str]) -> str:
    """Uppercase and trim a user-entered code for lookup."""
    return (code or "").strip().upper()


def sanitize_prefix(prefix: Optional[str]) -> str:
    """Uppercase the prefix and drop every character outside [A-Z0-9]."""
    return _NON_CODE_CHARS.sub("", str(prefix or "").upper())


def clamp_code_length(length: Optional[int]) -> int:
    """
    Clamp the requested total code length into [1, DISCOUNT_CODE_MAX_LENGTH].

    Missing or zero lengths fall back to DISCOUNT_CODE_DEFAULT_LENGTH.
    """
    if not length:
        length = settings.DISCOUNT_CODE_DEFAULT_LENGTH
    return max(1, min(settings.DISCOUNT_CODE_MAX_LENGTH, int(length)))


def random_suffix(length: int) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def build_candidate(prefix: Optional[str], length: Optional[int]) -> str:
    """Build one candidate code: truncated sanitized prefix + random fill."""
    target_len = clamp_code_length(length)
    clean_prefix = sanitize_prefix(prefix)
    prefix_len = min(len(clean_prefix), target_len)
    random_len = target_len - prefix_len
    return clean_prefix[:prefix_len] + random_suffix(random_len)


async def generate_unique_code(
    prefix: Optional[str],
    length: Optional[int],
    exists: Callable[[str], Awaitable[bool]],
    attempts: Optional[int] = None,
) -> str:
    """
    Return the first candidate code that `exists` reports as unused.

    Raises:
        CodeGenerationFailed: every attempt collided with an existing code.
            The caller retries the whole issuance.
    """
    max_attempts = attempts or settings.DISCOUNT_CODE_GENERATION_ATTEMPTS

    for attempt in range(1, max_attempts + 1):
        candidate = build_candidate(prefix, length)
        if not await exists(candidate):
            return candidate
        logger.debug(f"Discount code collision on attempt {attempt}: {candidate}")

    logger.warning(
        f"Discount code generation exhausted {max_attempts} attempts "
        f"(prefix={sanitize_prefix(prefix)!r}, length={clamp_code_length(length)})"
    )
    raise CodeGenerationFailed(
        "Could not generate a unique discount code, please retry",
        details={"attempts": max_attempts},
    )
