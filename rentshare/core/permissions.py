"""
Permission checks on the codes carried in the access token.

Codes are `<module>:<action>`. A `<module>:*` grant covers every action of
the module and `*` covers everything.
"""
from typing import Iterable, Set
import uuid


# Issue, list, activate/deactivate, assign and publish discount codes
DISCOUNTS_MANAGE = "discounts:manage"

WILDCARD = "*"


class PermissionChecker:
    """Answers permission questions for one authenticated caller."""

    def __init__(self, user_id: uuid.UUID, permissions: Iterable[str]):
        self.user_id = user_id
        self.permissions: Set[str] = {p for p in permissions if isinstance(p, str)}

    def has_permission(self, permission_code: str) -> bool:
        if WILDCARD in self.permissions or permission_code in self.permissions:
            return True
        module = permission_code.split(":", 1)[0]
        return f"{module}:{WILDCARD}" in self.permissions

    def has_any_permission(self, permission_codes: Iterable[str]) -> bool:
        return any(self.has_permission(code) for code in permission_codes)
