from __future__ import annotations

from typing import Any

PERM_WILDCARD = "*"
PERM_IDENTITY_READ = "identity.read"
PERM_IDENTITY_WRITE = "identity.write"
PERM_COMPANY_READ = "company.read"
PERM_COMPANY_WRITE = "company.write"
PERM_VISION_READ = "vision.read"
PERM_VISION_WRITE = "vision.write"

DEFAULT_PERMISSION_NAMES = [
    PERM_WILDCARD,
    PERM_IDENTITY_READ,
    PERM_IDENTITY_WRITE,
    PERM_COMPANY_READ,
    PERM_COMPANY_WRITE,
    PERM_VISION_READ,
    PERM_VISION_WRITE,
]

# Console permissions only gate which endpoints an operator may call; which
# companies and visions they see is decided by their access grants.
OPERATOR_PERMISSION_NAMES = [
    PERM_COMPANY_READ,
    PERM_VISION_READ,
    PERM_VISION_WRITE,
]


def has_permission(claims: dict[str, Any], permission: str) -> bool:
    permissions = claims.get("permissions", [])
    if not isinstance(permissions, list):
        return False
    return permission in permissions or PERM_WILDCARD in permissions
