from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from vision_console.domain.errors import PermissionDeniedError
from vision_console.domain.models import AccessGrant, GrantStatus, VisionType


@dataclass(frozen=True)
class FullAccess:
    """Operator may touch every company of the client."""


@dataclass(frozen=True)
class ScopedAccess:
    """Operator may touch only ``company_ids``; an empty set means no access at all."""

    company_ids: frozenset[str] = frozenset()

    def has_any(self) -> bool:
        return bool(self.company_ids)


AccessDecision = FullAccess | ScopedAccess

ALL_VISION_TYPES: frozenset[VisionType] = frozenset(VisionType)
SCOPED_VISION_TYPES: frozenset[VisionType] = frozenset({VisionType.CUSTOM})


def resolve_access(grants: Iterable[AccessGrant]) -> AccessDecision:
    company_ids: set[str] = set()
    for grant in grants:
        if grant.status != GrantStatus.ACTIVE:
            continue
        if grant.company_id is None:
            return FullAccess()
        company_ids.add(grant.company_id)
    return ScopedAccess(company_ids=frozenset(company_ids))


def has_client_access(access: AccessDecision) -> bool:
    return isinstance(access, FullAccess) or access.has_any()


def allowed_vision_types(access: AccessDecision) -> frozenset[VisionType]:
    if isinstance(access, FullAccess):
        return ALL_VISION_TYPES
    return SCOPED_VISION_TYPES


def ensure_vision_type_allowed(access: AccessDecision, vision_type: VisionType) -> None:
    if vision_type not in allowed_vision_types(access):
        raise PermissionDeniedError(f"vision type {vision_type.value} requires full access to the client")
