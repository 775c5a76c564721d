from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from vision_console.domain.errors import ValidationConflictError
from vision_console.domain.models import Company, VisionType


def _normalize(values: Iterable[str | None]) -> frozenset[str]:
    return frozenset(item.strip() for item in values if isinstance(item, str) and item.strip())


@dataclass(frozen=True)
class VisionParams:
    """Type-specific inputs of a vision.

    Only one field is meaningful for a given type: ``root`` for ROOT_SCOPED,
    ``roots`` for GROUP_SCOPED and ``company_ids`` for CUSTOM.
    """

    root: str | None = None
    roots: frozenset[str] = frozenset()
    company_ids: frozenset[str] = frozenset()

    @classmethod
    def build(
        cls,
        *,
        root: str | None = None,
        roots: Iterable[str] = (),
        company_ids: Iterable[str] = (),
    ) -> VisionParams:
        clean_root = root.strip() if isinstance(root, str) and root.strip() else None
        return cls(root=clean_root, roots=_normalize(roots), company_ids=_normalize(company_ids))


def params_for_type(vision_type: VisionType, params: VisionParams) -> VisionParams:
    """Drop every parameter that does not belong to ``vision_type``."""
    if vision_type == VisionType.ROOT_SCOPED:
        return VisionParams(root=params.root)
    if vision_type == VisionType.GROUP_SCOPED:
        return VisionParams(roots=params.roots)
    if vision_type == VisionType.CUSTOM:
        return VisionParams(company_ids=params.company_ids)
    return VisionParams()


def resolve_membership(
    vision_type: VisionType,
    params: VisionParams,
    roster: Iterable[Company],
) -> frozenset[str]:
    """Compute the company ids of a vision from scratch.

    ``roster`` must already be narrowed to the companies the acting operator
    may reference. An incomplete configuration (no root picked yet, empty
    root set) resolves to an empty membership instead of failing, so callers
    can preview while the operator is still editing.
    """
    companies = list(roster)
    scoped = params_for_type(vision_type, params)

    if vision_type == VisionType.CLIENT_WIDE:
        return frozenset(company.id for company in companies)

    if vision_type == VisionType.ROOT_SCOPED:
        if scoped.root is None:
            return frozenset()
        return frozenset(company.id for company in companies if company.root == scoped.root)

    if vision_type == VisionType.GROUP_SCOPED:
        if not scoped.roots:
            return frozenset()
        return frozenset(company.id for company in companies if company.root in scoped.roots)

    known_ids = {company.id for company in companies}
    unknown = sorted(scoped.company_ids - known_ids)
    if unknown:
        raise ValidationConflictError(f"companies outside the accessible roster: {', '.join(unknown)}")
    return scoped.company_ids
