from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from vision_console.domain.membership import VisionParams, params_for_type
from vision_console.domain.models import VisionType


@dataclass(frozen=True)
class SiblingVision:
    id: str
    name: str
    vision_type: VisionType
    is_active: bool
    root: str | None = None
    roots: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class NoConflict:
    pass


@dataclass(frozen=True)
class Conflict:
    vision_id: str
    vision_name: str
    reason: str


UniquenessResult = NoConflict | Conflict


def check_uniqueness(
    vision_type: VisionType,
    params: VisionParams,
    siblings: Iterable[SiblingVision],
    *,
    exclude_vision_id: str | None = None,
    candidate_active: bool = True,
) -> UniquenessResult:
    """Compare a candidate against the other visions of the same client.

    Only active siblings of the candidate's type participate. The result is an
    early rejection; the partial unique indexes on ``visions`` and
    ``vision_group_roots`` remain the authority under concurrent writers.
    """
    if vision_type == VisionType.CUSTOM or not candidate_active:
        return NoConflict()

    scoped = params_for_type(vision_type, params)
    rivals = [
        item
        for item in siblings
        if item.is_active and item.vision_type == vision_type and item.id != exclude_vision_id
    ]

    for rival in rivals:
        if vision_type == VisionType.CLIENT_WIDE:
            return Conflict(
                vision_id=rival.id,
                vision_name=rival.name,
                reason="a CLIENT_WIDE vision already exists for this client",
            )
        if vision_type == VisionType.ROOT_SCOPED and scoped.root is not None and rival.root == scoped.root:
            return Conflict(
                vision_id=rival.id,
                vision_name=rival.name,
                reason=f"a vision already exists for this client and root {scoped.root}",
            )
        if vision_type == VisionType.GROUP_SCOPED:
            shared = sorted(scoped.roots & rival.roots)
            if shared:
                return Conflict(
                    vision_id=rival.id,
                    vision_name=rival.name,
                    reason=f"vision '{rival.name}' already includes roots: {', '.join(shared)}",
                )
    return NoConflict()
