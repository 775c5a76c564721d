from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import TypeVar

from vision_console.domain.access import AccessDecision, FullAccess

T = TypeVar("T")


def is_visible(access: AccessDecision, membership: Iterable[str]) -> bool:
    if isinstance(access, FullAccess):
        return True
    return set(membership) <= access.company_ids


def filter_visible(
    access: AccessDecision,
    visions: Iterable[T],
    membership_of: Callable[[T], Iterable[str]],
) -> list[T]:
    """Keep the visions whose whole membership lies inside the operator's access.

    A vision with even one company outside a scoped grant is dropped entirely;
    there is no redacted view.
    """
    return [item for item in visions if is_visible(access, membership_of(item))]
