from __future__ import annotations

from enum import StrEnum


class BoundaryStatus(StrEnum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


ALLOWED_TRANSITIONS: dict[BoundaryStatus, set[BoundaryStatus]] = {
    BoundaryStatus.DRAFT: {BoundaryStatus.PUBLISHED},
    BoundaryStatus.PUBLISHED: {BoundaryStatus.ARCHIVED},
    # Rollback copies an archived row into a new version; it is never revived in place.
    BoundaryStatus.ARCHIVED: set(),
}


def can_transition(source: BoundaryStatus, target: BoundaryStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(source, set())
