from __future__ import annotations

from app.domain.permissions import (
    PERM_BOUNDARY_ADMIN,
    PERM_BOUNDARY_READ,
    PERM_BOUNDARY_WRITE,
    Actor,
    has_permission,
)
from app.domain.state_machine import BoundaryStatus, can_transition
from app.infra.auth import create_access_token, decode_access_token


def test_boundary_status_transitions() -> None:
    assert can_transition(BoundaryStatus.DRAFT, BoundaryStatus.PUBLISHED)
    assert can_transition(BoundaryStatus.PUBLISHED, BoundaryStatus.ARCHIVED)
    assert not can_transition(BoundaryStatus.ARCHIVED, BoundaryStatus.PUBLISHED)
    assert not can_transition(BoundaryStatus.DRAFT, BoundaryStatus.ARCHIVED)


def test_wildcard_grants_every_permission() -> None:
    claims = {"permissions": ["*"]}
    assert has_permission(claims, PERM_BOUNDARY_ADMIN)
    assert not has_permission({"permissions": "*"}, PERM_BOUNDARY_READ)


def test_role_tokens_map_to_actors() -> None:
    admin = Actor.from_claims(decode_access_token(create_access_token(user_id=1, role="admin")))
    manager_claims = decode_access_token(create_access_token(user_id=2, role="manager"))
    manager = Actor.from_claims(manager_claims)

    assert admin == Actor(user_id=1, is_admin=True)
    assert manager == Actor(user_id=2, is_admin=False)
    assert has_permission(manager_claims, PERM_BOUNDARY_WRITE)
    assert not has_permission(manager_claims, PERM_BOUNDARY_ADMIN)
