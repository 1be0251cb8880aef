from __future__ import annotations

from dataclasses import dataclass
from typing import Any

PERM_WILDCARD = "*"
PERM_BOUNDARY_READ = "boundary.read"
PERM_BOUNDARY_WRITE = "boundary.write"
PERM_BOUNDARY_ADMIN = "boundary.admin"
PERM_REGION_WRITE = "region.write"

ROLE_PERMISSIONS: dict[str, list[str]] = {
    "admin": [PERM_WILDCARD],
    "manager": [PERM_BOUNDARY_READ, PERM_BOUNDARY_WRITE],
    "user": [PERM_BOUNDARY_READ],
}


def has_permission(claims: dict[str, Any], permission: str) -> bool:
    permissions = claims.get("permissions", [])
    if not isinstance(permissions, list):
        return False
    return permission in permissions or PERM_WILDCARD in permissions


@dataclass(frozen=True)
class Actor:
    user_id: int
    is_admin: bool = False

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> Actor:
        return cls(user_id=int(claims["sub"]), is_admin=has_permission(claims, PERM_BOUNDARY_ADMIN))
