from __future__ import annotations

from collections.abc import Iterable
from typing import Any

PERM_WILDCARD = "*"
PERM_TENANT_ADMIN = "tenant.admin"
PERM_HIERARCHY_READ = "hierarchy.read"
PERM_HIERARCHY_WRITE = "hierarchy.write"
PERM_ASSIGNMENT_READ = "assignment.read"
PERM_ASSIGNMENT_WRITE = "assignment.write"

TENANT_ADMIN_PERMISSIONS = frozenset({PERM_WILDCARD, PERM_TENANT_ADMIN})


def claim_permissions(claims: dict[str, Any]) -> list[str]:
    permissions = claims.get("permissions", [])
    if not isinstance(permissions, list):
        return []
    return [item for item in permissions if isinstance(item, str)]


def has_permission(claims: dict[str, Any], permission: str) -> bool:
    permissions = claim_permissions(claims)
    # tenant.admin implies every engine permission within its own tenant
    return permission in permissions or is_tenant_admin(permissions)


def is_tenant_admin(permissions: Iterable[str]) -> bool:
    return any(item in TENANT_ADMIN_PERMISSIONS for item in permissions)
