"""RBAC (Role-Based Access Control) by organization.

Provides:
- Role hierarchy: attendant < manager < owner
- require_org_role(): FastAPI dependency for organization-scoped authorization
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable
from uuid import UUID

from fastapi import Depends, HTTPException, Query

from batepapo.api.auth import CurrentUser, get_current_user
from batepapo.infra.db import txn
from batepapo.infra.repositories.users_repository import get_member_role

# Role hierarchy: lower index = less privilege
ROLE_HIERARCHY = ["attendant", "manager", "owner"]


@dataclass
class OrgRoleContext:
    """Context returned by require_org_role."""

    user: CurrentUser
    organization_id: str
    role: str


def _role_level(role: str) -> int:
    """Get numeric level for role (higher = more privilege)."""
    try:
        return ROLE_HIERARCHY.index(role)
    except ValueError:
        return -1


def _get_user_role_for_org(user_id: str, organization_id: str) -> str | None:
    with txn() as cur:
        return get_member_role(cur, user_id=user_id, organization_id=organization_id)


def require_org_role(min_role: str) -> Callable[..., OrgRoleContext]:
    """Create a dependency that requires a minimum role in an organization.

    Args:
        min_role: Minimum required role (attendant, manager, owner).

    Returns:
        FastAPI dependency function.

    Usage:
        @router.get("/something")
        def endpoint(ctx: OrgRoleContext = Depends(require_org_role("manager"))):
            ...
    """
    min_level = _role_level(min_role)
    if min_level < 0:
        raise ValueError(f"Invalid role: {min_role}")

    def dependency(
        organization_id: UUID = Query(..., description="Organization ID"),
        user: CurrentUser = Depends(get_current_user),
    ) -> OrgRoleContext:
        org_id = str(organization_id)
        role = _get_user_role_for_org(user.id, org_id)

        if role is None:
            raise HTTPException(status_code=403, detail="No access to organization")

        if _role_level(role) < min_level:
            raise HTTPException(status_code=403, detail="Insufficient role")

        return OrgRoleContext(user=user, organization_id=org_id, role=role)

    return dependency
