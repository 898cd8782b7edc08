"""Identity endpoint: who am I and which organizations can I act in."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from batepapo.api.auth import CurrentUser, get_current_user
from batepapo.infra.db import txn
from batepapo.infra.repositories.users_repository import list_memberships

router = APIRouter(tags=["me"])


@router.get("/me")
def get_me(user: CurrentUser = Depends(get_current_user)) -> dict:
    """Authenticated user with organization memberships and roles."""
    with txn() as cur:
        organizations = list_memberships(cur, user_id=user.id)

    return {
        "id": user.id,
        "external_subject": user.external_subject,
        "email": user.email,
        "name": user.name,
        "organizations": organizations,
    }
