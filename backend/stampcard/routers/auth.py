"""Session router.

Endpoints:
    GET  /api/auth/me       Current staff user and their active grants
    POST /api/auth/logout   Revoke the bearer token

Tokens are minted out of band (`python -m stampcard.cli issue-token`).
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from stampcard.auth.deps import get_current_user
from stampcard.auth.revocation import TokenRevocation
from stampcard.config import settings
from stampcard.database import get_db
from stampcard.models.staff_grant import GrantStatus, StaffGrant
from stampcard.models.user import User
from stampcard.schemas.auth import GrantOut, LogoutResponse, StaffOut

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/me", response_model=StaffOut)
async def me(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Lets a till work out which locations to offer before any POS call."""
    grants = (
        await db.execute(
            select(StaffGrant)
            .where(
                StaffGrant.user_id == user.id,
                StaffGrant.status == GrantStatus.ACTIVE.value,
            )
            .order_by(StaffGrant.tenant_id, StaffGrant.location_id)
        )
    ).scalars().all()
    return StaffOut(
        id=user.id,
        email=user.email,
        full_name=user.full_name,
        grants=[GrantOut.model_validate(g) for g in grants],
    )


@router.post("/logout", response_model=LogoutResponse)
async def logout(user: User = Depends(get_current_user)):
    if not settings.token_revocation_enabled:
        return LogoutResponse(revoked=False)

    revoked = await TokenRevocation.revoke_token(user._token_payload)  # type: ignore[attr-defined]
    logger.info(f"Staff user {user.id} logged out (revoked={revoked})")
    return LogoutResponse(revoked=revoked)
