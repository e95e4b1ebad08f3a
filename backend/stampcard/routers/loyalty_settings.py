"""Loyalty settings router.

Endpoints:
    GET /api/locations/{location_id}/loyalty-settings   Effective settings (stored or defaults)
    PUT /api/locations/{location_id}/loyalty-settings   Create or update (tenant admins)
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from stampcard.auth.deps import get_current_user
from stampcard.database import get_db
from stampcard.models.user import User
from stampcard.schemas.loyalty_settings import LoyaltySettingsOut, LoyaltySettingsUpdate
from stampcard.services.loyalty_settings import (
    read_location_settings,
    update_location_settings,
)

router = APIRouter()


@router.get("/{location_id}/loyalty-settings", response_model=LoyaltySettingsOut)
async def get_loyalty_settings(
    location_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    effective = await read_location_settings(db, user, location_id)
    return LoyaltySettingsOut(**effective.as_dict())


@router.put("/{location_id}/loyalty-settings", response_model=LoyaltySettingsOut)
async def put_loyalty_settings(
    location_id: str,
    body: LoyaltySettingsUpdate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    effective = await update_location_settings(
        db, user, location_id, body.model_dump(exclude_unset=True)
    )
    return LoyaltySettingsOut(**effective.as_dict())
