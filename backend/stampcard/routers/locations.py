"""Location administration router (tenant admins).

Endpoints:
    GET    /api/tenants/{tenant_id}/locations                  List locations with customer counts
    POST   /api/tenants/{tenant_id}/locations                  Create a location and its settings row
    PATCH  /api/tenants/{tenant_id}/locations/{location_id}    Rename, re-address or (re)activate
    DELETE /api/tenants/{tenant_id}/locations/{location_id}    Deactivate (soft)
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from stampcard.auth.deps import get_current_user
from stampcard.database import get_db
from stampcard.models.user import User
from stampcard.schemas.locations import (
    LocationCreate,
    LocationOut,
    LocationSummary,
    LocationUpdate,
)
from stampcard.services.locations import (
    create_location,
    deactivate_location,
    list_locations,
    update_location,
)

router = APIRouter()


@router.get("/{tenant_id}/locations", response_model=list[LocationSummary])
async def get_locations(
    tenant_id: str,
    include_inactive: bool = Query(True),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await list_locations(db, user, tenant_id, include_inactive=include_inactive)


@router.post(
    "/{tenant_id}/locations",
    response_model=LocationOut,
    status_code=status.HTTP_201_CREATED,
)
async def post_location(
    tenant_id: str,
    body: LocationCreate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await create_location(db, user, tenant_id, body.model_dump())


@router.patch("/{tenant_id}/locations/{location_id}", response_model=LocationOut)
async def patch_location(
    tenant_id: str,
    location_id: str,
    body: LocationUpdate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await update_location(
        db, user, tenant_id, location_id, body.model_dump(exclude_unset=True)
    )


@router.delete("/{tenant_id}/locations/{location_id}", response_model=LocationOut)
async def delete_location(
    tenant_id: str,
    location_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await deactivate_location(db, user, tenant_id, location_id)
