"""Staff grant router (tenant admins).

Endpoints:
    GET    /api/tenants/{tenant_id}/staff              List grants (active only unless include_inactive)
    POST   /api/tenants/{tenant_id}/staff              Grant access, creating the staff user if needed
    PATCH  /api/tenants/{tenant_id}/staff/{grant_id}   Change flags, role or status
    DELETE /api/tenants/{tenant_id}/staff/{grant_id}   Revoke (status -> inactive)
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from stampcard.auth.deps import get_current_user
from stampcard.database import get_db
from stampcard.models.user import User
from stampcard.schemas.staff import StaffGrantCreate, StaffGrantOut, StaffGrantUpdate
from stampcard.services.staff import grant_access, list_staff, revoke_grant, update_grant

router = APIRouter()


@router.get("/{tenant_id}/staff", response_model=list[StaffGrantOut])
async def get_staff(
    tenant_id: str,
    include_inactive: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await list_staff(db, user, tenant_id, include_inactive=include_inactive)


@router.post(
    "/{tenant_id}/staff",
    response_model=StaffGrantOut,
    status_code=status.HTTP_201_CREATED,
)
async def post_staff_grant(
    tenant_id: str,
    body: StaffGrantCreate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await grant_access(db, user, tenant_id, body.model_dump())


@router.patch("/{tenant_id}/staff/{grant_id}", response_model=StaffGrantOut)
async def patch_staff_grant(
    tenant_id: str,
    grant_id: str,
    body: StaffGrantUpdate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await update_grant(
        db, user, tenant_id, grant_id, body.model_dump(exclude_unset=True)
    )


@router.delete("/{tenant_id}/staff/{grant_id}", response_model=StaffGrantOut)
async def delete_staff_grant(
    tenant_id: str,
    grant_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await revoke_grant(db, user, tenant_id, grant_id)
