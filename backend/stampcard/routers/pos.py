"""Point-of-sale router.

Endpoints:
    POST  /api/pos/register-customer        Find by QR or register (201 new / 200 existing)
    POST  /api/pos/add-stamp                Award stamps for a visit
    POST  /api/pos/redeem-reward            Redeem one reward threshold
    POST  /api/pos/customer-lookup          Search by QR / phone / email / name
    PATCH /api/pos/customers/{id}           Edit contact details or status
    GET   /api/pos/customers/{id}/history   Stamp and reward events
    GET   /api/pos/customers/{id}/qr        Card QR code as SVG
"""

import io

import segno
from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from stampcard.auth.deps import get_current_user
from stampcard.database import get_db
from stampcard.models.user import User
from stampcard.schemas.customer import (
    CustomerHistory,
    CustomerOut,
    CustomerUpdate,
    CustomerWithTotals,
    RewardEventOut,
    StampEventOut,
)
from stampcard.schemas.pos import (
    AddStampRequest,
    AddStampResponse,
    CustomerLookupRequest,
    CustomerLookupResponse,
    CustomerUpdateResponse,
    RedeemRewardRequest,
    RedeemRewardResponse,
    RedemptionSummary,
    RegisterCustomerRequest,
    RegisterCustomerResponse,
    StampSummary,
)
from stampcard.services import customers as customer_service
from stampcard.services.ledger import award_stamps
from stampcard.services.redemption import redeem

router = APIRouter()


# ── Directory ────────────────────────────────────────────────

@router.post(
    "/register-customer",
    response_model=RegisterCustomerResponse,
    status_code=status.HTTP_201_CREATED,
)
async def register_customer(
    body: RegisterCustomerRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Return the card holder for a scanned QR code, or register a new customer."""
    customer, created = await customer_service.find_or_register(
        db,
        user,
        location_id=body.location_id,
        qr_code=body.qr_code,
        customer_data=body.customer_data.model_dump() if body.customer_data else None,
    )
    if not created:
        response.status_code = status.HTTP_200_OK
    return RegisterCustomerResponse(
        created=created, customer=CustomerOut.model_validate(customer)
    )


@router.post("/customer-lookup", response_model=CustomerLookupResponse)
async def customer_lookup(
    body: CustomerLookupRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    results = await customer_service.lookup(
        db,
        user,
        location_id=body.location_id,
        qr_code=body.qr_code,
        phone=body.phone,
        email=body.email,
        name=body.name,
    )
    return CustomerLookupResponse(customers=results)


@router.patch("/customers/{customer_id}", response_model=CustomerUpdateResponse)
async def update_customer(
    customer_id: str,
    body: CustomerUpdate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    changes = body.model_dump(exclude_unset=True, exclude={"location_id"})
    customer = await customer_service.update_customer(
        db, user, customer_id, body.location_id, changes
    )
    return CustomerUpdateResponse(customer=CustomerOut.model_validate(customer))


@router.get("/customers/{customer_id}/history", response_model=CustomerHistory)
async def customer_history(
    customer_id: str,
    location_id: str = Query(...),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    history = await customer_service.customer_history(db, user, customer_id, location_id)
    return CustomerHistory(
        customer=CustomerWithTotals(**history["customer"]),
        stamp_events=[StampEventOut.model_validate(e) for e in history["stamp_events"]],
        reward_events=[RewardEventOut.model_validate(e) for e in history["reward_events"]],
    )


@router.get("/customers/{customer_id}/qr")
async def customer_qr(
    customer_id: str,
    location_id: str = Query(...),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Return an SVG QR code encoding the customer's card token."""
    customer = await customer_service.get_customer_card(db, user, customer_id, location_id)

    qr = segno.make(customer.qr_code)
    buf = io.BytesIO()
    qr.save(buf, kind="svg", scale=4)
    return Response(content=buf.getvalue(), media_type="image/svg+xml")


# ── Ledger ───────────────────────────────────────────────────

@router.post(
    "/add-stamp",
    response_model=AddStampResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_stamp(
    body: AddStampRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    result = await award_stamps(
        db,
        user,
        customer_id=body.customer_id,
        location_id=body.location_id,
        stamps=body.stamps_earned,
        purchase_amount=body.amount,
        notes=body.notes,
    )
    return AddStampResponse(
        stamp_record=StampEventOut.model_validate(result.stamp_record),
        customer_summary=StampSummary(
            total_stamps=result.total_stamps,
            available_rewards=result.available_rewards,
            stamps_for_next_reward=result.stamps_for_next_reward,
        ),
    )


@router.post(
    "/redeem-reward",
    response_model=RedeemRewardResponse,
    status_code=status.HTTP_201_CREATED,
)
async def redeem_reward(
    body: RedeemRewardRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    result = await redeem(
        db,
        user,
        customer_id=body.customer_id,
        location_id=body.location_id,
        reward_type=body.reward_type,
        stamps_to_redeem=body.stamps_to_redeem,
        description=body.description,
    )
    return RedeemRewardResponse(
        reward_record=RewardEventOut.model_validate(result.reward_record),
        customer_summary=RedemptionSummary(
            remaining_stamps=result.remaining_stamps,
            available_rewards=result.available_rewards,
            stamps_for_next_reward=result.stamps_for_next_reward,
        ),
    )
