import logging
from uuid import UUID

from fastapi import APIRouter, Depends

from doorstep.api.deps import CurrentUser, get_booking_service, get_current_user, require_role
from doorstep.booking.state_machine import Actor
from doorstep.models.booking import BookingStatus
from doorstep.schemas.booking import BookingResponse, ResolveDisputeRequest
from doorstep.schemas.response import SuccessResponse
from doorstep.services.booking_service import BookingService
from doorstep.storage import bookings as store

router = APIRouter()
log = logging.getLogger(__name__)


@router.get("/disputes", response_model=SuccessResponse)
async def list_disputes_endpoint(user: CurrentUser = Depends(get_current_user)):
    """Bookings currently waiting on an admin decision."""
    require_role(user, Actor.ADMIN)
    disputed = await store.list_by_status(BookingStatus.DISPUTED)
    return SuccessResponse(data=[BookingResponse.model_validate(b).model_dump(mode="json") for b in disputed])


@router.patch("/bookings/{booking_id}/resolve", response_model=SuccessResponse)
async def resolve_dispute_endpoint(
    booking_id: UUID,
    payload: ResolveDisputeRequest,
    user: CurrentUser = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    require_role(user, Actor.ADMIN)
    booking = await service.resolve_dispute(booking_id, payload.resolution_status, user.id, payload.comments)
    log.info(f"Admin {user.id} resolved dispute on booking {booking_id} as {payload.resolution_status.value}")
    return SuccessResponse(data=BookingResponse.model_validate(booking).model_dump(mode="json"))


@router.post("/bookings/process-expired", response_model=SuccessResponse)
async def process_expired_endpoint(
    user: CurrentUser = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    """Runs the expiry sweep on demand; the scheduled job runs the same code."""
    require_role(user, Actor.ADMIN)
    expired = await service.process_expired_bookings()
    return SuccessResponse(data={"expired": len(expired), "booking_ids": [str(b.id) for b in expired]})
