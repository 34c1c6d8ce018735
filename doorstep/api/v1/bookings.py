import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status

from doorstep.api.deps import CurrentUser, get_booking_service, get_current_user, require_role
from doorstep.booking.state_machine import Actor
from doorstep.models.booking import Booking
from doorstep.schemas.booking import (
    BookingDetailResponse,
    BookingHistoryEntry,
    BookingRequest,
    BookingResponse,
    CommentRequest,
    DisputeRequest,
    PaymentRequest,
    RejectRequest,
    RescheduleRequest,
)
from doorstep.schemas.response import SuccessResponse
from doorstep.services.booking_service import BookingService
from doorstep.storage import bookings as store

router = APIRouter()
log = logging.getLogger(__name__)


def _dump(booking: Booking) -> dict:
    return BookingResponse.model_validate(booking).model_dump(mode="json")


def _dump_many(bookings: List[Booking]) -> List[dict]:
    return [_dump(b) for b in bookings]


def _comments(payload: Optional[CommentRequest]) -> Optional[str]:
    return payload.comments if payload else None


async def _load_for(service: BookingService, booking_id: UUID, user: CurrentUser) -> Booking:
    """Fetches the booking and checks the caller takes part in it."""
    booking = await service.get_booking(booking_id)
    if user.role == Actor.ADMIN:
        return booking
    if user.role == Actor.CUSTOMER and booking.customer_id == user.id:
        return booking
    if user.role == Actor.PROVIDER and booking.provider_id == user.id:
        return booking
    log.warning(f"User {user.id} ({user.role.value}) denied access to booking {booking_id}")
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized")


@router.post("/", status_code=status.HTTP_201_CREATED, response_model=SuccessResponse)
async def create_booking_endpoint(
    payload: BookingRequest,
    user: CurrentUser = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    """Creates a booking request (status 'pending') for the calling customer."""
    require_role(user, Actor.CUSTOMER)
    booking = await service.create_booking(
        customer_id=user.id,
        service_id=payload.service_id,
        booking_date=payload.booking_date,
        provider_id=payload.provider_id,
        time_slot_label=payload.time_slot_label,
    )
    return SuccessResponse(data=_dump(booking))


@router.get("/customer", response_model=SuccessResponse)
async def customer_bookings_endpoint(user: CurrentUser = Depends(get_current_user)):
    require_role(user, Actor.CUSTOMER)
    return SuccessResponse(data=_dump_many(await store.list_for_customer(user.id)))


@router.get("/provider", response_model=SuccessResponse)
async def provider_bookings_endpoint(user: CurrentUser = Depends(get_current_user)):
    require_role(user, Actor.PROVIDER)
    return SuccessResponse(data=_dump_many(await store.list_for_provider(user.id)))


@router.get("/provider/pending", response_model=SuccessResponse)
async def provider_pending_endpoint(user: CurrentUser = Depends(get_current_user)):
    """New requests and customer reschedules waiting on the provider."""
    require_role(user, Actor.PROVIDER)
    return SuccessResponse(data=_dump_many(await store.list_pending_for_provider(user.id)))


@router.get("/{booking_id}", response_model=SuccessResponse)
async def get_booking_endpoint(
    booking_id: UUID,
    user: CurrentUser = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    """Fetches a booking with its status history."""
    booking = await _load_for(service, booking_id, user)
    history = await service.get_history(booking.id)
    data = BookingDetailResponse(
        **BookingResponse.model_validate(booking).model_dump(),
        history=[BookingHistoryEntry.model_validate(h) for h in history],
    ).model_dump(mode="json")
    return SuccessResponse(data=data)


@router.patch("/{booking_id}/accept", response_model=SuccessResponse)
async def accept_endpoint(
    booking_id: UUID,
    payload: Optional[CommentRequest] = None,
    user: CurrentUser = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    """Provider accepts a request or a customer reschedule; customer accepts a provider reschedule."""
    await _load_for(service, booking_id, user)
    booking = await service.accept(booking_id, user.role, user.id, _comments(payload))
    return SuccessResponse(data=_dump(booking))


@router.patch("/{booking_id}/reject", response_model=SuccessResponse)
async def reject_endpoint(
    booking_id: UUID,
    payload: RejectRequest,
    user: CurrentUser = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    await _load_for(service, booking_id, user)
    booking = await service.reject(booking_id, user.role, payload.reason, user.id)
    return SuccessResponse(data=_dump(booking))


@router.patch("/{booking_id}/reschedule", response_model=SuccessResponse)
async def reschedule_endpoint(
    booking_id: UUID,
    payload: RescheduleRequest,
    user: CurrentUser = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    """Proposes a new slot; the other party must accept or reject it."""
    await _load_for(service, booking_id, user)
    booking = await service.reschedule(
        booking_id, user.role, payload.booking_date, payload.time_slot_label, user.id, payload.comments
    )
    return SuccessResponse(data=_dump(booking))


@router.patch("/{booking_id}/en-route", response_model=SuccessResponse)
async def en_route_endpoint(
    booking_id: UUID,
    user: CurrentUser = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    require_role(user, Actor.PROVIDER)
    await _load_for(service, booking_id, user)
    return SuccessResponse(data=_dump(await service.mark_en_route(booking_id, user.id)))


@router.patch("/{booking_id}/payment", response_model=SuccessResponse)
async def submit_payment_endpoint(
    booking_id: UUID,
    payload: PaymentRequest,
    user: CurrentUser = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    """Customer submits (or corrects) a payment reference for provider verification."""
    require_role(user, Actor.CUSTOMER)
    await _load_for(service, booking_id, user)
    booking = await service.submit_payment(booking_id, payload.payment_reference, user.id)
    return SuccessResponse(data=_dump(booking))


@router.patch("/{booking_id}/payment-failed", response_model=SuccessResponse)
async def payment_failed_endpoint(
    booking_id: UUID,
    payload: Optional[CommentRequest] = None,
    user: CurrentUser = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    require_role(user, Actor.PROVIDER)
    await _load_for(service, booking_id, user)
    booking = await service.fail_payment(booking_id, user.id, _comments(payload))
    return SuccessResponse(data=_dump(booking))


@router.patch("/{booking_id}/complete", response_model=SuccessResponse)
async def complete_endpoint(
    booking_id: UUID,
    payload: Optional[CommentRequest] = None,
    user: CurrentUser = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    require_role(user, Actor.PROVIDER)
    await _load_for(service, booking_id, user)
    booking = await service.complete(booking_id, user.id, _comments(payload))
    return SuccessResponse(data=_dump(booking))


@router.patch("/{booking_id}/dispute", response_model=SuccessResponse)
async def dispute_endpoint(
    booking_id: UUID,
    payload: DisputeRequest,
    user: CurrentUser = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    require_role(user, Actor.CUSTOMER, Actor.PROVIDER)
    await _load_for(service, booking_id, user)
    booking = await service.dispute(booking_id, user.role, payload.reason, user.id)
    return SuccessResponse(data=_dump(booking))


@router.patch("/{booking_id}/cancel", response_model=SuccessResponse)
async def cancel_endpoint(
    booking_id: UUID,
    payload: Optional[CommentRequest] = None,
    user: CurrentUser = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    require_role(user, Actor.CUSTOMER)
    await _load_for(service, booking_id, user)
    booking = await service.cancel(booking_id, user.id, _comments(payload))
    return SuccessResponse(data=_dump(booking))
