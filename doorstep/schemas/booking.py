from datetime import datetime
from typing import List, Optional
import uuid

from pydantic import BaseModel, ConfigDict, Field

from doorstep.models.booking import BookingStatus, PaymentStatus


class BookingRequest(BaseModel):
    """Schema for a customer's booking request."""
    service_id: int
    provider_id: Optional[int] = None
    booking_date: datetime
    time_slot_label: Optional[str] = Field(None, max_length=64)


class RejectRequest(BaseModel):
    reason: str = Field(..., description="Why the booking or new slot is rejected.")


class RescheduleRequest(BaseModel):
    booking_date: datetime
    time_slot_label: Optional[str] = Field(None, max_length=64)
    comments: Optional[str] = None


class PaymentRequest(BaseModel):
    payment_reference: str = Field(..., min_length=1, max_length=128)


class DisputeRequest(BaseModel):
    reason: str


class CommentRequest(BaseModel):
    comments: Optional[str] = None


class ResolveDisputeRequest(BaseModel):
    """Admin decision on a disputed booking."""
    resolution_status: BookingStatus
    comments: Optional[str] = None


class BookingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    customer_id: int
    provider_id: Optional[int] = None
    service_id: int
    status: BookingStatus
    payment_status: PaymentStatus
    payment_reference: Optional[str] = None
    booking_date: datetime
    time_slot_label: Optional[str] = None
    rejection_reason: Optional[str] = None
    dispute_reason: Optional[str] = None
    created_at: Optional[datetime] = None


class BookingHistoryEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    from_status: BookingStatus
    to_status: BookingStatus
    changed_by: Optional[int] = None
    comments: Optional[str] = None
    created_at: Optional[datetime] = None


class BookingDetailResponse(BookingResponse):
    history: List[BookingHistoryEntry] = []
