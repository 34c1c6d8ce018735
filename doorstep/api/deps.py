from dataclasses import dataclass
from typing import Optional

from fastapi import Header, HTTPException, Request, status

from doorstep.booking.state_machine import Actor
from doorstep.services.booking_service import BookingService


@dataclass
class CurrentUser:
    id: int
    role: Actor


def get_current_user(
    x_user_id: Optional[int] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> CurrentUser:
    """
    Identity is established upstream (session/auth gateway) and forwarded as
    X-User-Id / X-User-Role headers.
    """
    if not x_user_id or not x_user_role:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    try:
        role = Actor(x_user_role.strip().lower())
    except ValueError:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unknown role")
    if role == Actor.SYSTEM:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unknown role")
    return CurrentUser(id=x_user_id, role=role)


def require_role(user: CurrentUser, *roles: Actor) -> None:
    if user.role not in roles:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized")


def get_booking_service(request: Request) -> BookingService:
    return request.app.state.booking_service
