import uuid
from typing import Any, Optional

from pydantic import BaseModel, Field


def _rid():
    """Generates a unique request ID for tracing."""
    return uuid.uuid4().hex


class SuccessResponse(BaseModel):
    """Envelope for every successful API response; errors use the handler body instead."""
    success: Optional[bool] = Field(default=True)
    request_id: str = Field(default_factory=_rid)
    data: Optional[Any] = None
