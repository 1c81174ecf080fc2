"""
Pydantic Schemas for Request/Response Validation

Author: Khalil Bannouri
Version: 3.0.0
"""

import json
from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# ERRORS
# =============================================================================

class ErrorDetail(BaseModel):
    """Machine code plus the Thai message shown to staff."""
    code: str
    message_th: str


class ErrorResponse(BaseModel):
    """Standard error response."""
    error: ErrorDetail


# =============================================================================
# STAFF AUTH
# =============================================================================

class PinLoginRequest(BaseModel):
    """Staff PIN login. Blank/missing PINs are rejected by the route."""
    pin: Optional[Any] = Field(None, examples=["1234"])


class OkResponse(BaseModel):
    ok: bool = True


class StaffMeResponse(BaseModel):
    ok: bool
    role: str = "staff"


class StaffPinUpdate(BaseModel):
    """New staff PIN set by an admin."""
    pin: str = Field(..., pattern=r"^[0-9]{4,12}$", examples=["482913"])


class RevokeSessionsResponse(BaseModel):
    success: bool
    staff_session_version: int


# =============================================================================
# ADMIN SETTINGS
# =============================================================================

class AdminSettingsResponse(BaseModel):
    """Store settings visible to admins (never the PIN hash)."""
    promptpay_id: str = ""
    line_approver_id: str = ""
    line_staff_id: str = ""
    pin_version: int = 1


class AdminSettingsUpdate(BaseModel):
    """
    Partial settings update. Only fields present in the body are written;
    an empty ``new_staff_pin`` is ignored.
    """
    promptpay_id: Optional[str] = Field(None, max_length=20, examples=["0812345678"])
    line_approver_id: Optional[str] = Field(None, max_length=64)
    line_staff_id: Optional[str] = Field(None, max_length=64)
    new_staff_pin: Optional[str] = Field(None, pattern=r"^([0-9]{4,12})?$", examples=["482913"])


class SuccessResponse(BaseModel):
    success: bool = True


# =============================================================================
# STAFF ORDERS
# =============================================================================

class UpdateStatusRequest(BaseModel):
    """Staff request to move an order to its next status."""
    model_config = ConfigDict(populate_by_name=True)

    order_id: int = Field(..., alias="orderId", ge=1, examples=[42])
    new_status: str = Field(..., alias="newStatus", min_length=1, examples=["ready"])


class UpdateStatusResponse(BaseModel):
    success: bool
    notified: bool = False


class StaffOrderResponse(BaseModel):
    """Order as shown on the staff board."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_number: str
    status: str
    customer_name: str
    customer_phone: str
    customer_note: Optional[str] = None
    pickup_type: str
    pickup_time: Optional[datetime] = None
    items: List[dict] = Field(default_factory=list)
    total_amount: int
    created_at: Optional[datetime] = None

    @field_validator("status", "pickup_type", mode="before")
    @classmethod
    def enum_value(cls, v: Any) -> Any:
        return getattr(v, "value", v)

    @field_validator("items", mode="before")
    @classmethod
    def parse_items(cls, v: Any) -> Any:
        if isinstance(v, str):
            try:
                parsed = json.loads(v or "[]")
            except ValueError:
                return []
            return parsed if isinstance(parsed, list) else []
        return v or []


class StaffOrderListResponse(BaseModel):
    orders: List[StaffOrderResponse]


class ResendNotificationResponse(BaseModel):
    success: bool
    status: str
    task_id: Optional[str] = None


# =============================================================================
# PROMPTPAY
# =============================================================================

class PromptPayIdResponse(BaseModel):
    promptpay_id: str


class PromptPayQrResponse(BaseModel):
    """Payment QR payload for a given amount."""
    promptpay_id: str
    amount: str
    payload: str
    qr_image_url: str


# =============================================================================
# HEALTH
# =============================================================================

class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    database: str
    redis: str
    notification_service: str
    timestamp: datetime
