"""
Pydantic Schemas for Request/Response Validation

Request bodies for the lunch API and the response shapes built from the
engine's records (dataclasses, read via from_attributes).
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class SessionRequest(BaseModel):
    """Login with a display name."""
    name: str = Field(..., min_length=1, max_length=100, examples=["Alice"])


class AdminVerifyRequest(BaseModel):
    passcode: str = Field(..., examples=["8888"])


class MenuItemCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, examples=["Fried Rice"])
    price: int = Field(..., ge=0, examples=[90])

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Item name cannot be blank")
        return v.strip()


class RestaurantUpdate(BaseModel):
    """Any subset of the restaurant fields; omitted fields are left alone."""
    name: Optional[str] = Field(None, max_length=100)
    phone: Optional[str] = Field(None, max_length=50)
    address: Optional[str] = Field(None, max_length=255)


class DeadlineUpdate(BaseModel):
    """New deadline as "HH:MM" (24h); null or "" clears it."""
    order_deadline: Optional[str] = Field(None, examples=["11:30"])


class OrderCreate(BaseModel):
    item_id: str = Field(..., min_length=1, examples=["1729312345678"])
    quantity: int = Field(default=1, ge=1, le=99, examples=[1])
    note: str = Field(default="", max_length=200, examples=["less spicy"])


class SettleRequest(BaseModel):
    """Amount paid; omit to settle the full balance."""
    amount: Optional[int] = Field(None, examples=[200])


class AnalyzeMenuRequest(BaseModel):
    image: Optional[str] = Field(None, description="Base64 encoded JPEG")


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class RestaurantOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    name: str
    phone: str
    address: str


class MenuItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    price: int


class MenuResponse(BaseModel):
    """Today's menu; items are filtered by the search term when given."""
    restaurant: RestaurantOut
    items: list[MenuItemOut]
    image_url: str
    order_deadline: str
    is_closed: bool
    provider: Optional[str] = None


class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_name: str
    item_id: str
    item_name: str
    unit_price: int
    quantity: int
    note: str
    price: int
    created_at: Optional[datetime] = None


class OrderListResponse(BaseModel):
    total: int
    grand_total: int
    orders: list[OrderOut]


class HistoryGroupOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    date: str
    orders: list[OrderOut]
    total: int


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    name: str
    balance: int
    last_active: Optional[datetime] = None


class UserListResponse(BaseModel):
    users: list[UserOut]
    total_debt: int


class SessionResponse(BaseModel):
    success: bool = True
    user: UserOut


class SettleResponse(BaseModel):
    success: bool = True
    user_name: str
    amount: int
    balance: int


class ExportResponse(BaseModel):
    success: bool = True
    task_id: Optional[str] = None
    status: str
    order_count: int


class SuccessResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    store: str
    analyzer: str
    environment: str
    timestamp: datetime
    details: dict[str, Any] = Field(default_factory=dict)
