"""
Pydantic Schemas for Request/Response Validation

Shared by the FastAPI app and the Python client kit.
"""

from pydantic import AliasChoices, BaseModel, EmailStr, Field, field_validator
from typing import Optional, List
from datetime import datetime

from quickserve.models import MenuCategory, OrderStatus, Site, UserRole
from quickserve.services.orders import OrderLine


# =============================================================================
# MENU
# =============================================================================

class MenuItemCreate(BaseModel):
    """Request schema for adding a menu item."""
    name: str = Field(..., min_length=1, max_length=100, examples=["Healthy Veg Thali"])
    description: Optional[str] = Field(None, max_length=500)
    price: float = Field(..., ge=0, examples=[120])
    category: MenuCategory = Field(..., examples=["food"])
    image: str = Field(default="/placeholder.svg", max_length=255)
    location: Site = Field(..., examples=["medical"])
    available: bool = True


class MenuItemResponse(BaseModel):
    """A catalog entry."""
    id: int
    name: str
    description: Optional[str] = None
    price: float
    category: MenuCategory
    image: Optional[str] = None
    location: Site
    available: bool

    class Config:
        from_attributes = True


# =============================================================================
# ORDERS
# =============================================================================

class OrderLineSchema(BaseModel):
    """Single line in an order."""
    menu_item_id: int = Field(..., examples=[1])
    name: str = Field(..., min_length=1, max_length=100, examples=["Healthy Veg Thali"])
    price: float = Field(..., ge=0, examples=[120])
    quantity: int = Field(..., ge=1, examples=[2])
    category: Optional[str] = None

    class Config:
        from_attributes = True

    def to_line(self) -> OrderLine:
        return OrderLine(
            menu_item_id=self.menu_item_id,
            name=self.name,
            price=self.price,
            quantity=self.quantity,
            category=self.category,
        )


class OrderCreate(BaseModel):
    """Request schema for submitting an order."""
    items: List[OrderLineSchema] = Field(..., min_length=1)
    location: Site = Field(..., examples=["medical"])
    client_name: str = Field(..., min_length=1, max_length=100, examples=["Asha"])
    client_phone: Optional[str] = Field(None, max_length=20, examples=["9876543210"])
    table_number: Optional[str] = Field(None, max_length=20, examples=["T-5"])
    user_id: Optional[str] = Field(None, max_length=128)

    @field_validator("client_name")
    @classmethod
    def validate_client_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Client name is required")
        return v.strip()


class OrderStatusUpdate(BaseModel):
    """Body of PATCH /api/orders/{id}/status."""
    status: OrderStatus = Field(..., examples=["preparing"])


class OrderResponse(BaseModel):
    """Response schema for a single order."""
    id: int
    token: str
    location: Site
    items: List[OrderLineSchema]
    total: float
    status: OrderStatus
    client_name: str
    client_phone: Optional[str] = None
    table_number: Optional[str] = None
    user_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("user_id", "owner_id")
    )
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


# =============================================================================
# USERS
# =============================================================================

class UserProfileUpsert(BaseModel):
    """
    Create or update a profile keyed by ``user_id``.

    Fields left out keep their stored value on update; ``email`` and
    ``name`` are required when the profile does not exist yet.
    """
    user_id: str = Field(..., min_length=1, max_length=128)
    email: Optional[EmailStr] = None
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    role: Optional[UserRole] = None
    phone: Optional[str] = Field(None, max_length=20)
    location: Optional[Site] = None


class UserProfileResponse(BaseModel):
    user_id: str
    email: str
    name: str
    role: UserRole
    phone: Optional[str] = None
    location: Optional[Site] = None

    class Config:
        from_attributes = True


# =============================================================================
# SYSTEM
# =============================================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    message: str


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    database: str
    order_store: str
    change_feed: str
    timestamp: datetime
