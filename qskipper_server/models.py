"""Data models for QSkipper entities."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field

PLACEHOLDER_ID_PREFIX = "temp_"


class OrderStatus(str, Enum):
    """Known order states; backend status strings are matched case-insensitively."""

    PENDING = "pending"
    SCHEDULED = "scheduled"
    PREPARING = "preparing"
    READY = "ready"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"

    @classmethod
    def from_raw(cls, raw: Optional[str]) -> "OrderStatus":
        value = (raw or "").strip().lower()
        if value in ("placed", "pending"):
            return cls.PENDING
        if value in ("schedule", "scheduled"):
            return cls.SCHEDULED
        for status in (cls.PREPARING, cls.READY, cls.COMPLETED, cls.CANCELLED):
            if value == status.value:
                return status
        return cls.UNKNOWN


class OrderItem(BaseModel):
    """A line item of an order."""

    model_config = ConfigDict(frozen=True)

    id: str = ""
    name: str = "Unknown Item"
    quantity: int = 0
    price: Decimal = Decimal("0")

    @property
    def subtotal(self) -> Decimal:
        return self.price * self.quantity


class Order(BaseModel):
    """An incoming order for the restaurant."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Order ID")
    restaurant_id: str = Field(default="", description="Restaurant the order belongs to")
    user_id: str = Field(default="", description="Customer ID")
    status: str = Field(default="", description="Free-form status string from the backend")
    total_amount: Decimal = Field(default=Decimal("0"), description="Order total, never negative")
    items: list[OrderItem] = Field(default_factory=list)
    cook_time: int = Field(default=0, description="Cook time in minutes")
    take_away: bool = False
    schedule_date: Optional[datetime] = Field(None, description="When the order should be ready")
    order_time: Optional[datetime] = Field(None, description="When the order was placed")

    @property
    def status_category(self) -> OrderStatus:
        return OrderStatus.from_raw(self.status)

    @property
    def is_scheduled(self) -> bool:
        return self.schedule_date is not None or "schedule" in self.status.lower()

    def with_status(self, status: str) -> "Order":
        """Return a copy with a locally patched status."""
        return self.model_copy(update={"status": status})


class Product(BaseModel):
    """A menu item."""

    id: str = ""
    name: str = ""
    description: str = ""
    price: int = Field(default=0, description="Price in minor currency units")
    category: str = ""
    restaurant_id: str = ""
    is_available: bool = True
    is_featured: bool = False
    extra_time: int = Field(default=0, description="Extra preparation time in minutes")
    rating: float = 0.0
    image_data: Optional[bytes] = Field(default=None, exclude=True, repr=False)
    image_url: Optional[str] = None

    @property
    def is_placeholder_id(self) -> bool:
        return self.id.startswith(PLACEHOLDER_ID_PREFIX)

    def to_form_fields(self) -> dict[str, str]:
        """Text fields of the multipart create/update request, in wire names."""
        return {
            "product_name": self.name,
            "restaurant_id": self.restaurant_id,
            "description": self.description,
            "food_category": self.category,
            "extraTime": str(self.extra_time),
            "product_price": str(self.price),
            "availability": "true" if self.is_available else "false",
            "featured": "true" if self.is_featured else "false",
        }

    def to_json_payload(self, image_b64: Optional[str] = None) -> dict[str, str]:
        payload = self.to_form_fields()
        if image_b64:
            payload["product_photo64Image"] = image_b64
        return payload


class CreatedId(BaseModel):
    """Create response carried only the new id."""

    id: str


class CreatedRecord(BaseModel):
    """Create response carried the full record."""

    product: Product


class Unparseable(BaseModel):
    """2xx create response whose body matched no known shape."""

    raw: str = ""


CreateResult = Union[CreatedId, CreatedRecord, Unparseable]


class CachedImage(BaseModel):
    """An image blob and its content-addressable cache key."""

    key: str
    data: bytes = Field(repr=False)


class SessionIdentity(BaseModel):
    """Identity of the logged-in restaurant owner."""

    user_id: Optional[str] = None
    auth_token: Optional[str] = Field(None, repr=False)
    email: Optional[str] = None
    restaurant_id: Optional[str] = None
    restaurant_name: str = ""
    cuisine: str = ""
    estimated_time: int = 30
    is_restaurant_registered: bool = False


class RestaurantProfile(BaseModel):
    """Editable restaurant profile sent to /update-restaurant."""

    user_id: str
    restaurant_name: str
    cuisine: str = ""
    estimated_time: int = 30
    banner_image: Optional[bytes] = Field(default=None, exclude=True, repr=False)

    def to_form_fields(self) -> dict[str, str]:
        return {
            "restaurant_Name": self.restaurant_name,
            "userId": self.user_id,
            "cuisines": self.cuisine,
            "estimatedTime": str(self.estimated_time),
        }


class AuthCredentials(BaseModel):
    """Authentication credentials."""

    email: str
    password: str
