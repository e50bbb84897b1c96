"""
Database Schemas for Moz Store Digital

Each Pydantic model represents a MongoDB collection (or a document
embedded in one). Collection names are listed next to each model.
"""
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, EmailStr, field_validator

KNOWN_CATEGORIES = ["streaming", "ebooks", "gaming", "jogos", "recargas", "paypal"]
DOWNLOADABLE_CATEGORIES = ("ebooks", "jogos")

# Meticais are priced to the centavo
CURRENCY_UNIT = Decimal("0.01")


def effective_price(price: float, discount: int) -> float:
    value = Decimal(str(price)) * (Decimal(100) - Decimal(discount)) / Decimal(100)
    return float(value.quantize(CURRENCY_UNIT, rounding=ROUND_HALF_UP))


def _category_slug(value: str) -> str:
    value = (value or "").strip().lower()
    if not value:
        raise ValueError("category must not be empty")
    return value


# -------------------- Catalog --------------------

# Collection: "products"
class Product(BaseModel):
    name: str = Field(..., min_length=1, description="Product name, e.g., Netflix Premium 1 Mês")
    description: str = Field("", description="Long description shown on the detail page")
    price: float = Field(..., gt=0, description="Base price in MZN")
    category: str = Field(..., description="One of KNOWN_CATEGORIES or an admin-defined slug")
    image: str = Field("", description="Image URL in object storage")
    download_link: Optional[str] = Field(None, description="Direct download for ebooks/jogos")
    redirect_link: Optional[str] = Field(None, description="Hand-off link for other categories")
    discount: int = Field(0, ge=0, le=100, description="Percent discount")
    is_new: bool = Field(False)
    is_promotion: bool = Field(False)
    promotion_valid_until: Optional[datetime] = None

    @field_validator("category")
    @classmethod
    def _normalize_category(cls, v):
        return _category_slug(v)


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[float] = Field(None, gt=0)
    category: Optional[str] = None
    image: Optional[str] = None
    download_link: Optional[str] = None
    redirect_link: Optional[str] = None
    discount: Optional[int] = Field(None, ge=0, le=100)
    is_new: Optional[bool] = None
    is_promotion: Optional[bool] = None
    promotion_valid_until: Optional[datetime] = None

    @field_validator("category")
    @classmethod
    def _normalize_category(cls, v):
        return None if v is None else _category_slug(v)


# Collection: "banners"
class Banner(BaseModel):
    title: str
    subtitle: str = ""
    image: str = ""
    color: str = Field("primary", description="Theme color token")
    is_active: bool = True
    order: int = Field(0, description="Ascending display order")


class BannerUpdate(BaseModel):
    title: Optional[str] = None
    subtitle: Optional[str] = None
    image: Optional[str] = None
    color: Optional[str] = None
    is_active: Optional[bool] = None
    order: Optional[int] = None


# Collection: "settings", singleton document "store_settings"
class StoreSettings(BaseModel):
    store_name: str
    store_email: EmailStr
    store_phone: str
    store_description: str = ""
    updated_at: Optional[datetime] = None


# -------------------- Cart & Checkout --------------------

# Stored per device under key "mozstore-cart"
class CartItem(BaseModel):
    product_id: str
    name: str
    price: float = Field(..., ge=0, description="Unit price snapshotted at add time")
    quantity: int = Field(1, ge=1)
    image: str = ""
    category: str
    download_link: Optional[str] = None
    redirect_link: Optional[str] = None


class DeliveryItem(BaseModel):
    product_id: str
    name: str
    category: str
    kind: Literal["download", "handoff"]
    url: Optional[str] = None
    message: Optional[str] = None


class DeliveryPlan(BaseModel):
    transaction_id: str
    downloadable: List[DeliveryItem] = Field(default_factory=list)
    handoff: List[DeliveryItem] = Field(default_factory=list)
    countdown_seconds: int = 10
    auto_redirect_url: Optional[str] = None


CheckoutState = Literal[
    "idle",
    "awaiting_phone_input",
    "submitting",
    "pending_settlement",
    "succeeded",
    "delivering",
    "done",
    "superseded",
]


# Collection: "checkout"
class CheckoutSession(BaseModel):
    device_id: str
    state: CheckoutState = "awaiting_phone_input"
    items: List[CartItem]
    total: float = Field(..., ge=0)
    phone_number: Optional[str] = None
    attempts: int = 0
    last_error: Optional[str] = None
    gateway_transfer_id: Optional[str] = None
    gateway_status: Optional[str] = None
    transaction_id: Optional[str] = None
    delivery: Optional[DeliveryPlan] = None


# -------------------- Support & Notifications --------------------

# Collection: "support_messages"
class SupportMessage(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    message: str = Field(..., min_length=1)
    is_read: bool = False
    admin_response: Optional[str] = None
    responded_at: Optional[datetime] = None
    response_read: bool = Field(False, description="Whether the submitter has seen the response")


class UserSupportResponse(BaseModel):
    message_id: str
    response: str
    responded_at: datetime
    is_read: bool = False


# Collection: "notifications"
class Notification(BaseModel):
    title: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)
    type: Literal["info", "success", "warning", "error"] = "info"
    target_users: List[str] = Field(default_factory=list, description="Empty means broadcast")
    is_active: bool = True
    expires_at: Optional[datetime] = None


# -------------------- Identity --------------------

# Collection: "users"
class User(BaseModel):
    email: EmailStr
    display_name: str
    phone: Optional[str] = None
    role: Literal["customer", "admin"] = "customer"
    password_hash: str
    salt: str
