"""
Database Schemas for the Food Ordering Backend

Each Pydantic model below maps to a MongoDB collection or to a record
persisted in a session's local store. Collection names keep the hosted
database layout: "clients", "serviceProviders", "menuSections", "menuItems",
"promos", "orders", "client-location" and "service-provider-location".
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field, field_validator, model_validator

OrderStatus = Literal["placed", "delivered"]
PaymentStatus = Literal["pending", "completed"]
PromoType = Literal["discount", "bogo", "bundle"]
Currency = Literal["USD", "KSH", "EUR"]
TravelMode = Literal["foot", "car", "bike"]
Theme = Literal["dark", "light"]

# Largest accepted unit price; keeps cent rounding inside decimal precision
MAX_PRICE = Decimal("9999999999.99")


def _assume_utc(value: Optional[datetime]) -> Optional[datetime]:
    # MongoDB hands back naive datetimes; everything here is UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ----------------------------
# Accounts
# ----------------------------
class ClientProfile(BaseModel):
    """
    Customer profile, keyed by the auth provider's user id
    Collection name: "clients"
    """
    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)


class ServiceProviderProfile(BaseModel):
    """
    Business fulfilling orders, keyed by the auth provider's user id
    Collection name: "serviceProviders"
    """
    business_name: str = Field(..., min_length=1)
    business_type: Optional[str] = Field(None, description="Restaurant, shop, bakery...")
    email: str = Field(..., min_length=3)


# ----------------------------
# Menu
# ----------------------------
class MenuSectionCreate(BaseModel):
    name: str = Field(..., min_length=1)


class MenuSection(MenuSectionCreate):
    """
    Grouping of a provider's menu items
    Collection name: "menuSections"
    """
    owner_id: str


class MenuItemCreate(BaseModel):
    name: str = Field(..., min_length=1, description="Food/Drink name")
    price: Decimal = Field(..., gt=0, le=MAX_PRICE, max_digits=12, decimal_places=2, description="Current price")
    currency: Currency = "USD"
    section_id: str = Field(..., description="Referenced menu section id")


class MenuItem(MenuItemCreate):
    """
    Menu items offered by a service provider
    Collection name: "menuItems"
    """
    owner_id: str
    image_path: Optional[str] = Field(None, description="Object storage path of the item image")


class MenuItemUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    price: Optional[Decimal] = Field(None, gt=0, le=MAX_PRICE, max_digits=12, decimal_places=2)
    currency: Optional[Currency] = None
    section_id: Optional[str] = None


class PromoSnapshot(BaseModel):
    """Promo captured into a cart line. Re-validated, never re-fetched."""
    promo_id: str
    percentage_value: str = Field(..., description="Discount such as '20%'")
    description: Optional[str] = None
    valid_from: Optional[datetime] = None
    valid_to: datetime

    @field_validator("valid_from", "valid_to")
    @classmethod
    def ensure_utc(cls, value):
        return _assume_utc(value)


class PromoCreate(BaseModel):
    item_id: str
    type: PromoType = "discount"
    value: str = Field(..., min_length=1, description="'20%' for discounts, free text otherwise")
    description: Optional[str] = None
    valid_from: datetime
    valid_to: datetime
    holiday_theme: Optional[str] = None

    @field_validator("valid_from", "valid_to")
    @classmethod
    def ensure_utc(cls, value):
        return _assume_utc(value)

    @model_validator(mode="after")
    def check_window(self):
        if self.valid_to < self.valid_from:
            raise ValueError("valid_to must not precede valid_from")
        return self


class Promo(PromoCreate):
    """
    Time-boxed offer attached to one menu item
    Collection name: "promos"
    """
    id: Optional[str] = None
    owner_id: str


class PromoUpdate(BaseModel):
    value: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None
    holiday_theme: Optional[str] = None

    @field_validator("valid_from", "valid_to")
    @classmethod
    def ensure_utc(cls, value):
        return _assume_utc(value)


class MenuEntry(BaseModel):
    """Menu item as shown to a customer, with its live discount if any."""
    id: str
    name: str
    price: Decimal
    currency: Currency = "USD"
    section_id: Optional[str] = None
    provider_id: str
    image_url: Optional[str] = None
    active_promo: Optional[PromoSnapshot] = None
    promo_price: Optional[Decimal] = None


# ----------------------------
# Cart (session local store)
# ----------------------------
class CartLine(BaseModel):
    """One (item, provider) pairing in a session cart."""
    item_id: str
    provider_id: str
    provider_name: Optional[str] = None
    name: str
    quantity: int
    original_price: Decimal = Field(..., ge=0, le=MAX_PRICE)
    final_price: Decimal = Field(..., ge=0, le=MAX_PRICE)
    promo_applied: Optional[PromoSnapshot] = None


class CartAddRequest(BaseModel):
    item_id: str
    provider_id: str


class CartQuantityUpdate(BaseModel):
    quantity: int


class CartView(BaseModel):
    lines: List[CartLine]
    subtotal: Decimal
    delivery_fee: Decimal
    total: Decimal


class ThemeUpdate(BaseModel):
    theme: Theme


# ----------------------------
# Orders
# ----------------------------
class OrderLine(BaseModel):
    """Item inside an order (name/price snapshot captured at order time)."""
    item_id: str = Field(..., description="Referenced menu item id")
    name: str = Field(..., description="Name snapshot")
    price: Decimal = Field(..., description="Unit price snapshot, promo applied")
    quantity: int = Field(..., ge=1)
    provider_id: Optional[str] = None


class Order(BaseModel):
    """
    Pay-on-delivery order with its frozen total
    Collection name: "orders"
    """
    id: Optional[str] = None
    user_id: str
    items: List[OrderLine]
    delivery_fee: Decimal = Decimal("0")
    total: Decimal
    status: OrderStatus = "placed"
    payment_status: PaymentStatus = "pending"
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def ensure_utc(cls, value):
        return _assume_utc(value)


class ProviderGroup(BaseModel):
    provider_id: Optional[str] = None
    provider_name: Optional[str] = None
    items: List[OrderLine]


class OrderView(Order):
    """Order decorated for display: provider names and lines grouped per provider."""
    provider_names: Dict[str, str] = Field(default_factory=dict)
    groups: List[ProviderGroup] = Field(default_factory=list)


class OrderStats(BaseModel):
    total_orders: int
    revenue: Decimal
    pending_orders: int


class PlaceOrderResponse(BaseModel):
    order_id: str


# ----------------------------
# Locations & ETA
# ----------------------------
class GeoPoint(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class LocationShare(BaseModel):
    """Browser geolocation result: either a position or an error code."""
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    accuracy: Optional[float] = Field(None, ge=0)
    error_code: Optional[int] = None

    @model_validator(mode="after")
    def check_position_or_error(self):
        if self.error_code is None and (self.latitude is None or self.longitude is None):
            raise ValueError("latitude and longitude are required unless error_code is given")
        return self


class LocationRecord(BaseModel):
    """
    Last shared position of a customer or provider (last write wins)
    Collection names: "client-location", "service-provider-location"
    """
    owner_id: str
    latitude: float
    longitude: float
    accuracy: Optional[float] = None
    captured_at: datetime

    @field_validator("captured_at")
    @classmethod
    def ensure_utc(cls, value):
        return _assume_utc(value)

    def point(self) -> GeoPoint:
        return GeoPoint(lat=self.latitude, lng=self.longitude)


class ETAResult(BaseModel):
    duration_minutes: int
    distance_km: float
    path_points: List[Tuple[float, float]]
