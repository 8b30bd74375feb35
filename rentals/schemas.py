from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from rentals import settings
from rentals.models import BookingStatus, BroadcastAudience, DiscountType


def _not_null(v):
    if v is None:
        raise ValueError("may be omitted but not null")
    return v


# ---------------------------------------------------------------------------
# Bookings
# ---------------------------------------------------------------------------


class BookingCreate(BaseModel):
    """Dates are calendar days in UTC; ``end_date`` is exclusive."""

    vehicle_id: UUID
    start_date: date
    end_date: date
    promo_code: str | None = Field(default=None, max_length=64)

    @field_validator("promo_code", mode="after")
    @classmethod
    def blank_code_is_none(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def validate_date_range(self) -> BookingCreate:
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        if (self.end_date - self.start_date).days > settings.MAX_RENTAL_DAYS:
            raise ValueError(
                f"Maximum rental period is {settings.MAX_RENTAL_DAYS} days"
            )
        return self


class BookingStatusUpdate(BaseModel):
    status: BookingStatus


class BookingResponse(BaseModel):
    id: UUID
    vehicle_id: UUID
    user_id: UUID
    start_date: date
    end_date: date
    status: BookingStatus
    price_per_day: Decimal
    subtotal: Decimal
    discount: Decimal
    total_price: Decimal
    deal_id: int | None = None
    payment_intent_id: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BookingSlot(BaseModel):
    """Occupied window for a vehicle; reveals no user identity."""

    start_date: date
    end_date: date

    model_config = ConfigDict(from_attributes=True)


class UserBookings(BaseModel):
    upcoming: list[BookingResponse] = Field(default_factory=list)
    active: list[BookingResponse] = Field(default_factory=list)
    past: list[BookingResponse] = Field(default_factory=list)
    cancelled: list[BookingResponse] = Field(default_factory=list)


class BookingFilters(BaseModel):
    """Bind to a FastAPI route via Depends(BookingFilters)."""

    vehicle_id: UUID | None = None
    user_id: UUID | None = None
    status: BookingStatus | None = None

    # Pagination
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


class AvailabilityResponse(BaseModel):
    available: bool
    reason: str | None = None
    conflicting_booking_id: UUID | None = None


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------


class PaymentIntent(BaseModel):
    """Payment intent as reported by payments-ms. ``amount`` is in cents."""

    id: str
    booking_id: UUID
    amount: int
    status: str
    client_secret: str | None = None


class PaymentIntentResponse(BaseModel):
    payment_intent_id: str
    client_secret: str | None
    amount: int
    currency: str


class PaymentConfirm(BaseModel):
    payment_intent_id: str = Field(min_length=1, max_length=255)


# ---------------------------------------------------------------------------
# Vehicles
# ---------------------------------------------------------------------------


class VehicleCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    type: str = Field(min_length=1, max_length=40)
    brand: str | None = Field(default=None, max_length=60)
    model: str | None = Field(default=None, max_length=60)
    year: int | None = Field(default=None, ge=1900, le=2100)
    seats: int | None = Field(default=None, ge=1, le=100)
    description: str | None = None
    image_url: str | None = Field(default=None, max_length=500)
    price_per_day: Decimal = Field(gt=0, max_digits=8, decimal_places=2)
    availability: bool = True


class VehicleUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=120)
    type: str | None = Field(default=None, min_length=1, max_length=40)
    brand: str | None = Field(default=None, max_length=60)
    model: str | None = Field(default=None, max_length=60)
    year: int | None = Field(default=None, ge=1900, le=2100)
    seats: int | None = Field(default=None, ge=1, le=100)
    description: str | None = None
    image_url: str | None = Field(default=None, max_length=500)
    price_per_day: Decimal | None = Field(
        default=None, gt=0, max_digits=8, decimal_places=2
    )
    availability: bool | None = None

    check_required = field_validator(
        "name", "type", "price_per_day", "availability", mode="after"
    )(_not_null)


class VehicleResponse(BaseModel):
    id: UUID
    name: str
    type: str
    brand: str | None
    model: str | None
    year: int | None
    seats: int | None
    description: str | None
    image_url: str | None
    price_per_day: Decimal
    availability: bool
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class VehicleFilters(BaseModel):
    """Bind to a FastAPI route via Depends(VehicleFilters)."""

    type: str | None = None
    min_price: Decimal | None = Field(default=None, ge=0)
    max_price: Decimal | None = Field(default=None, ge=0)
    available: bool | None = None


class VehicleList(BaseModel):
    vehicles: list[VehicleResponse]
    types: list[str]


class ReviewResponse(BaseModel):
    id: UUID
    booking_id: UUID
    vehicle_id: UUID
    user_id: UUID
    rating: int
    title: str | None
    comment: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class VehicleDetail(BaseModel):
    vehicle: VehicleResponse
    reviews: list[ReviewResponse]
    avg_rating: float
    review_count: int


# ---------------------------------------------------------------------------
# Deals
# ---------------------------------------------------------------------------


class _DealRules(BaseModel):
    @model_validator(mode="after")
    def validate_rules(self):
        valid_from = getattr(self, "valid_from", None)
        valid_until = getattr(self, "valid_until", None)
        if valid_from and valid_until and valid_until < valid_from:
            raise ValueError("valid_until must not be before valid_from")
        if (
            getattr(self, "discount_type", None) == DiscountType.PERCENT
            and getattr(self, "discount_value", None) is not None
            and self.discount_value > 100
        ):
            raise ValueError("Percentage discount cannot exceed 100")
        return self


class DealCreate(_DealRules):
    code: str = Field(min_length=3, max_length=64)
    description: str | None = None
    discount_type: DiscountType = DiscountType.PERCENT
    discount_value: Decimal = Field(gt=0, max_digits=8, decimal_places=2)
    min_purchase: Decimal | None = Field(default=None, ge=0)
    valid_from: date
    valid_until: date
    is_active: bool = True
    usage_limit: int | None = Field(default=None, ge=1)


class DealUpdate(_DealRules):
    code: str | None = Field(default=None, min_length=3, max_length=64)
    description: str | None = None
    discount_type: DiscountType | None = None
    discount_value: Decimal | None = Field(
        default=None, gt=0, max_digits=8, decimal_places=2
    )
    min_purchase: Decimal | None = Field(default=None, ge=0)
    valid_from: date | None = None
    valid_until: date | None = None
    is_active: bool | None = None
    usage_limit: int | None = Field(default=None, ge=1)

    check_required = field_validator(
        "code",
        "discount_type",
        "discount_value",
        "valid_from",
        "valid_until",
        "is_active",
        mode="after",
    )(_not_null)


class DealResponse(BaseModel):
    """Never carries the code hash."""

    id: int
    code_hint: str
    description: str | None
    discount_type: DiscountType
    discount_value: Decimal
    min_purchase: Decimal | None
    valid_from: date
    valid_until: date
    is_active: bool
    usage_limit: int | None
    current_usage: int

    model_config = ConfigDict(from_attributes=True)


class PromoCodeValidate(BaseModel):
    code: str = Field(min_length=1, max_length=64)
    subtotal: Decimal | None = Field(default=None, ge=0)


class PromoCodeResult(BaseModel):
    deal_id: int
    discount_type: DiscountType
    discount_value: Decimal
    min_purchase: Decimal | None


# ---------------------------------------------------------------------------
# Reviews
# ---------------------------------------------------------------------------


class ReviewCreate(BaseModel):
    booking_id: UUID
    rating: int = Field(ge=1, le=5)
    title: str | None = Field(default=None, max_length=120)
    comment: str = Field(min_length=10, max_length=500)


class ReviewUpdate(BaseModel):
    rating: int | None = Field(default=None, ge=1, le=5)
    title: str | None = Field(default=None, max_length=120)
    comment: str | None = Field(default=None, min_length=10, max_length=500)

    check_required = field_validator("rating", "comment", mode="after")(_not_null)


# ---------------------------------------------------------------------------
# Broadcasts
# ---------------------------------------------------------------------------


class BroadcastCreate(BaseModel):
    title: str = Field(default="Admin Broadcast", min_length=1, max_length=120)
    message: str = Field(min_length=1, max_length=2000)
    audience: BroadcastAudience = BroadcastAudience.ALL


class BroadcastResponse(BaseModel):
    id: UUID
    title: str
    message: str
    audience: BroadcastAudience
    admin_id: UUID
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


class VehicleTypeCount(BaseModel):
    type: str
    count: int


class PopularVehicle(BaseModel):
    id: UUID
    name: str
    booking_count: int


class DashboardStats(BaseModel):
    vehicle_count: int
    booking_count: int
    bookings_by_status: dict[str, int]
    total_revenue: Decimal
    vehicle_types: list[VehicleTypeCount]
    popular_vehicles: list[PopularVehicle]
    recent_bookings: list[BookingResponse]
    recent_reviews: list[ReviewResponse]


class CacheKeyInfo(BaseModel):
    key: str
    ttl: int  # -1: no expiry


class CacheInspection(BaseModel):
    connected: bool
    keys: list[CacheKeyInfo]


class CacheCleared(BaseModel):
    pattern: str
    cleared: bool
