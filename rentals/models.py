from enum import StrEnum
from uuid import UUID

from tortoise import fields
from tortoise.models import Model


class BookingStatus(StrEnum):
    PENDING = "PENDING"  # created, awaiting payment
    CONFIRMED = "CONFIRMED"  # payment succeeded
    ACTIVE = "ACTIVE"  # vehicle handed over
    COMPLETED = "COMPLETED"  # rental period finished
    CANCELLED = "CANCELLED"  # cancelled by the customer or an admin


# Statuses that hold a vehicle for their date range
BLOCKING_STATUSES = (
    BookingStatus.PENDING,
    BookingStatus.CONFIRMED,
    BookingStatus.ACTIVE,
)


class DiscountType(StrEnum):
    PERCENT = "PERCENT"
    FLAT = "FLAT"


class TimestampedModel(Model):
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:  # type: ignore
        abstract = True


class Vehicle(TimestampedModel):
    id = fields.UUIDField(primary_key=True)

    name = fields.CharField(max_length=120)
    type = fields.CharField(max_length=40, db_index=True)  # SUV, sedan, van...
    brand = fields.CharField(max_length=60, null=True)
    model = fields.CharField(max_length=60, null=True)
    year = fields.IntField(null=True)
    seats = fields.IntField(null=True)
    description = fields.TextField(null=True)
    image_url = fields.CharField(max_length=500, null=True)

    price_per_day = fields.DecimalField(max_digits=8, decimal_places=2)
    availability = fields.BooleanField(default=True)  # set by admins only

    class Meta:  # type: ignore
        table = "vehicles"
        ordering = ["price_per_day"]


class Deal(TimestampedModel):
    id = fields.IntField(primary_key=True)

    code_hash = fields.CharField(max_length=64, unique=True)
    code_hint = fields.CharField(max_length=32)  # masked, e.g. "******2025"
    description = fields.TextField(null=True)

    discount_type = fields.CharEnumField(DiscountType, default=DiscountType.PERCENT)
    discount_value = fields.DecimalField(max_digits=8, decimal_places=2)
    min_purchase = fields.DecimalField(max_digits=10, decimal_places=2, null=True)

    valid_from = fields.DateField()
    valid_until = fields.DateField()
    is_active = fields.BooleanField(default=True)

    usage_limit = fields.IntField(null=True)
    current_usage = fields.IntField(default=0)

    class Meta:  # type: ignore
        table = "deals"
        ordering = ["-valid_until"]


class Booking(TimestampedModel):
    id = fields.UUIDField(primary_key=True)

    vehicle: fields.ForeignKeyRelation[Vehicle] = fields.ForeignKeyField(
        "models.Vehicle", related_name="bookings", on_delete=fields.RESTRICT
    )
    user_id = fields.UUIDField(db_index=True)

    start_date = fields.DateField()
    end_date = fields.DateField()  # exclusive

    status = fields.CharEnumField(BookingStatus, default=BookingStatus.PENDING)

    price_per_day = fields.DecimalField(
        max_digits=8, decimal_places=2
    )  # snapshot at booking time
    subtotal = fields.DecimalField(max_digits=10, decimal_places=2)
    discount = fields.DecimalField(max_digits=10, decimal_places=2, default=0)
    total_price = fields.DecimalField(max_digits=10, decimal_places=2)

    deal: fields.ForeignKeyNullableRelation[Deal] = fields.ForeignKeyField(
        "models.Deal", related_name="bookings", null=True, on_delete=fields.SET_NULL
    )
    payment_intent_id = fields.CharField(max_length=255, null=True)

    vehicle_id: UUID
    deal_id: int | None

    class Meta:  # type: ignore
        table = "bookings"
        ordering = ["-start_date"]


class Review(TimestampedModel):
    id = fields.UUIDField(primary_key=True)

    booking: fields.OneToOneRelation[Booking] = fields.OneToOneField(
        "models.Booking", related_name="review", on_delete=fields.RESTRICT
    )
    vehicle: fields.ForeignKeyRelation[Vehicle] = fields.ForeignKeyField(
        "models.Vehicle", related_name="reviews", on_delete=fields.RESTRICT
    )
    user_id = fields.UUIDField(db_index=True)

    rating = fields.SmallIntField()
    title = fields.CharField(max_length=120, null=True)
    comment = fields.TextField()

    booking_id: UUID
    vehicle_id: UUID

    class Meta:  # type: ignore
        table = "reviews"
        ordering = ["-created_at"]


class BroadcastAudience(StrEnum):
    ALL = "ALL"
    USER = "USER"
    ADMIN = "ADMIN"


class Broadcast(TimestampedModel):
    id = fields.UUIDField(primary_key=True)

    title = fields.CharField(max_length=120)
    message = fields.TextField()
    audience = fields.CharEnumField(BroadcastAudience, default=BroadcastAudience.ALL)
    admin_id = fields.UUIDField()  # author, from the gateway identity

    class Meta:  # type: ignore
        table = "broadcasts"
        ordering = ["-created_at"]
