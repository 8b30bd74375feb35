"""
Vehicle availability for a requested rental period.

Timezone policy: booking dates are calendar days in UTC. A booking that
starts on ``2025-06-01`` starts at ``2025-06-01T00:00:00Z``; ``end_date`` is
exclusive, so ``[06-01, 06-04)`` is three rental days.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta
from decimal import Decimal
from uuid import UUID

from rentals import settings
from rentals.errors import InvalidDateRange, Overlap, VehicleNotFound, VehicleUnavailable
from rentals.models import BLOCKING_STATUSES, Booking, Vehicle
from rentals.promo import CENTS

REASON_VEHICLE_UNAVAILABLE = "vehicle_unavailable"
REASON_OVERLAP = "overlap"


def utc_start_of(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=UTC)


def rental_days(start: date, end: date) -> int:
    """Whole rental days in ``[start, end)``, rounded up."""
    return math.ceil((utc_start_of(end) - utc_start_of(start)) / timedelta(days=1))


def compute_subtotal(price_per_day: Decimal, start: date, end: date) -> Decimal:
    return (Decimal(price_per_day) * rental_days(start, end)).quantize(CENTS)


def validate_rental_period(start: date, end: date, now: datetime) -> None:
    """Raise InvalidDateRange unless the period may be booked at ``now``."""
    if utc_start_of(start) <= now:
        raise InvalidDateRange("Start date must be in the future")
    if end <= start:
        raise InvalidDateRange("End date must be after start date")
    if rental_days(start, end) > settings.MAX_RENTAL_DAYS:
        raise InvalidDateRange(
            f"Maximum rental period is {settings.MAX_RENTAL_DAYS} days"
        )


@dataclass(frozen=True)
class AvailabilityResult:
    available: bool
    reason: str | None = None
    conflicting_booking_id: UUID | None = None

    def raise_for_conflict(self) -> None:
        if self.available:
            return
        if self.reason == REASON_OVERLAP and self.conflicting_booking_id is not None:
            raise Overlap(self.conflicting_booking_id)
        raise VehicleUnavailable()


async def find_conflicting_booking(
    vehicle_id: UUID,
    start: date,
    end: date,
    exclude_id: UUID | None = None,
) -> UUID | None:
    """Id of a blocking booking overlapping ``[start, end)``, if any."""
    qs = Booking.filter(
        vehicle_id=vehicle_id,
        status__in=list(BLOCKING_STATUSES),
        start_date__lt=end,
        end_date__gt=start,
    )
    if exclude_id is not None:
        qs = qs.exclude(id=exclude_id)
    conflict = await qs.order_by("start_date").only("id").first()
    return conflict.id if conflict else None


async def check_availability(
    vehicle_id: UUID,
    start: date,
    end: date,
    now: datetime | None = None,
) -> AvailabilityResult:
    """
    Decide whether ``vehicle_id`` can be booked for ``[start, end)``.

    The period is validated before anything is read. Raises InvalidDateRange
    and VehicleNotFound; a vehicle switched off by an admin or an overlapping
    booking yields a negative result (see ``raise_for_conflict``).
    """
    validate_rental_period(start, end, now or datetime.now(UTC))

    vehicle = await Vehicle.get_or_none(id=vehicle_id)
    if vehicle is None:
        raise VehicleNotFound()
    if not vehicle.availability:
        return AvailabilityResult(available=False, reason=REASON_VEHICLE_UNAVAILABLE)

    conflict_id = await find_conflicting_booking(vehicle_id, start, end)
    if conflict_id is not None:
        return AvailabilityResult(
            available=False,
            reason=REASON_OVERLAP,
            conflicting_booking_id=conflict_id,
        )
    return AvailabilityResult(available=True)
