"""
Error taxonomy for the rentals service.

Every domain error is an ``HTTPException`` so it can be raised from the CRUD
layer, the availability checker or the lifecycle functions and still be
rendered by FastAPI with the right status code, the same way ``crud.py``
raises ``HTTPException`` directly.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import HTTPException, status


class RentalError(HTTPException):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail: str = "Unexpected error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(
            status_code=type(self).status_code,
            detail=detail or type(self).default_detail,
        )


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ValidationError(RentalError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_detail = "Invalid request"


class InvalidDateRange(ValidationError):
    default_detail = "Invalid rental period"


# ---------------------------------------------------------------------------
# Conflicts
# ---------------------------------------------------------------------------


class ConflictError(RentalError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Request conflicts with the current state"


class Overlap(ConflictError):
    def __init__(self, conflicting_booking_id: UUID) -> None:
        self.conflicting_booking_id = conflicting_booking_id
        super().__init__(
            f"Vehicle is already booked for the selected dates "
            f"(conflicting booking {conflicting_booking_id})"
        )


class VehicleUnavailable(ConflictError):
    default_detail = "Vehicle is not available for booking"


class InvalidTransition(ConflictError):
    def __init__(self, old_status: str, new_status: str, reason: str = "") -> None:
        self.old_status = old_status
        self.new_status = new_status
        detail = f"Cannot transition from '{old_status}' to '{new_status}'"
        super().__init__(f"{detail}: {reason}" if reason else detail)


class CancellationWindowClosed(ConflictError):
    default_detail = "Cancellation is not allowed less than 24 hours before start date"


class ReferencedResource(ConflictError):
    default_detail = "Resource is still referenced by other records"


class DuplicateResource(ConflictError):
    default_detail = "Resource already exists"


class PromoCodeRejected(ConflictError):
    default_detail = "This promo code is not currently valid"


# ---------------------------------------------------------------------------
# Not found
# ---------------------------------------------------------------------------


class NotFoundError(RentalError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Not found"


class VehicleNotFound(NotFoundError):
    default_detail = "Vehicle not found"


class BookingNotFound(NotFoundError):
    default_detail = "Booking not found"


class DealNotFound(NotFoundError):
    default_detail = "Deal not found"


class ReviewNotFound(NotFoundError):
    default_detail = "Review not found"


# ---------------------------------------------------------------------------
# Authorization / upstream
# ---------------------------------------------------------------------------


class PermissionDenied(RentalError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "You are not allowed to perform this action"


class DependencyError(RentalError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = "Upstream service failed"


class PaymentNotCompleted(DependencyError):
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    default_detail = "Payment incomplete. Please try again."
