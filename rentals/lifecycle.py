"""
Booking status transitions and their side effects.

    PENDING ──pay──▶ CONFIRMED ──▶ ACTIVE ──▶ COMPLETED
       │                 │  └──────(admin)──────▲
       └──────┬──────────┘
              ▼
          CANCELLED

Every transition is re-validated against the locked row inside the write
transaction, then the invalidation coordinator runs before the caller gets
the result. Cache purges are best-effort and never undo a transition.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from uuid import UUID

from loguru import logger

from rentals import settings
from rentals.availability import utc_start_of
from rentals.cache import Cache
from rentals.crud import booking_crud
from rentals.deps import CurrentUser, PaymentsClient, to_cents
from rentals.errors import (
    BookingNotFound,
    CancellationWindowClosed,
    ConflictError,
    InvalidTransition,
    PaymentNotCompleted,
    PermissionDenied,
)
from rentals.invalidation import DomainEvent, on_domain_event
from rentals.models import Booking, BookingStatus
from rentals.schemas import BookingResponse, PaymentIntent

PAYMENT_SUCCEEDED = "succeeded"

VALID_TRANSITIONS: dict[BookingStatus, set[BookingStatus]] = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {
        BookingStatus.ACTIVE,
        BookingStatus.COMPLETED,
        BookingStatus.CANCELLED,
    },
    BookingStatus.ACTIVE: {BookingStatus.COMPLETED},
    BookingStatus.COMPLETED: set(),
    BookingStatus.CANCELLED: set(),
}

# Targets only an admin may set directly
_ADMIN_STATUSES = {BookingStatus.ACTIVE, BookingStatus.COMPLETED}

_EVENTS: dict[BookingStatus, DomainEvent] = {
    BookingStatus.CONFIRMED: DomainEvent.BOOKING_CONFIRMED,
    BookingStatus.ACTIVE: DomainEvent.BOOKING_ACTIVATED,
    BookingStatus.COMPLETED: DomainEvent.BOOKING_COMPLETED,
    BookingStatus.CANCELLED: DomainEvent.BOOKING_CANCELLED,
}


def assert_transition(old_status: BookingStatus, new_status: BookingStatus) -> None:
    allowed = VALID_TRANSITIONS.get(old_status, set())
    if new_status not in allowed:
        raise InvalidTransition(
            old_status,
            new_status,
            f"allowed: {sorted(s.value for s in allowed)}",
        )


def assert_cancellation_window(start_date: date, now: datetime) -> None:
    window = timedelta(hours=settings.CANCELLATION_WINDOW_HOURS)
    if utc_start_of(start_date) - now <= window:
        raise CancellationWindowClosed(
            "Cancellation is not allowed less than "
            f"{settings.CANCELLATION_WINDOW_HOURS} hours before start date"
        )


def _assert_owner_or_admin(booking: BookingResponse, user: CurrentUser) -> None:
    if booking.user_id != user.id and not user.is_admin:
        raise PermissionDenied("You are not authorized to modify this booking")


async def _load(booking_id: UUID) -> BookingResponse:
    booking = await booking_crud.get_booking(booking_id)
    if booking is None:
        raise BookingNotFound()
    return booking


async def _apply(
    booking_id: UUID,
    new_status: BookingStatus,
    cache: Cache,
    extra_guard=None,
    payment_intent_id: str | None = None,
) -> BookingResponse:
    def guard(row: Booking) -> None:
        assert_transition(row.status, new_status)
        if extra_guard is not None:
            extra_guard(row)

    updated = await booking_crud.update_booking_status(
        booking_id, new_status, guard, payment_intent_id=payment_intent_id
    )
    if updated is None:
        raise BookingNotFound()

    await on_domain_event(
        cache,
        _EVENTS[new_status],
        user_id=updated.user_id,
        vehicle_id=updated.vehicle_id,
    )
    return updated


# ---------------------------------------------------------------------------
# Payment
# ---------------------------------------------------------------------------


async def start_payment(
    booking_id: UUID,
    user: CurrentUser,
    payments: PaymentsClient,
) -> PaymentIntent:
    """
    Return a payment intent for a PENDING booking, reusing the stored one
    while it is still usable for the booking's amount.
    """
    booking = await _load(booking_id)
    if booking.user_id != user.id:
        raise PermissionDenied("You can only pay for your own bookings")
    if booking.status != BookingStatus.PENDING:
        raise ConflictError(f"Booking is not awaiting payment (status: {booking.status})")

    if booking.payment_intent_id:
        intent = await payments.get_intent(booking.payment_intent_id, user)
        if intent.amount == to_cents(booking.total_price) and intent.status != "failed":
            return intent
        logger.info(
            "Replacing unusable payment intent for booking_id={} (status={})",
            booking_id,
            intent.status,
        )

    intent = await payments.create_intent(booking.id, booking.total_price, user)
    await booking_crud.set_payment_intent(booking.id, intent.id)
    return intent


async def confirm_payment(
    booking_id: UUID,
    payment_intent_id: str,
    user: CurrentUser,
    payments: PaymentsClient,
    cache: Cache,
) -> BookingResponse:
    """
    PENDING → CONFIRMED once payments-ms reports the intent as succeeded for
    this booking and its exact amount. Confirming again with the same intent
    is a no-op that returns the booking.
    """
    booking = await _load(booking_id)
    _assert_owner_or_admin(booking, user)

    if (
        booking.status == BookingStatus.CONFIRMED
        and booking.payment_intent_id == payment_intent_id
    ):
        return booking
    assert_transition(booking.status, BookingStatus.CONFIRMED)

    intent = await payments.get_intent(payment_intent_id, user)
    if intent.booking_id != booking.id or intent.amount != to_cents(booking.total_price):
        logger.warning(
            "Payment intent does not match booking: booking_id={} intent={}",
            booking_id,
            payment_intent_id,
        )
        raise PaymentNotCompleted("Payment does not match this booking")
    if intent.status != PAYMENT_SUCCEEDED:
        logger.info(
            "Payment not completed: booking_id={} status={}", booking_id, intent.status
        )
        raise PaymentNotCompleted(f"Payment incomplete (status: {intent.status})")

    updated = await _apply(
        booking_id, BookingStatus.CONFIRMED, cache, payment_intent_id=intent.id
    )
    logger.info(
        "Payment processed: booking_id={} amount={} status={}",
        booking_id,
        updated.total_price,
        intent.status,
    )
    return updated


# ---------------------------------------------------------------------------
# Cancellation & admin transitions
# ---------------------------------------------------------------------------


async def cancel_booking(
    booking_id: UUID,
    user: CurrentUser,
    cache: Cache,
    now: datetime,
) -> BookingResponse:
    """PENDING|CONFIRMED → CANCELLED, by the owner or an admin, outside the window."""
    booking = await _load(booking_id)
    _assert_owner_or_admin(booking, user)

    updated = await _apply(
        booking_id,
        BookingStatus.CANCELLED,
        cache,
        extra_guard=lambda row: assert_cancellation_window(row.start_date, now),
    )
    logger.info("Booking cancelled: booking_id={} by user_id={}", booking_id, user.id)
    return updated


async def set_status(
    booking_id: UUID,
    new_status: BookingStatus,
    user: CurrentUser,
    cache: Cache,
    now: datetime,
) -> BookingResponse:
    """Admin/ops transition. CONFIRMED is only reachable through payment."""
    if not user.is_admin:
        raise PermissionDenied("Admin role required")

    if new_status == BookingStatus.CANCELLED:
        return await cancel_booking(booking_id, user, cache, now)

    booking = await _load(booking_id)
    if new_status == BookingStatus.CONFIRMED:
        raise InvalidTransition(
            booking.status, new_status, "requires a successful payment confirmation"
        )
    if new_status not in _ADMIN_STATUSES:
        raise InvalidTransition(booking.status, new_status)

    updated = await _apply(booking_id, new_status, cache)
    logger.info(
        "Booking status changed: booking_id={} {} -> {} by admin {}",
        booking_id,
        booking.status,
        new_status,
        user.id,
    )
    return updated
