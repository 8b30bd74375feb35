from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import TypeAdapter

from rentals import lifecycle, settings
from rentals.availability import utc_start_of
from rentals.cache import Cache, read_through
from rentals.crud import booking_crud
from rentals.deps import (
    CurrentUser,
    PaymentsClient,
    get_cache,
    get_current_user,
    get_now,
    get_payments_client,
)
from rentals.errors import BookingNotFound
from rentals.invalidation import (
    USER_BOOKINGS_KEY,
    VEHICLE_SLOTS_KEY,
    DomainEvent,
    on_domain_event,
)
from rentals.models import BookingStatus
from rentals.schemas import (
    BookingCreate,
    BookingResponse,
    BookingSlot,
    PaymentConfirm,
    PaymentIntentResponse,
    UserBookings,
)

router = APIRouter(prefix="/bookings", tags=["bookings"])

_SLOTS = TypeAdapter(list[BookingSlot])
_BOOKINGS = TypeAdapter(list[BookingResponse])


def group_user_bookings(bookings: list[BookingResponse], now: datetime) -> UserBookings:
    """
    Split a user's bookings by where they sit relative to ``now``.
    Unpaid bookings whose start has passed are reported as past.
    """
    grouped = UserBookings()
    for b in bookings:
        if b.status == BookingStatus.CANCELLED:
            grouped.cancelled.append(b)
        elif b.status == BookingStatus.COMPLETED:
            grouped.past.append(b)
        elif utc_start_of(b.start_date) > now:
            grouped.upcoming.append(b)
        elif b.status == BookingStatus.ACTIVE or (
            b.status == BookingStatus.CONFIRMED and utc_start_of(b.end_date) > now
        ):
            grouped.active.append(b)
        else:
            grouped.past.append(b)
    return grouped


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("/slots", response_model=list[BookingSlot])
async def get_vehicle_slots(
    vehicle_id: UUID,
    _: CurrentUser = Depends(get_current_user),
    cache: Cache = Depends(get_cache),
) -> list[BookingSlot]:
    """
    Returns occupied date windows for a vehicle.
    Any authenticated user can call this. The response contains NO user identity.
    """
    return await read_through(
        cache,
        VEHICLE_SLOTS_KEY.format(vehicle_id=vehicle_id),
        settings.SLOTS_TTL,
        lambda: booking_crud.list_occupied_slots(vehicle_id),
        _SLOTS,
    )


@router.get("/", response_model=UserBookings)
async def list_my_bookings(
    current_user: CurrentUser = Depends(get_current_user),
    cache: Cache = Depends(get_cache),
    now: datetime = Depends(get_now),
) -> UserBookings:
    # The flat list is cached; grouping depends on the clock so it runs per request
    bookings = await read_through(
        cache,
        USER_BOOKINGS_KEY.format(user_id=current_user.id),
        settings.USER_BOOKINGS_TTL,
        lambda: booking_crud.list_user_bookings(current_user.id),
        _BOOKINGS,
    )
    return group_user_bookings(bookings, now)


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    payload: BookingCreate,
    current_user: CurrentUser = Depends(get_current_user),
    cache: Cache = Depends(get_cache),
    now: datetime = Depends(get_now),
) -> BookingResponse:
    booking = await booking_crud.create_booking(
        vehicle_id=payload.vehicle_id,
        user_id=current_user.id,
        start_date=payload.start_date,
        end_date=payload.end_date,
        promo_code=payload.promo_code,
        now=now,
    )
    await on_domain_event(
        cache,
        DomainEvent.BOOKING_CREATED,
        user_id=current_user.id,
        vehicle_id=booking.vehicle_id,
    )
    if booking.deal_id is not None:
        await on_domain_event(cache, DomainEvent.DEAL_REDEEMED)
    return booking


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: UUID,
    current_user: CurrentUser = Depends(get_current_user),
) -> BookingResponse:
    if current_user.is_admin:
        booking = await booking_crud.get_booking(booking_id)
    else:
        booking = await booking_crud.get_booking(booking_id, user_id=current_user.id)

    if not booking:
        raise BookingNotFound()
    return booking


@router.post("/{booking_id}/payment", response_model=PaymentIntentResponse)
async def start_payment(
    booking_id: UUID,
    current_user: CurrentUser = Depends(get_current_user),
    payments_client: PaymentsClient = Depends(get_payments_client),
) -> PaymentIntentResponse:
    intent = await lifecycle.start_payment(booking_id, current_user, payments_client)
    return PaymentIntentResponse(
        payment_intent_id=intent.id,
        client_secret=intent.client_secret,
        amount=intent.amount,
        currency=settings.CURRENCY,
    )


@router.post("/{booking_id}/confirm", response_model=BookingResponse)
async def confirm_booking(
    booking_id: UUID,
    payload: PaymentConfirm,
    current_user: CurrentUser = Depends(get_current_user),
    payments_client: PaymentsClient = Depends(get_payments_client),
    cache: Cache = Depends(get_cache),
) -> BookingResponse:
    return await lifecycle.confirm_payment(
        booking_id, payload.payment_intent_id, current_user, payments_client, cache
    )


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: UUID,
    current_user: CurrentUser = Depends(get_current_user),
    cache: Cache = Depends(get_cache),
    now: datetime = Depends(get_now),
) -> BookingResponse:
    return await lifecycle.cancel_booking(booking_id, current_user, cache, now)
