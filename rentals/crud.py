from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from uuid import UUID

from loguru import logger
from tortoise.exceptions import IntegrityError
from tortoise.expressions import F
from tortoise.functions import Avg, Count, Sum
from tortoise.transactions import in_transaction

from rentals import settings
from rentals.availability import (
    check_availability,
    compute_subtotal,
    find_conflicting_booking,
)
from rentals.errors import (
    BookingNotFound,
    ConflictError,
    DealNotFound,
    DuplicateResource,
    Overlap,
    PermissionDenied,
    PromoCodeRejected,
    ReferencedResource,
    ReviewNotFound,
    ValidationError,
    VehicleNotFound,
    VehicleUnavailable,
)
from rentals.models import (
    BLOCKING_STATUSES,
    Booking,
    BookingStatus,
    Broadcast,
    Deal,
    DiscountType,
    Review,
    Vehicle,
)
from rentals.promo import compute_discount, hash_promo_code, mask_code, rejection_reason
from rentals.schemas import (
    BookingFilters,
    BookingResponse,
    BookingSlot,
    BroadcastCreate,
    BroadcastResponse,
    DashboardStats,
    DealCreate,
    DealResponse,
    DealUpdate,
    PopularVehicle,
    ReviewCreate,
    ReviewResponse,
    ReviewUpdate,
    VehicleCreate,
    VehicleDetail,
    VehicleFilters,
    VehicleList,
    VehicleResponse,
    VehicleTypeCount,
    VehicleUpdate,
)

# Statuses whose total_price counts as revenue
_PAID_STATUSES = {BookingStatus.CONFIRMED, BookingStatus.ACTIVE, BookingStatus.COMPLETED}


def _to_utc(dt: datetime) -> datetime:
    """Ensure a datetime is UTC-aware, handling both aware and naive inputs."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


# ---------------------------------------------------------------------------
# Vehicles
# ---------------------------------------------------------------------------


class VehicleCRUD:
    async def list_vehicles(self, filters: VehicleFilters) -> VehicleList:
        qs = Vehicle.all()
        if filters.type is not None:
            qs = qs.filter(type=filters.type)
        if filters.min_price is not None:
            qs = qs.filter(price_per_day__gte=filters.min_price)
        if filters.max_price is not None:
            qs = qs.filter(price_per_day__lte=filters.max_price)
        if filters.available is not None:
            qs = qs.filter(availability=filters.available)

        vehicles = await qs.order_by("price_per_day")
        types = await Vehicle.all().distinct().order_by("type").values_list(
            "type", flat=True
        )
        return VehicleList(
            vehicles=[
                VehicleResponse.model_validate(v, from_attributes=True) for v in vehicles
            ],
            types=list(types),
        )

    async def get_vehicle(self, vehicle_id: UUID) -> VehicleResponse | None:
        inst = await Vehicle.get_or_none(id=vehicle_id)
        if not inst:
            return None
        return VehicleResponse.model_validate(inst, from_attributes=True)

    async def get_vehicle_detail(self, vehicle_id: UUID) -> VehicleDetail | None:
        inst = await Vehicle.get_or_none(id=vehicle_id)
        if not inst:
            return None
        reviews = await Review.filter(vehicle_id=vehicle_id).order_by("-created_at")
        stats = (
            await Review.filter(vehicle_id=vehicle_id)
            .annotate(avg=Avg("rating"), count=Count("id"))
            .first()
            .values("avg", "count")
        )
        return VehicleDetail(
            vehicle=VehicleResponse.model_validate(inst, from_attributes=True),
            reviews=[ReviewResponse.model_validate(r, from_attributes=True) for r in reviews],
            avg_rating=round(float(stats["avg"] or 0), 2),
            review_count=stats["count"],
        )

    async def create_vehicle(self, payload: VehicleCreate) -> VehicleResponse:
        inst = await Vehicle.create(**payload.model_dump())
        logger.info("Vehicle created: vehicle_id={}", inst.id)
        return VehicleResponse.model_validate(inst, from_attributes=True)

    async def update_vehicle(
        self, vehicle_id: UUID, payload: VehicleUpdate
    ) -> VehicleResponse | None:
        inst = await Vehicle.get_or_none(id=vehicle_id)
        if not inst:
            return None
        changes = payload.model_dump(exclude_unset=True)
        if changes:
            inst.update_from_dict(changes)
            await inst.save(update_fields=[*changes, "updated_at"])
        return VehicleResponse.model_validate(inst, from_attributes=True)

    async def delete_vehicle(self, vehicle_id: UUID) -> bool:
        """
        Delete a vehicle that nothing references.
        Raises ReferencedResource while bookings or reviews point at it.
        """
        inst = await Vehicle.get_or_none(id=vehicle_id)
        if not inst:
            return False
        if await Booking.exists(vehicle_id=vehicle_id) or await Review.exists(
            vehicle_id=vehicle_id
        ):
            raise ReferencedResource(
                "Cannot delete vehicle because it has associated bookings or reviews."
            )
        try:
            await inst.delete()
        except IntegrityError:
            # A booking slipped in between the check and the delete
            raise ReferencedResource(
                "Cannot delete vehicle because it has associated bookings or reviews."
            ) from None
        return True


# ---------------------------------------------------------------------------
# Bookings
# ---------------------------------------------------------------------------


class BookingCRUD:
    async def create_booking(
        self,
        vehicle_id: UUID,
        user_id: UUID,
        start_date: date,
        end_date: date,
        promo_code: str | None = None,
        now: datetime | None = None,
    ) -> BookingResponse:
        """
        Persist a new PENDING booking.

        The availability check outside the transaction only fails fast. The
        authoritative check runs inside the transaction after locking the
        vehicle row, so concurrent requests for the same vehicle are
        serialised and at most one of two overlapping requests is inserted.
        """
        now = now or datetime.now(UTC)
        (await check_availability(vehicle_id, start_date, end_date, now)).raise_for_conflict()

        async with in_transaction():
            vehicle = await Vehicle.filter(id=vehicle_id).select_for_update().first()
            if vehicle is None:
                raise VehicleNotFound()
            if not vehicle.availability:
                raise VehicleUnavailable()
            conflict_id = await find_conflicting_booking(vehicle_id, start_date, end_date)
            if conflict_id is not None:
                raise Overlap(conflict_id)

            subtotal = compute_subtotal(vehicle.price_per_day, start_date, end_date)
            deal = None
            discount = Decimal("0.00")
            if promo_code:
                deal = await deal_crud.redeem(promo_code, subtotal, now.date())
                discount = compute_discount(deal, subtotal)

            inst = await Booking.create(
                vehicle_id=vehicle_id,
                user_id=user_id,
                start_date=start_date,
                end_date=end_date,
                price_per_day=vehicle.price_per_day,
                subtotal=subtotal,
                discount=discount,
                total_price=subtotal - discount,
                deal_id=deal.id if deal else None,
            )

        logger.info(
            "Booking created: booking_id={} user_id={} vehicle_id={}",
            inst.id,
            user_id,
            vehicle_id,
        )
        return BookingResponse.model_validate(inst, from_attributes=True)

    async def get_booking(
        self, booking_id: UUID, user_id: UUID | None = None
    ) -> BookingResponse | None:
        if user_id is not None:
            inst = await Booking.get_or_none(id=booking_id, user_id=user_id)
        else:
            inst = await Booking.get_or_none(id=booking_id)
        if not inst:
            return None
        return BookingResponse.model_validate(inst, from_attributes=True)

    async def list_bookings(
        self, filters: BookingFilters, user_id: UUID | None = None
    ) -> list[BookingResponse]:
        qs = Booking.all()

        if user_id is not None:
            qs = qs.filter(user_id=user_id)
        elif filters.user_id is not None:
            qs = qs.filter(user_id=filters.user_id)
        if filters.vehicle_id is not None:
            qs = qs.filter(vehicle_id=filters.vehicle_id)
        if filters.status is not None:
            qs = qs.filter(status=filters.status)

        offset = (filters.page - 1) * filters.page_size
        qs = qs.order_by("-start_date").offset(offset).limit(filters.page_size)

        bookings = await qs
        return [
            BookingResponse.model_validate(b, from_attributes=True) for b in bookings
        ]

    async def list_user_bookings(self, user_id: UUID) -> list[BookingResponse]:
        bookings = await Booking.filter(user_id=user_id).order_by("-start_date")
        return [
            BookingResponse.model_validate(b, from_attributes=True) for b in bookings
        ]

    async def list_occupied_slots(self, vehicle_id: UUID) -> list[BookingSlot]:
        """Return booked date windows for a vehicle; no user info exposed."""
        bookings = (
            await Booking.filter(vehicle_id=vehicle_id, status__in=list(BLOCKING_STATUSES))
            .order_by("start_date")
            .only("start_date", "end_date")
        )
        return [BookingSlot.model_validate(b, from_attributes=True) for b in bookings]

    async def set_payment_intent(
        self, booking_id: UUID, payment_intent_id: str
    ) -> BookingResponse | None:
        inst = await Booking.get_or_none(id=booking_id)
        if not inst:
            return None
        inst.payment_intent_id = payment_intent_id
        await inst.save(update_fields=["payment_intent_id", "updated_at"])
        return BookingResponse.model_validate(inst, from_attributes=True)

    async def update_booking_status(
        self,
        booking_id: UUID,
        new_status: BookingStatus,
        guard: Callable[[Booking], None],
        payment_intent_id: str | None = None,
    ) -> BookingResponse | None:
        """
        Apply a status change to the locked row.

        ``guard`` sees the row as it is inside the transaction and raises to
        reject the change. The payment reference, when given, is written in the
        same UPDATE as the status.
        """
        async with in_transaction():
            inst = await Booking.filter(id=booking_id).select_for_update().first()
            if not inst:
                return None
            guard(inst)
            inst.status = new_status  # type: ignore
            update_fields = ["status", "updated_at"]
            if payment_intent_id is not None:
                inst.payment_intent_id = payment_intent_id
                update_fields.append("payment_intent_id")
            await inst.save(update_fields=update_fields)
        return BookingResponse.model_validate(inst, from_attributes=True)


# ---------------------------------------------------------------------------
# Deals
# ---------------------------------------------------------------------------


class DealCRUD:
    async def list_deals(self) -> list[DealResponse]:
        deals = await Deal.all().order_by("-valid_until")
        return [DealResponse.model_validate(d, from_attributes=True) for d in deals]

    async def list_active_deals(self, today: date) -> list[DealResponse]:
        deals = await Deal.filter(
            is_active=True, valid_from__lte=today, valid_until__gte=today
        ).order_by("valid_until")
        return [DealResponse.model_validate(d, from_attributes=True) for d in deals]

    async def get_by_code(self, code: str) -> Deal | None:
        return await Deal.get_or_none(code_hash=hash_promo_code(code))

    async def create_deal(self, payload: DealCreate) -> DealResponse:
        data = payload.model_dump(exclude={"code"})
        try:
            inst = await Deal.create(
                **data,
                code_hash=hash_promo_code(payload.code),
                code_hint=mask_code(payload.code),
            )
        except IntegrityError:
            raise DuplicateResource("A deal with this code already exists") from None
        logger.info("Deal created: deal_id={} code={}", inst.id, inst.code_hint)
        return DealResponse.model_validate(inst, from_attributes=True)

    async def update_deal(self, deal_id: int, payload: DealUpdate) -> DealResponse | None:
        inst = await Deal.get_or_none(id=deal_id)
        if not inst:
            return None
        changes = payload.model_dump(exclude_unset=True, exclude={"code"})
        if payload.code is not None:
            changes["code_hash"] = hash_promo_code(payload.code)
            changes["code_hint"] = mask_code(payload.code)

        valid_from = changes.get("valid_from", inst.valid_from)
        valid_until = changes.get("valid_until", inst.valid_until)
        if valid_until < valid_from:
            raise ValidationError("valid_until must not be before valid_from")

        discount_type = changes.get("discount_type", inst.discount_type)
        discount_value = changes.get("discount_value", inst.discount_value)
        if discount_type == DiscountType.PERCENT and discount_value > 100:
            raise ValidationError("Percentage discount cannot exceed 100")

        if changes:
            inst.update_from_dict(changes)
            try:
                await inst.save(update_fields=[*changes, "updated_at"])
            except IntegrityError:
                raise DuplicateResource("A deal with this code already exists") from None
        logger.info("Deal updated: deal_id={}", inst.id)
        return DealResponse.model_validate(inst, from_attributes=True)

    async def delete_deal(self, deal_id: int) -> bool:
        deleted = await Deal.filter(id=deal_id).delete()
        return deleted > 0

    async def check_code(
        self, code: str, subtotal: Decimal | None, today: date
    ) -> Deal:
        """Validate a code for display purposes without counting a use."""
        deal = await self.get_by_code(code)
        if deal is None:
            raise DealNotFound("Invalid promo code")
        reason = rejection_reason(deal, subtotal, today)
        if reason is not None:
            raise PromoCodeRejected(reason)
        return deal

    async def redeem(self, code: str, subtotal: Decimal, today: date) -> Deal:
        """
        Lock the deal, check it applies to ``subtotal`` and count one use.
        Must run inside a transaction.
        """
        deal = (
            await Deal.filter(code_hash=hash_promo_code(code)).select_for_update().first()
        )
        if deal is None:
            logger.warning("Invalid promo code attempted: {}", mask_code(code))
            raise DealNotFound("Invalid promo code")
        reason = rejection_reason(deal, subtotal, today)
        if reason is not None:
            logger.warning("Promo code rejected: deal_id={} reason={}", deal.id, reason)
            raise PromoCodeRejected(reason)
        await Deal.filter(id=deal.id).update(current_usage=F("current_usage") + 1)
        deal.current_usage += 1
        return deal


# ---------------------------------------------------------------------------
# Reviews
# ---------------------------------------------------------------------------


class ReviewCRUD:
    async def create_review(self, user_id: UUID, payload: ReviewCreate) -> ReviewResponse:
        booking = await Booking.get_or_none(id=payload.booking_id)
        if not booking:
            raise BookingNotFound()
        if booking.user_id != user_id:
            raise PermissionDenied("You can only review your own bookings")
        if booking.status != BookingStatus.COMPLETED:
            raise ConflictError("You can only review completed bookings")
        if await Review.exists(booking_id=booking.id):
            raise DuplicateResource("You have already reviewed this booking")

        try:
            inst = await Review.create(
                booking_id=booking.id,
                vehicle_id=booking.vehicle_id,
                user_id=user_id,
                rating=payload.rating,
                title=payload.title,
                comment=payload.comment,
            )
        except IntegrityError:
            raise DuplicateResource("You have already reviewed this booking") from None
        return ReviewResponse.model_validate(inst, from_attributes=True)

    async def get_review(self, review_id: UUID) -> ReviewResponse | None:
        inst = await Review.get_or_none(id=review_id)
        if not inst:
            return None
        return ReviewResponse.model_validate(inst, from_attributes=True)

    async def update_review(
        self,
        review_id: UUID,
        user_id: UUID,
        payload: ReviewUpdate,
        now: datetime,
    ) -> ReviewResponse:
        inst = await Review.get_or_none(id=review_id)
        if not inst:
            raise ReviewNotFound()
        if inst.user_id != user_id:
            raise PermissionDenied("You can only edit your own reviews")
        if now - _to_utc(inst.created_at) > timedelta(days=settings.REVIEW_EDIT_DAYS):
            raise ConflictError(
                f"Reviews can only be edited within {settings.REVIEW_EDIT_DAYS} days "
                "of creation"
            )
        changes = payload.model_dump(exclude_unset=True)
        if changes:
            inst.update_from_dict(changes)
            await inst.save(update_fields=[*changes, "updated_at"])
        return ReviewResponse.model_validate(inst, from_attributes=True)

    async def delete_review(self, review_id: UUID) -> bool:
        deleted = await Review.filter(id=review_id).delete()
        return deleted > 0


# ---------------------------------------------------------------------------
# Broadcasts
# ---------------------------------------------------------------------------


class BroadcastCRUD:
    async def list_broadcasts(self) -> list[BroadcastResponse]:
        """Newest first, every audience; readers filter by role."""
        rows = await Broadcast.all().order_by("-created_at")
        return [BroadcastResponse.model_validate(b, from_attributes=True) for b in rows]

    async def create_broadcast(
        self, admin_id: UUID, payload: BroadcastCreate
    ) -> BroadcastResponse:
        inst = await Broadcast.create(**payload.model_dump(), admin_id=admin_id)
        logger.info(
            "Broadcast created: broadcast_id={} audience={}", inst.id, inst.audience
        )
        return BroadcastResponse.model_validate(inst, from_attributes=True)


# ---------------------------------------------------------------------------
# Admin dashboard
# ---------------------------------------------------------------------------


class DashboardCRUD:
    async def get_stats(self) -> DashboardStats:
        vehicle_count = await Vehicle.all().count()

        status_rows = (
            await Booking.annotate(count=Count("id"), revenue=Sum("total_price"))
            .group_by("status")
            .order_by("status")
            .values("status", "count", "revenue")
        )
        bookings_by_status = {str(r["status"]): r["count"] for r in status_rows}
        total_revenue = sum(
            (
                Decimal(str(r["revenue"] or 0))
                for r in status_rows
                if r["status"] in _PAID_STATUSES
            ),
            Decimal("0"),
        )

        type_rows = (
            await Vehicle.annotate(count=Count("id"))
            .group_by("type")
            .order_by("type")
            .values("type", "count")
        )

        popular_rows = (
            await Booking.annotate(booking_count=Count("id"))
            .group_by("vehicle_id")
            .order_by("-booking_count")
            .limit(5)
            .values("vehicle_id", "booking_count")
        )
        names = dict(
            await Vehicle.filter(id__in=[r["vehicle_id"] for r in popular_rows]).values_list(
                "id", "name"
            )
        )

        recent_bookings = await Booking.all().order_by("-created_at").limit(5)
        recent_reviews = await Review.all().order_by("-created_at").limit(5)

        return DashboardStats(
            vehicle_count=vehicle_count,
            booking_count=sum(bookings_by_status.values()),
            bookings_by_status=bookings_by_status,
            total_revenue=total_revenue.quantize(Decimal("0.01")),
            vehicle_types=[VehicleTypeCount(**r) for r in type_rows],
            popular_vehicles=[
                PopularVehicle(
                    id=r["vehicle_id"],
                    name=names.get(r["vehicle_id"], ""),
                    booking_count=r["booking_count"],
                )
                for r in popular_rows
            ],
            recent_bookings=[
                BookingResponse.model_validate(b, from_attributes=True)
                for b in recent_bookings
            ],
            recent_reviews=[
                ReviewResponse.model_validate(r, from_attributes=True)
                for r in recent_reviews
            ],
        )


vehicle_crud = VehicleCRUD()
booking_crud = BookingCRUD()
deal_crud = DealCRUD()
review_crud = ReviewCRUD()
broadcast_crud = BroadcastCRUD()
dashboard_crud = DashboardCRUD()
