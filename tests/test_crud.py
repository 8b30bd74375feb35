"""
CRUD layer against an in-memory database.
"""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from pydantic import TypeAdapter

from rentals.cache import read_through
from rentals.crud import (
    booking_crud,
    broadcast_crud,
    dashboard_crud,
    deal_crud,
    review_crud,
    vehicle_crud,
)
from rentals.errors import (
    BookingNotFound,
    ConflictError,
    DealNotFound,
    DuplicateResource,
    PermissionDenied,
    PromoCodeRejected,
    ReferencedResource,
    ReviewNotFound,
    ValidationError,
)
from rentals.invalidation import VEHICLE_DETAIL_KEY, DomainEvent, on_domain_event
from rentals.models import (
    BookingStatus,
    Broadcast,
    BroadcastAudience,
    Deal,
    DiscountType,
)
from rentals.schemas import (
    BookingFilters,
    BroadcastCreate,
    BroadcastResponse,
    DealCreate,
    DealUpdate,
    ReviewCreate,
    ReviewUpdate,
    VehicleCreate,
    VehicleDetail,
    VehicleFilters,
    VehicleUpdate,
)

from .factories import (
    ADMIN_ID,
    CUSTOMER_ID,
    END,
    NOW,
    OTHER_USER_ID,
    START,
    create_booking,
    create_deal,
    create_review,
    create_vehicle,
    deal_create_payload,
)
from .fakes import FakeCache

pytestmark = pytest.mark.anyio


class TestVehicleCRUD:
    async def test_list_filters_and_types(self, db):
        await create_vehicle(name="Fiat 500", type="COMPACT", price_per_day=Decimal("30"))
        await create_vehicle(name="Toyota RAV4", type="SUV", price_per_day=Decimal("50"))
        await create_vehicle(
            name="Range Rover", type="SUV", price_per_day=Decimal("120"), availability=False
        )

        result = await vehicle_crud.list_vehicles(
            VehicleFilters(type="SUV", max_price=Decimal("100"))
        )

        assert [v.name for v in result.vehicles] == ["Toyota RAV4"]
        assert result.types == ["COMPACT", "SUV"]

    async def test_list_ordered_by_price(self, db):
        await create_vehicle(name="B", price_per_day=Decimal("80"))
        await create_vehicle(name="A", price_per_day=Decimal("40"))
        result = await vehicle_crud.list_vehicles(VehicleFilters())
        assert [v.name for v in result.vehicles] == ["A", "B"]

    async def test_available_filter(self, db):
        await create_vehicle(name="On")
        await create_vehicle(name="Off", availability=False)
        result = await vehicle_crud.list_vehicles(VehicleFilters(available=True))
        assert [v.name for v in result.vehicles] == ["On"]

    async def test_detail_with_reviews(self, db):
        vehicle = await create_vehicle()
        first = await create_booking(vehicle, status=BookingStatus.COMPLETED)
        second = await create_booking(
            vehicle,
            status=BookingStatus.COMPLETED,
            start_date=END,
            end_date=END + timedelta(days=2),
        )
        await create_review(first, rating=5)
        await create_review(second, rating=4)

        detail = await vehicle_crud.get_vehicle_detail(vehicle.id)

        assert detail.review_count == 2
        assert detail.avg_rating == 4.5

    async def test_detail_without_reviews(self, db):
        vehicle = await create_vehicle()
        detail = await vehicle_crud.get_vehicle_detail(vehicle.id)
        assert detail.review_count == 0
        assert detail.avg_rating == 0

    async def test_detail_unknown_is_none(self, db):
        assert await vehicle_crud.get_vehicle_detail(uuid4()) is None

    async def test_update_only_sent_fields(self, db):
        vehicle = await create_vehicle(brand="Toyota")
        updated = await vehicle_crud.update_vehicle(
            vehicle.id, VehicleUpdate(price_per_day=Decimal("75.00"))
        )
        assert updated.price_per_day == Decimal("75.00")
        assert updated.brand == "Toyota"

    async def test_create(self, db):
        created = await vehicle_crud.create_vehicle(
            VehicleCreate(name="VW Golf", type="COMPACT", price_per_day=Decimal("35.00"))
        )
        assert created.availability is True
        assert await vehicle_crud.get_vehicle(created.id) == created

    async def test_delete_unreferenced(self, db):
        vehicle = await create_vehicle()
        assert await vehicle_crud.delete_vehicle(vehicle.id) is True
        assert await vehicle_crud.get_vehicle(vehicle.id) is None

    async def test_delete_with_bookings_rejected(self, db):
        vehicle = await create_vehicle()
        await create_booking(vehicle, status=BookingStatus.CANCELLED)
        with pytest.raises(ReferencedResource):
            await vehicle_crud.delete_vehicle(vehicle.id)

    async def test_delete_unknown(self, db):
        assert await vehicle_crud.delete_vehicle(uuid4()) is False

    async def test_read_after_write_through_cache(self, db):
        vehicle = await create_vehicle(price_per_day=Decimal("50.00"))
        cache = FakeCache()
        key = VEHICLE_DETAIL_KEY.format(vehicle_id=vehicle.id)
        adapter = TypeAdapter(VehicleDetail)

        def load():
            return vehicle_crud.get_vehicle_detail(vehicle.id)

        before = await read_through(cache, key, 300, load, adapter)
        assert before.vehicle.price_per_day == Decimal("50.00")

        await vehicle_crud.update_vehicle(
            vehicle.id, VehicleUpdate(price_per_day=Decimal("75.00"))
        )
        await on_domain_event(cache, DomainEvent.VEHICLE_UPDATED, vehicle_id=vehicle.id)

        after = await read_through(cache, key, 300, load, adapter)
        assert after.vehicle.price_per_day == Decimal("75.00")


class TestBookingCRUD:
    async def test_occupied_slots_skip_released_bookings(self, db):
        vehicle = await create_vehicle()
        await create_booking(vehicle)
        await create_booking(
            vehicle,
            status=BookingStatus.CANCELLED,
            start_date=END,
            end_date=END + timedelta(days=1),
        )
        slots = await booking_crud.list_occupied_slots(vehicle.id)
        assert [(s.start_date, s.end_date) for s in slots] == [(START, END)]

    async def test_get_scoped_to_owner(self, db):
        vehicle = await create_vehicle()
        booking = await create_booking(vehicle)
        assert await booking_crud.get_booking(booking.id, user_id=OTHER_USER_ID) is None
        found = await booking_crud.get_booking(booking.id, user_id=CUSTOMER_ID)
        assert found.id == booking.id

    async def test_list_filters_and_pages(self, db):
        vehicle = await create_vehicle()
        for i in range(3):
            await create_booking(
                vehicle,
                start_date=START + timedelta(days=i * 5),
                end_date=START + timedelta(days=i * 5 + 1),
            )
        await create_booking(vehicle, user_id=OTHER_USER_ID, status=BookingStatus.CANCELLED)

        mine = await booking_crud.list_bookings(BookingFilters(), user_id=CUSTOMER_ID)
        cancelled = await booking_crud.list_bookings(
            BookingFilters(status=BookingStatus.CANCELLED)
        )
        page = await booking_crud.list_bookings(BookingFilters(page=2, page_size=2))

        assert len(mine) == 3
        assert mine[0].start_date > mine[-1].start_date
        assert [b.user_id for b in cancelled] == [OTHER_USER_ID]
        assert len(page) == 2

    async def test_user_bookings(self, db):
        vehicle = await create_vehicle()
        await create_booking(vehicle)
        await create_booking(
            vehicle,
            user_id=OTHER_USER_ID,
            start_date=END,
            end_date=END + timedelta(days=1),
        )
        bookings = await booking_crud.list_user_bookings(CUSTOMER_ID)
        assert [b.user_id for b in bookings] == [CUSTOMER_ID]


class TestDealCRUD:
    async def test_create_stores_hash_not_code(self, db):
        created = await deal_crud.create_deal(DealCreate(**deal_create_payload()))
        row = await Deal.get(id=created.id)
        assert created.code_hint == "****ER20"
        assert "SUMMER20" not in row.code_hash

    async def test_duplicate_code_rejected(self, db):
        await deal_crud.create_deal(DealCreate(**deal_create_payload()))
        with pytest.raises(DuplicateResource):
            await deal_crud.create_deal(DealCreate(**deal_create_payload(code="summer20")))

    async def test_active_deals_respect_window_and_flag(self, db):
        today = NOW.date()
        await create_deal("CURRENT")
        await create_deal("OFF", is_active=False)
        await create_deal(
            "EXPIRED",
            valid_from=today - timedelta(days=10),
            valid_until=today - timedelta(days=1),
        )
        active = await deal_crud.list_active_deals(today)
        assert [d.code_hint for d in active] == ["***RENT"]

    async def test_check_code_does_not_count_use(self, db):
        deal = await create_deal()
        checked = await deal_crud.check_code("summer20", Decimal("150"), NOW.date())
        assert checked.id == deal.id
        await deal.refresh_from_db()
        assert deal.current_usage == 0

    async def test_check_code_unknown(self, db):
        with pytest.raises(DealNotFound):
            await deal_crud.check_code("NOPE", None, NOW.date())

    async def test_check_code_rejected(self, db):
        await create_deal(usage_limit=3, current_usage=3)
        with pytest.raises(PromoCodeRejected):
            await deal_crud.check_code("SUMMER20", None, NOW.date())

    async def test_update_changes_code(self, db):
        deal = await create_deal()
        updated = await deal_crud.update_deal(deal.id, DealUpdate(code="WINTER10"))
        assert updated.code_hint == "****ER10"
        assert await deal_crud.get_by_code("WINTER10") is not None
        assert await deal_crud.get_by_code("SUMMER20") is None

    async def test_update_unknown(self, db):
        assert await deal_crud.update_deal(999, DealUpdate(is_active=False)) is None

    async def test_switch_to_percent_checks_stored_value(self, db):
        deal = await create_deal(
            "FLAT150", discount_type=DiscountType.FLAT, discount_value=Decimal("150")
        )
        with pytest.raises(ValidationError):
            await deal_crud.update_deal(deal.id, DealUpdate(discount_type="PERCENT"))
        await deal.refresh_from_db()
        assert deal.discount_type == DiscountType.FLAT

    async def test_clear_usage_limit(self, db):
        deal = await create_deal(usage_limit=5)
        updated = await deal_crud.update_deal(deal.id, DealUpdate(usage_limit=None))
        assert updated.usage_limit is None

    async def test_delete(self, db):
        deal = await create_deal()
        assert await deal_crud.delete_deal(deal.id) is True
        assert await deal_crud.delete_deal(deal.id) is False


class TestReviewCRUD:
    async def _completed_booking(self, **overrides):
        vehicle = await create_vehicle()
        return await create_booking(vehicle, status=BookingStatus.COMPLETED, **overrides)

    def _payload(self, booking, **overrides) -> ReviewCreate:
        base = dict(booking_id=booking.id, rating=4, comment="Smooth rental overall.")
        return ReviewCreate(**{**base, **overrides})

    async def test_create_for_completed_booking(self, db):
        booking = await self._completed_booking()
        review = await review_crud.create_review(CUSTOMER_ID, self._payload(booking))
        assert review.vehicle_id == booking.vehicle_id
        assert review.rating == 4

    async def test_only_completed_bookings(self, db):
        vehicle = await create_vehicle()
        booking = await create_booking(vehicle, status=BookingStatus.CONFIRMED)
        with pytest.raises(ConflictError):
            await review_crud.create_review(CUSTOMER_ID, self._payload(booking))

    async def test_only_owner_reviews(self, db):
        booking = await self._completed_booking()
        with pytest.raises(PermissionDenied):
            await review_crud.create_review(OTHER_USER_ID, self._payload(booking))

    async def test_one_review_per_booking(self, db):
        booking = await self._completed_booking()
        await review_crud.create_review(CUSTOMER_ID, self._payload(booking))
        with pytest.raises(DuplicateResource):
            await review_crud.create_review(CUSTOMER_ID, self._payload(booking))

    async def test_unknown_booking(self, db):
        with pytest.raises(BookingNotFound):
            await review_crud.create_review(
                CUSTOMER_ID,
                ReviewCreate(booking_id=uuid4(), rating=3, comment="Never happened."),
            )

    async def test_edit_within_window(self, db):
        booking = await self._completed_booking()
        review = await create_review(booking)
        updated = await review_crud.update_review(
            review.id,
            CUSTOMER_ID,
            ReviewUpdate(rating=3),
            review.created_at + timedelta(days=6),
        )
        assert updated.rating == 3
        assert updated.comment == review.comment

    async def test_edit_after_window_rejected(self, db):
        booking = await self._completed_booking()
        review = await create_review(booking)
        with pytest.raises(ConflictError):
            await review_crud.update_review(
                review.id,
                CUSTOMER_ID,
                ReviewUpdate(rating=3),
                review.created_at + timedelta(days=8),
            )

    async def test_edit_by_other_user_rejected(self, db):
        booking = await self._completed_booking()
        review = await create_review(booking)
        with pytest.raises(PermissionDenied):
            await review_crud.update_review(
                review.id, OTHER_USER_ID, ReviewUpdate(rating=1), review.created_at
            )

    async def test_edit_unknown(self, db):
        with pytest.raises(ReviewNotFound):
            await review_crud.update_review(uuid4(), CUSTOMER_ID, ReviewUpdate(), NOW)

    async def test_delete(self, db):
        booking = await self._completed_booking()
        review = await create_review(booking)
        assert await review_crud.delete_review(review.id) is True
        assert await review_crud.get_review(review.id) is None


class TestBroadcastCRUD:
    async def test_create_records_author(self, db):
        created = await broadcast_crud.create_broadcast(
            ADMIN_ID, BroadcastCreate(message="Staff meeting at nine.", audience="ADMIN")
        )
        assert created.admin_id == ADMIN_ID
        assert created.title == "Admin Broadcast"
        assert created.audience == BroadcastAudience.ADMIN

    async def test_list_newest_first(self, db):
        old = await broadcast_crud.create_broadcast(
            ADMIN_ID, BroadcastCreate(title="Old", message="Spring sale.")
        )
        await Broadcast.filter(id=old.id).update(created_at=NOW - timedelta(days=3))
        new = await broadcast_crud.create_broadcast(
            ADMIN_ID, BroadcastCreate(title="New", message="Summer sale.")
        )
        listed = await broadcast_crud.list_broadcasts()
        assert [b.id for b in listed] == [new.id, old.id]

    async def test_list_round_trips_through_cache(self, db):
        cache = FakeCache()
        await broadcast_crud.create_broadcast(ADMIN_ID, BroadcastCreate(message="Hi."))
        adapter = TypeAdapter(list[BroadcastResponse])
        first = await read_through(
            cache, "broadcasts:all", 120, broadcast_crud.list_broadcasts, adapter
        )
        second = await read_through(
            cache, "broadcasts:all", 120, broadcast_crud.list_broadcasts, adapter
        )
        assert first == second


class TestDashboardCRUD:
    async def test_stats(self, db):
        suv = await create_vehicle(name="Toyota RAV4", type="SUV")
        van = await create_vehicle(name="Ford Transit", type="VAN")
        await create_booking(suv, status=BookingStatus.CONFIRMED)
        await create_booking(
            suv,
            status=BookingStatus.COMPLETED,
            start_date=END,
            end_date=END + timedelta(days=3),
        )
        await create_booking(van, status=BookingStatus.CANCELLED)
        await create_booking(
            van, start_date=END, end_date=END + timedelta(days=3)
        )

        stats = await dashboard_crud.get_stats()

        assert stats.vehicle_count == 2
        assert stats.booking_count == 4
        assert stats.bookings_by_status == {
            "CANCELLED": 1,
            "COMPLETED": 1,
            "CONFIRMED": 1,
            "PENDING": 1,
        }
        # Only paid statuses count as revenue
        assert stats.total_revenue == Decimal("300.00")
        assert {(t.type, t.count) for t in stats.vehicle_types} == {("SUV", 1), ("VAN", 1)}
        assert {(p.name, p.booking_count) for p in stats.popular_vehicles} == {
            ("Toyota RAV4", 2),
            ("Ford Transit", 2),
        }
        assert len(stats.recent_bookings) == 4

    async def test_empty(self, db):
        stats = await dashboard_crud.get_stats()
        assert stats.booking_count == 0
        assert stats.total_revenue == Decimal("0.00")
        assert stats.popular_vehicles == []
