from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends
from loguru import logger
from pydantic import TypeAdapter

from rentals import lifecycle, settings
from rentals.cache import Cache, read_through
from rentals.crud import booking_crud, dashboard_crud
from rentals.deps import CurrentUser, get_cache, get_now, require_admin
from rentals.invalidation import DASHBOARD_KEY
from rentals.schemas import (
    BookingFilters,
    BookingResponse,
    BookingStatusUpdate,
    CacheCleared,
    CacheInspection,
    CacheKeyInfo,
    DashboardStats,
)

router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    dependencies=[Depends(require_admin)],
)

_DASHBOARD = TypeAdapter(DashboardStats)


@router.get("/dashboard", response_model=DashboardStats)
async def get_dashboard(cache: Cache = Depends(get_cache)) -> DashboardStats:
    return await read_through(
        cache, DASHBOARD_KEY, settings.DASHBOARD_TTL, dashboard_crud.get_stats, _DASHBOARD
    )


@router.get("/bookings", response_model=list[BookingResponse])
async def list_bookings(filters: BookingFilters = Depends()) -> list[BookingResponse]:
    return await booking_crud.list_bookings(filters=filters)


@router.patch("/bookings/{booking_id}/status", response_model=BookingResponse)
async def update_booking_status(
    booking_id: UUID,
    payload: BookingStatusUpdate,
    current_user: CurrentUser = Depends(require_admin),
    cache: Cache = Depends(get_cache),
    now: datetime = Depends(get_now),
) -> BookingResponse:
    return await lifecycle.set_status(booking_id, payload.status, current_user, cache, now)


# ---------------------------------------------------------------------------
# Cache inspection
# ---------------------------------------------------------------------------


@router.get("/cache", response_model=CacheInspection)
async def inspect_cache(
    pattern: str = "*",
    cache: Cache = Depends(get_cache),
) -> CacheInspection:
    keys = await cache.inspect(pattern)
    return CacheInspection(
        connected=cache.is_connected(),
        keys=[CacheKeyInfo(key=k, ttl=ttl) for k, ttl in keys],
    )


@router.delete("/cache", response_model=CacheCleared)
async def clear_cache(
    pattern: str = "*",
    current_user: CurrentUser = Depends(require_admin),
    cache: Cache = Depends(get_cache),
) -> CacheCleared:
    if pattern == "*":
        cleared = await cache.clear()
    else:
        cleared = await cache.delete_pattern(pattern)
    logger.info(
        "Cache cleared by admin {}: pattern={} ok={}", current_user.id, pattern, cleared
    )
    return CacheCleared(pattern=pattern, cleared=cleared)
