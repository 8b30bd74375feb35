from datetime import date, datetime
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import TypeAdapter

from rentals import settings
from rentals.availability import check_availability
from rentals.cache import Cache, cache_key, read_through
from rentals.crud import vehicle_crud
from rentals.deps import CurrentUser, get_cache, get_now, require_admin
from rentals.errors import VehicleNotFound
from rentals.invalidation import (
    VEHICLE_DETAIL_KEY,
    VEHICLE_LIST_PREFIX,
    DomainEvent,
    on_domain_event,
)
from rentals.schemas import (
    AvailabilityResponse,
    VehicleCreate,
    VehicleDetail,
    VehicleFilters,
    VehicleList,
    VehicleResponse,
    VehicleUpdate,
)

router = APIRouter(prefix="/vehicles", tags=["vehicles"])

_LIST = TypeAdapter(VehicleList)
_DETAIL = TypeAdapter(VehicleDetail)


@router.get("/", response_model=VehicleList)
async def list_vehicles(
    filters: VehicleFilters = Depends(),
    cache: Cache = Depends(get_cache),
) -> VehicleList:
    key = cache_key(VEHICLE_LIST_PREFIX, **filters.model_dump(mode="json"))
    return await read_through(
        cache,
        key,
        settings.VEHICLE_LIST_TTL,
        lambda: vehicle_crud.list_vehicles(filters),
        _LIST,
    )


@router.get("/{vehicle_id}", response_model=VehicleDetail)
async def get_vehicle(
    vehicle_id: UUID,
    cache: Cache = Depends(get_cache),
) -> VehicleDetail:
    detail = await read_through(
        cache,
        VEHICLE_DETAIL_KEY.format(vehicle_id=vehicle_id),
        settings.VEHICLE_DETAIL_TTL,
        lambda: vehicle_crud.get_vehicle_detail(vehicle_id),
        _DETAIL,
    )
    if detail is None:
        raise VehicleNotFound()
    return detail


@router.get("/{vehicle_id}/availability", response_model=AvailabilityResponse)
async def get_vehicle_availability(
    vehicle_id: UUID,
    start_date: date,
    end_date: date,
    now: datetime = Depends(get_now),
) -> AvailabilityResponse:
    """Never cached: the answer has to reflect committed bookings."""
    result = await check_availability(vehicle_id, start_date, end_date, now)
    return AvailabilityResponse(
        available=result.available,
        reason=result.reason,
        conflicting_booking_id=result.conflicting_booking_id,
    )


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


@router.post("/", response_model=VehicleResponse, status_code=status.HTTP_201_CREATED)
async def create_vehicle(
    payload: VehicleCreate,
    _: CurrentUser = Depends(require_admin),
    cache: Cache = Depends(get_cache),
) -> VehicleResponse:
    vehicle = await vehicle_crud.create_vehicle(payload)
    await on_domain_event(cache, DomainEvent.VEHICLE_CREATED, vehicle_id=vehicle.id)
    return vehicle


@router.patch("/{vehicle_id}", response_model=VehicleResponse)
async def update_vehicle(
    vehicle_id: UUID,
    payload: VehicleUpdate,
    _: CurrentUser = Depends(require_admin),
    cache: Cache = Depends(get_cache),
) -> VehicleResponse:
    vehicle = await vehicle_crud.update_vehicle(vehicle_id, payload)
    if not vehicle:
        raise VehicleNotFound()
    await on_domain_event(cache, DomainEvent.VEHICLE_UPDATED, vehicle_id=vehicle_id)
    return vehicle


@router.delete("/{vehicle_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_vehicle(
    vehicle_id: UUID,
    _: CurrentUser = Depends(require_admin),
    cache: Cache = Depends(get_cache),
) -> None:
    deleted = await vehicle_crud.delete_vehicle(vehicle_id)
    if not deleted:
        raise VehicleNotFound()
    await on_domain_event(cache, DomainEvent.VEHICLE_DELETED, vehicle_id=vehicle_id)
