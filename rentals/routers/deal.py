from datetime import datetime

from fastapi import APIRouter, Depends, status
from pydantic import TypeAdapter

from rentals import settings
from rentals.cache import Cache, cache_key, read_through
from rentals.crud import deal_crud
from rentals.deps import CurrentUser, get_cache, get_current_user, get_now, require_admin
from rentals.errors import DealNotFound
from rentals.invalidation import (
    DEALS_ACTIVE_PREFIX,
    DEALS_ADMIN_KEY,
    DomainEvent,
    on_domain_event,
)
from rentals.schemas import (
    DealCreate,
    DealResponse,
    DealUpdate,
    PromoCodeResult,
    PromoCodeValidate,
)

router = APIRouter(prefix="/deals", tags=["deals"])

_DEALS = TypeAdapter(list[DealResponse])


@router.get("/active", response_model=list[DealResponse])
async def list_active_deals(
    cache: Cache = Depends(get_cache),
    now: datetime = Depends(get_now),
) -> list[DealResponse]:
    today = now.date()
    return await read_through(
        cache,
        cache_key(DEALS_ACTIVE_PREFIX, day=today.isoformat()),
        settings.DEALS_ACTIVE_TTL,
        lambda: deal_crud.list_active_deals(today),
        _DEALS,
    )


@router.post("/validate", response_model=PromoCodeResult)
async def validate_promo_code(
    payload: PromoCodeValidate,
    _: CurrentUser = Depends(get_current_user),
    now: datetime = Depends(get_now),
) -> PromoCodeResult:
    """Check a code before checkout. Does not count as a use."""
    deal = await deal_crud.check_code(payload.code, payload.subtotal, now.date())
    return PromoCodeResult(
        deal_id=deal.id,
        discount_type=deal.discount_type,
        discount_value=deal.discount_value,
        min_purchase=deal.min_purchase,
    )


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


@router.get("/", response_model=list[DealResponse])
async def list_deals(
    _: CurrentUser = Depends(require_admin),
    cache: Cache = Depends(get_cache),
) -> list[DealResponse]:
    return await read_through(
        cache, DEALS_ADMIN_KEY, settings.DEALS_ADMIN_TTL, deal_crud.list_deals, _DEALS
    )


@router.post("/", response_model=DealResponse, status_code=status.HTTP_201_CREATED)
async def create_deal(
    payload: DealCreate,
    _: CurrentUser = Depends(require_admin),
    cache: Cache = Depends(get_cache),
) -> DealResponse:
    deal = await deal_crud.create_deal(payload)
    await on_domain_event(cache, DomainEvent.DEAL_CREATED)
    return deal


@router.patch("/{deal_id}", response_model=DealResponse)
async def update_deal(
    deal_id: int,
    payload: DealUpdate,
    _: CurrentUser = Depends(require_admin),
    cache: Cache = Depends(get_cache),
) -> DealResponse:
    deal = await deal_crud.update_deal(deal_id, payload)
    if not deal:
        raise DealNotFound()
    await on_domain_event(cache, DomainEvent.DEAL_UPDATED)
    return deal


@router.delete("/{deal_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_deal(
    deal_id: int,
    _: CurrentUser = Depends(require_admin),
    cache: Cache = Depends(get_cache),
) -> None:
    deleted = await deal_crud.delete_deal(deal_id)
    if not deleted:
        raise DealNotFound()
    await on_domain_event(cache, DomainEvent.DEAL_DELETED)
