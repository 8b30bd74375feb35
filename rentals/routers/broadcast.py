from fastapi import APIRouter, Depends, status
from pydantic import TypeAdapter

from rentals import settings
from rentals.cache import Cache, read_through
from rentals.crud import broadcast_crud
from rentals.deps import CurrentUser, get_cache, get_current_user, require_admin
from rentals.invalidation import BROADCASTS_KEY, DomainEvent, on_domain_event
from rentals.models import BroadcastAudience
from rentals.schemas import BroadcastCreate, BroadcastResponse

router = APIRouter(prefix="/broadcasts", tags=["broadcasts"])

_BROADCASTS = TypeAdapter(list[BroadcastResponse])


@router.get("/", response_model=list[BroadcastResponse])
async def list_broadcasts(
    current_user: CurrentUser = Depends(get_current_user),
    cache: Cache = Depends(get_cache),
) -> list[BroadcastResponse]:
    """
    Announcements for the caller, newest first.

    One cache entry holds every broadcast; admins see all of them, customers
    only those addressed to everyone or to customers.
    """
    broadcasts = await read_through(
        cache,
        BROADCASTS_KEY,
        settings.BROADCASTS_TTL,
        broadcast_crud.list_broadcasts,
        _BROADCASTS,
    )
    if current_user.is_admin:
        return broadcasts
    return [
        b
        for b in broadcasts
        if b.audience in (BroadcastAudience.ALL, BroadcastAudience.USER)
    ]


@router.post(
    "/", response_model=BroadcastResponse, status_code=status.HTTP_201_CREATED
)
async def create_broadcast(
    payload: BroadcastCreate,
    current_user: CurrentUser = Depends(require_admin),
    cache: Cache = Depends(get_cache),
) -> BroadcastResponse:
    broadcast = await broadcast_crud.create_broadcast(current_user.id, payload)
    await on_domain_event(cache, DomainEvent.BROADCAST_CREATED)
    return broadcast
