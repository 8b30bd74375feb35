from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, status

from rentals.cache import Cache
from rentals.crud import review_crud
from rentals.deps import CurrentUser, get_cache, get_current_user, get_now
from rentals.errors import PermissionDenied, ReviewNotFound
from rentals.invalidation import DomainEvent, on_domain_event
from rentals.schemas import ReviewCreate, ReviewResponse, ReviewUpdate

router = APIRouter(prefix="/reviews", tags=["reviews"])


@router.post("/", response_model=ReviewResponse, status_code=status.HTTP_201_CREATED)
async def create_review(
    payload: ReviewCreate,
    current_user: CurrentUser = Depends(get_current_user),
    cache: Cache = Depends(get_cache),
) -> ReviewResponse:
    """Only the renter of a COMPLETED booking may review it, once."""
    review = await review_crud.create_review(current_user.id, payload)
    await on_domain_event(cache, DomainEvent.REVIEW_CREATED, vehicle_id=review.vehicle_id)
    return review


@router.patch("/{review_id}", response_model=ReviewResponse)
async def update_review(
    review_id: UUID,
    payload: ReviewUpdate,
    current_user: CurrentUser = Depends(get_current_user),
    cache: Cache = Depends(get_cache),
    now: datetime = Depends(get_now),
) -> ReviewResponse:
    review = await review_crud.update_review(review_id, current_user.id, payload, now)
    await on_domain_event(cache, DomainEvent.REVIEW_UPDATED, vehicle_id=review.vehicle_id)
    return review


@router.delete("/{review_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_review(
    review_id: UUID,
    current_user: CurrentUser = Depends(get_current_user),
    cache: Cache = Depends(get_cache),
) -> None:
    review = await review_crud.get_review(review_id)
    if not review:
        raise ReviewNotFound()
    if review.user_id != current_user.id and not current_user.is_admin:
        raise PermissionDenied("You can only delete your own reviews")

    await review_crud.delete_review(review_id)
    await on_domain_event(cache, DomainEvent.REVIEW_DELETED, vehicle_id=review.vehicle_id)
