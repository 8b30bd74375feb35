"""
Maps domain events to the cache key patterns they make stale.

Invalidation is deliberately coarse: whole key families are purged by glob
instead of tracking which cached aggregates depend on which rows.
"""

from __future__ import annotations

from enum import StrEnum

from loguru import logger

from rentals.cache import Cache


class DomainEvent(StrEnum):
    BOOKING_CREATED = "booking.created"
    BOOKING_CONFIRMED = "booking.confirmed"
    BOOKING_CANCELLED = "booking.cancelled"
    BOOKING_ACTIVATED = "booking.activated"
    BOOKING_COMPLETED = "booking.completed"

    VEHICLE_CREATED = "vehicle.created"
    VEHICLE_UPDATED = "vehicle.updated"
    VEHICLE_DELETED = "vehicle.deleted"

    DEAL_CREATED = "deal.created"
    DEAL_UPDATED = "deal.updated"
    DEAL_DELETED = "deal.deleted"
    DEAL_REDEEMED = "deal.redeemed"

    REVIEW_CREATED = "review.created"
    REVIEW_UPDATED = "review.updated"
    REVIEW_DELETED = "review.deleted"

    BROADCAST_CREATED = "broadcast.created"


# Key prefixes shared with the read paths in the routers
USER_BOOKINGS_KEY = "bookings:user:{user_id}"
VEHICLE_SLOTS_KEY = "vehicle:slots:{vehicle_id}"
VEHICLE_DETAIL_KEY = "vehicle:detail:{vehicle_id}"
VEHICLE_LIST_PREFIX = "vehicles:list"
DEALS_ACTIVE_PREFIX = "deals:active"
DEALS_ADMIN_KEY = "deals:admin:list"
DASHBOARD_KEY = "admin:dashboard:stats"
BROADCASTS_KEY = "broadcasts:all"

_BOOKING_PATTERNS = (
    USER_BOOKINGS_KEY,
    VEHICLE_SLOTS_KEY,
    "admin:dashboard:*",
)
_VEHICLE_PATTERNS = (
    "vehicles:*",
    "vehicle:detail:*",
    "vehicle:slots:*",
    "admin:dashboard:*",
)
_DEAL_PATTERNS = ("deals:*", "admin:dashboard:*")
_REVIEW_PATTERNS = (VEHICLE_DETAIL_KEY, "admin:dashboard:*")

INVALIDATION_PATTERNS: dict[DomainEvent, tuple[str, ...]] = {
    DomainEvent.BOOKING_CREATED: _BOOKING_PATTERNS,
    DomainEvent.BOOKING_CONFIRMED: _BOOKING_PATTERNS,
    DomainEvent.BOOKING_CANCELLED: _BOOKING_PATTERNS,
    DomainEvent.BOOKING_ACTIVATED: _BOOKING_PATTERNS,
    DomainEvent.BOOKING_COMPLETED: _BOOKING_PATTERNS,
    DomainEvent.VEHICLE_CREATED: _VEHICLE_PATTERNS,
    DomainEvent.VEHICLE_UPDATED: _VEHICLE_PATTERNS,
    DomainEvent.VEHICLE_DELETED: _VEHICLE_PATTERNS,
    DomainEvent.DEAL_CREATED: _DEAL_PATTERNS,
    DomainEvent.DEAL_UPDATED: _DEAL_PATTERNS,
    DomainEvent.DEAL_DELETED: _DEAL_PATTERNS,
    DomainEvent.DEAL_REDEEMED: _DEAL_PATTERNS,
    DomainEvent.REVIEW_CREATED: _REVIEW_PATTERNS,
    DomainEvent.REVIEW_UPDATED: _REVIEW_PATTERNS,
    DomainEvent.REVIEW_DELETED: _REVIEW_PATTERNS,
    DomainEvent.BROADCAST_CREATED: ("broadcasts:*",),
}

_missing = set(DomainEvent) - INVALIDATION_PATTERNS.keys()
if _missing:
    raise RuntimeError(f"No invalidation patterns for events: {sorted(_missing)}")


def patterns_for(event: DomainEvent, **subject: object) -> list[str]:
    """Render the pattern templates of ``event`` with its subject ids."""
    return [tpl.format(**subject) for tpl in INVALIDATION_PATTERNS[event]]


async def on_domain_event(cache: Cache, event: DomainEvent, **subject: object) -> None:
    """
    Purge every key family made stale by ``event``.

    ``subject`` carries the ids the templates need (``user_id``,
    ``vehicle_id``). Failed purges are logged and the remaining patterns are
    still attempted; nothing is raised.
    """
    for pattern in patterns_for(event, **subject):
        if not await cache.delete_pattern(pattern):
            logger.warning(
                "Cache invalidation failed for {} (event={})", pattern, event
            )
    logger.debug("Invalidated cache for {} {}", event, subject)
