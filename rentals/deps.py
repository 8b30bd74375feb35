from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from enum import StrEnum
from functools import lru_cache
from urllib.parse import quote, unquote
from uuid import UUID

import httpx
from fastapi import Depends, Header, HTTPException, status
from loguru import logger
from pydantic import ValidationError as SchemaError

from rentals import settings
from rentals.cache import Cache, get_redis_cache
from rentals.errors import DependencyError, PaymentNotCompleted, PermissionDenied
from rentals.schemas import PaymentIntent


class Role(StrEnum):
    USER = "USER"
    ADMIN = "ADMIN"


@dataclass
class CurrentUser:
    id: UUID
    username: str
    role: Role = Role.USER

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


def get_current_user(
    x_user_id: str = Header(...),
    x_username: str = Header(...),
    x_user_role: str = Header(default="USER"),
) -> CurrentUser:
    """
    Reads the identity headers injected by the gateway after authentication.
    The session/JWT has already been verified upstream; we just trust these.
    """
    try:
        user_id = UUID(x_user_id)
    except (ValueError, TypeError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user identity from gateway",
        ) from None

    try:
        role = Role(x_user_role.upper())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Unknown role from gateway: {x_user_role!r}",
        ) from None

    return CurrentUser(id=user_id, username=unquote(x_username), role=role)


async def require_admin(
    current_user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    """Shorthand for admin-only endpoints."""
    if not current_user.is_admin:
        raise PermissionDenied("Admin role required")
    return current_user


def get_cache() -> Cache:
    return get_redis_cache()


def get_now() -> datetime:
    """Request time; overridden in tests to pin the clock."""
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# PaymentsClient: thin async wrapper around payments-ms internal API
# ---------------------------------------------------------------------------


@lru_cache(maxsize=1)
def _get_payments_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=settings.payments_ms_url,
        timeout=httpx.Timeout(5.0),
        follow_redirects=True,
    )


def to_cents(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).to_integral_value())


class PaymentsClient:
    """
    Thin async wrapper around the payments-ms internal API.
    Forwards the caller's identity headers so payments-ms auth works normally.
    Any transport or protocol failure surfaces as DependencyError (502).
    """

    @property
    def _client(self) -> httpx.AsyncClient:
        return _get_payments_http_client()

    def _headers(self, user: CurrentUser) -> dict[str, str]:
        return {
            "X-User-Id": str(user.id),
            "X-Username": quote(user.username),
            "X-User-Role": str(user.role),
        }

    def _parse(self, resp: httpx.Response, what: str) -> PaymentIntent:
        if resp.status_code == 404:
            raise PaymentNotCompleted(f"Unknown {what}")
        if resp.status_code >= 400:
            raise DependencyError(f"payments-ms returned {resp.status_code} for {what}")
        try:
            return PaymentIntent.model_validate(resp.json())
        except (ValueError, SchemaError):
            raise DependencyError(f"payments-ms sent an invalid {what}") from None

    async def create_intent(
        self, booking_id: UUID, amount: Decimal, user: CurrentUser
    ) -> PaymentIntent:
        """Create a payment intent for ``amount`` (a decimal price) on ``booking_id``."""
        try:
            resp = await self._client.post(
                "/payments/intents",
                json={
                    "booking_id": str(booking_id),
                    "amount": to_cents(amount),
                    "currency": settings.CURRENCY,
                },
                headers=self._headers(user),
            )
        except httpx.RequestError as exc:
            logger.warning("payments-ms unreachable creating intent: {}", exc)
            raise DependencyError("Payment service unavailable") from exc
        return self._parse(resp, "payment intent")

    async def get_intent(self, payment_intent_id: str, user: CurrentUser) -> PaymentIntent:
        try:
            resp = await self._client.get(
                f"/payments/intents/{quote(payment_intent_id, safe='')}",
                headers=self._headers(user),
            )
        except httpx.RequestError as exc:
            logger.warning("payments-ms unreachable reading intent: {}", exc)
            raise DependencyError("Payment service unavailable") from exc
        return self._parse(resp, "payment intent")


_payments_client = PaymentsClient()


def get_payments_client() -> PaymentsClient:
    return _payments_client
