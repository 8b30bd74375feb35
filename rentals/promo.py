"""Promo-code hashing and discount arithmetic."""

from __future__ import annotations

import hashlib
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from rentals.models import Deal, DiscountType

CENTS = Decimal("0.01")


def normalize_code(code: str) -> str:
    return code.strip().upper()


def hash_promo_code(code: str) -> str:
    """SHA-256 of the normalised code; the only form ever stored or queried."""
    return hashlib.sha256(normalize_code(code).encode("utf-8")).hexdigest()


def mask_code(code: str, visible: int = 4) -> str:
    code = normalize_code(code)
    if len(code) <= visible:
        return "*" * len(code)
    return "*" * (len(code) - visible) + code[-visible:]


def rejection_reason(deal: Deal, subtotal: Decimal | None, today: date) -> str | None:
    """Why ``deal`` cannot be applied right now, or None if it can."""
    if not deal.is_active:
        return "This promo code is no longer valid"
    if today < deal.valid_from or today > deal.valid_until:
        return "This promo code is not currently valid"
    if deal.usage_limit is not None and deal.current_usage >= deal.usage_limit:
        return "This promo code has reached its usage limit"
    if (
        subtotal is not None
        and deal.min_purchase is not None
        and subtotal < deal.min_purchase
    ):
        return f"This promo code requires a minimum purchase of {deal.min_purchase}"
    return None


def compute_discount(deal: Deal, subtotal: Decimal) -> Decimal:
    if deal.discount_type == DiscountType.PERCENT:
        amount = subtotal * Decimal(deal.discount_value) / Decimal(100)
    else:
        amount = Decimal(deal.discount_value)
    return min(amount, subtotal).quantize(CENTS, rounding=ROUND_HALF_UP)
