"""Promo evaluation: discounted prices and promo validity windows."""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable, Optional, Tuple, Union

from schemas import Promo, PromoSnapshot

CENTS = Decimal("0.01")

Number = Union[Decimal, int, float, str]


class MalformedPromoValue(ValueError):
    """Promo value is not a usable percentage."""


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() first so floats keep their printed value, not their binary one
    return Decimal(str(value))


def round2(value: Number) -> Decimal:
    """Round to cents, half-up."""
    return to_decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def parse_percentage(value: str) -> Decimal:
    """Parse '20%' / '20' / '12.5 %' into a percentage between 0 and 100."""
    text = str(value).strip()
    if text.endswith("%"):
        text = text[:-1].strip()
    try:
        percentage = Decimal(text)
    except InvalidOperation:
        raise MalformedPromoValue(f"Malformed promo value: {value!r}") from None
    if not percentage.is_finite() or not 0 <= percentage <= 100:
        raise MalformedPromoValue(f"Promo percentage must be 0-100, got {value!r}")
    return percentage


def discounted_price(base_price: Number, percentage_value: str) -> Decimal:
    base = to_decimal(base_price)
    percentage = parse_percentage(percentage_value)
    return round2(base - base * (percentage / 100))


def evaluate(base_price: Number, promo: Optional[PromoSnapshot],
             now: datetime) -> Tuple[Decimal, Optional[PromoSnapshot]]:
    """Price an item against a captured promo.

    Returns the base price and no promo when the promo is absent or its
    window closed before ``now``; otherwise the discounted price and the
    promo itself.
    """
    base = to_decimal(base_price)
    if promo is None or now > promo.valid_to:
        return base, None
    return discounted_price(base, promo.percentage_value), promo


def promo_status(promo: Promo, now: datetime) -> str:
    if now < promo.valid_from:
        return "upcoming"
    if now > promo.valid_to:
        return "expired"
    return "active"


def find_active_promo(promos: Iterable[Promo], item_id: str, now: datetime) -> Optional[Promo]:
    """First percentage discount on ``item_id`` whose window contains ``now``."""
    for promo in promos:
        if promo.item_id == item_id and promo.type == "discount" and promo_status(promo, now) == "active":
            return promo
    return None


def snapshot_of(promo: Promo) -> PromoSnapshot:
    return PromoSnapshot(
        promo_id=promo.id or "",
        percentage_value=promo.value,
        description=promo.description,
        valid_from=promo.valid_from,
        valid_to=promo.valid_to,
    )
