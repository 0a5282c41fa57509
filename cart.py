"""Session cart: lines keyed by (item, provider), repriced on every read."""

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, List, Optional

import structlog
from pydantic import ValidationError

from local_store import CART_KEY, LocalStore
from promos import MalformedPromoValue, evaluate, round2, to_decimal
from schemas import MAX_PRICE, CartLine, PromoSnapshot

logger = structlog.get_logger()

Cart = List[CartLine]


@dataclass(frozen=True)
class CartItem:
    """A menu item as handed to the cart, with the promo captured at add time."""

    item_id: str
    name: str
    price: Decimal
    promo: Optional[PromoSnapshot] = None
    provider_name: Optional[str] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def total(cart: Cart) -> Decimal:
    """Sum of final price times quantity. Delivery fee not included."""
    return round2(sum((line.final_price * line.quantity for line in cart), Decimal("0")))


class CartStore:
    """Cart persisted in a session's LocalStore."""

    def __init__(self, store: LocalStore, clock: Callable[[], datetime] = _utcnow):
        self.store = store
        self.clock = clock

    def _load(self) -> Cart:
        raw = self.store.get_item(CART_KEY)
        if not raw:
            return []
        try:
            return [CartLine.model_validate(entry) for entry in json.loads(raw)]
        except (json.JSONDecodeError, ValidationError, TypeError) as exc:
            logger.error("cart_load_failed", error=str(exc))
            return []

    def _save(self, cart: Cart) -> None:
        self.store.set_item(CART_KEY, json.dumps([line.model_dump(mode="json") for line in cart]))

    def _price(self, price: Decimal, promo: Optional[PromoSnapshot], now: datetime):
        try:
            return evaluate(price, promo, now)
        except MalformedPromoValue as exc:
            logger.warning("cart_promo_dropped", promo_id=promo.promo_id if promo else None, error=str(exc))
            return to_decimal(price), None

    def _reprice(self, line: CartLine, now: datetime) -> CartLine:
        final_price, promo = self._price(line.original_price, line.promo_applied, now)
        return line.model_copy(update={"final_price": final_price, "promo_applied": promo})

    @staticmethod
    def _find(cart: Cart, item_id: str, provider_id: str) -> int:
        for index, line in enumerate(cart):
            if line.item_id == item_id and line.provider_id == provider_id:
                return index
        return -1

    def get_cart(self) -> Cart:
        """Return the cart with expired promos cleared, persisting only on change."""
        stored = self._load()
        now = self.clock()
        cart = [self._reprice(line, now) for line in stored]
        if cart != stored:
            self._save(cart)
        return cart

    def add_item(self, item: CartItem, provider_id: str) -> Cart:
        if not 0 <= to_decimal(item.price) <= MAX_PRICE:
            raise ValueError(f"Price out of range for item {item.item_id}")
        cart = self.get_cart()
        final_price, promo = self._price(item.price, item.promo, self.clock())
        index = self._find(cart, item.item_id, provider_id)
        if index != -1:
            existing = cart[index]
            cart[index] = existing.model_copy(update={
                "quantity": existing.quantity + 1,
                "final_price": final_price,
                "promo_applied": promo,
            })
        else:
            cart.append(CartLine(
                item_id=item.item_id,
                provider_id=provider_id,
                provider_name=item.provider_name,
                name=item.name,
                quantity=1,
                original_price=to_decimal(item.price),
                final_price=final_price,
                promo_applied=promo,
            ))
        self._save(cart)
        logger.info("cart_item_added", item_id=item.item_id, provider_id=provider_id)
        return cart

    def update_quantity(self, item_id: str, provider_id: str, new_quantity: int) -> Cart:
        if new_quantity < 1:
            return self.remove_item(item_id, provider_id)
        cart = self.get_cart()
        index = self._find(cart, item_id, provider_id)
        if index == -1:
            return cart
        cart[index] = cart[index].model_copy(update={"quantity": new_quantity})
        self._save(cart)
        return cart

    def remove_item(self, item_id: str, provider_id: str) -> Cart:
        cart = [
            line for line in self.get_cart()
            if not (line.item_id == item_id and line.provider_id == provider_id)
        ]
        self._save(cart)
        return cart

    def clear(self) -> Cart:
        self._save([])
        return []
