"""
Order placement and order queries.

Orders are pay-on-delivery snapshots of a session cart. The only status
transition is placed -> delivered; applying it twice is harmless.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional

import structlog
from pymongo.errors import PyMongoError

from cart import Cart, CartStore, total
from database import ORDERS, SERVICE_PROVIDERS, create_document, get_document, get_documents, serialize_doc, update_document
from promos import round2, to_decimal
from schemas import Order, OrderLine, OrderStats, OrderView, ProviderGroup

logger = structlog.get_logger()

STATUS_FILTERS = {"all": None, "pending": "placed", "delivered": "delivered"}


class InvalidCartLine(ValueError):
    """Cart cannot be turned into an order."""


class OrderStoreError(Exception):
    """Order storage could not be reached. Safe to retry."""

    retryable = True


class OrderSubmissionError(OrderStoreError):
    """Order was not written; the cart is left untouched."""


class OrderNotFound(LookupError):
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def validate_cart(user_id: Optional[str], cart: Cart) -> None:
    if not user_id:
        raise InvalidCartLine("A signed-in user is required to place an order")
    if not cart:
        raise InvalidCartLine("Cart is empty")
    for line in cart:
        if not line.item_id:
            raise InvalidCartLine("Cart line is missing its item id")
        if not line.name:
            raise InvalidCartLine(f"Cart line {line.item_id} is missing its name")
        if line.final_price <= 0:
            raise InvalidCartLine(f"Cart line {line.item_id} has a non-positive price")
        if line.quantity <= 0:
            raise InvalidCartLine(f"Cart line {line.item_id} has a non-positive quantity")


def build_order(user_id: str, cart: Cart, delivery_fee: Decimal, now: datetime) -> Order:
    """Freeze a validated cart into an order snapshot."""
    fee = to_decimal(delivery_fee)
    return Order(
        user_id=user_id,
        items=[
            OrderLine(
                item_id=line.item_id,
                name=line.name,
                price=line.final_price,
                quantity=line.quantity,
                provider_id=line.provider_id or None,
            )
            for line in cart
        ],
        delivery_fee=fee,
        total=round2(total(cart) + fee),
        status="placed",
        payment_status="pending",
        created_at=now,
    )


def place_order(db, cart_store: CartStore, user_id: Optional[str], delivery_fee: Decimal,
                clock: Callable[[], datetime] = _utcnow) -> str:
    """Submit the session cart as a new order and return the order id.

    Validation happens before any write. The cart is cleared only once the
    order record exists.
    """
    cart = cart_store.get_cart()
    validate_cart(user_id, cart)
    order = build_order(user_id, cart, delivery_fee, clock())

    try:
        order_id = create_document(db, ORDERS, order.model_dump(exclude={"id"}))
    except PyMongoError as exc:
        logger.error("order_submission_failed", user_id=user_id, error=str(exc))
        raise OrderSubmissionError("Could not place the order, please try again") from exc

    cart_store.clear()
    logger.info("order_placed", order_id=order_id, user_id=user_id, total=str(order.total))
    return order_id


def to_order(doc) -> Order:
    return Order.model_validate(serialize_doc(doc))


def sort_orders(orders: Iterable[Order]) -> List[Order]:
    """Placed before delivered, newest first within each group, stable on ties."""
    newest_first = sorted(orders, key=lambda o: o.created_at, reverse=True)
    return sorted(newest_first, key=lambda o: o.status != "placed")


def resolve_provider_names(db, orders: Iterable[Order]) -> Dict[str, str]:
    """Look up each distinct provider once, one request at a time."""
    provider_ids: List[str] = []
    for order in orders:
        for line in order.items:
            if line.provider_id and line.provider_id not in provider_ids:
                provider_ids.append(line.provider_id)

    names: Dict[str, str] = {}
    for provider_id in provider_ids:
        try:
            doc = get_document(db, SERVICE_PROVIDERS, provider_id)
        except PyMongoError as exc:
            logger.error("provider_lookup_failed", provider_id=provider_id, error=str(exc))
            continue
        if doc and doc.get("business_name"):
            names[provider_id] = doc["business_name"]
    return names


def group_lines(order: Order, names: Dict[str, str]) -> List[ProviderGroup]:
    groups: Dict[Optional[str], ProviderGroup] = {}
    for line in order.items:
        group = groups.get(line.provider_id)
        if group is None:
            group = groups[line.provider_id] = ProviderGroup(
                provider_id=line.provider_id,
                provider_name=names.get(line.provider_id) if line.provider_id else None,
                items=[],
            )
        group.items.append(line)
    return list(groups.values())


def _fetch(db, filter_dict, status_filter: str) -> List[Order]:
    if status_filter not in STATUS_FILTERS:
        raise ValueError(f"Unknown status filter: {status_filter}")
    status = STATUS_FILTERS[status_filter]
    if status:
        filter_dict = dict(filter_dict, status=status)
    try:
        docs = get_documents(db, ORDERS, filter_dict)
    except PyMongoError as exc:
        logger.error("order_query_failed", filter=str(filter_dict), error=str(exc))
        raise OrderStoreError("Could not load orders, please try again") from exc
    return [to_order(doc) for doc in docs]


def _decorate(db, orders: List[Order]) -> List[OrderView]:
    names = resolve_provider_names(db, orders)
    views = []
    for order in sort_orders(orders):
        involved = {line.provider_id for line in order.items if line.provider_id}
        views.append(OrderView(
            **order.model_dump(),
            provider_names={pid: name for pid, name in names.items() if pid in involved},
            groups=group_lines(order, names),
        ))
    return views


def list_orders(db, user_id: str, status_filter: str = "all") -> List[OrderView]:
    """A customer's orders, decorated with provider names and sorted for display."""
    return _decorate(db, _fetch(db, {"user_id": user_id}, status_filter))


def list_provider_orders(db, provider_id: str, status_filter: str = "all") -> List[OrderView]:
    """Orders that contain at least one line fulfilled by ``provider_id``."""
    return _decorate(db, _fetch(db, {"items.provider_id": provider_id}, status_filter))


def order_stats(orders: Iterable[Order]) -> OrderStats:
    orders = list(orders)
    return OrderStats(
        total_orders=len(orders),
        revenue=round2(sum((o.total for o in orders), Decimal("0"))),
        pending_orders=sum(1 for o in orders if o.status == "placed"),
    )


def get_order(db, order_id: str) -> Order:
    doc = get_document(db, ORDERS, order_id)
    if not doc:
        raise OrderNotFound(f"Order not found: {order_id}")
    return to_order(doc)


def mark_delivered(db, order_id: str, actor_id: Optional[str] = None) -> Order:
    """Move an order to delivered. Already-delivered orders are left as they are.

    When ``actor_id`` is given it must be the ordering customer or one of the
    order's providers.
    """
    order = get_order(db, order_id)
    if actor_id is not None:
        providers = {line.provider_id for line in order.items}
        if actor_id != order.user_id and actor_id not in providers:
            raise PermissionError("Only the customer or a fulfilling provider may update this order")
    if order.status == "delivered":
        return order

    try:
        matched = update_document(db, ORDERS, order_id, {"status": "delivered"})
    except PyMongoError as exc:
        logger.error("order_status_update_failed", order_id=order_id, error=str(exc))
        raise OrderStoreError("Could not update the order, please try again") from exc
    if not matched:
        raise OrderNotFound(f"Order not found: {order_id}")

    logger.info("order_delivered", order_id=order_id, actor_id=actor_id)
    return get_order(db, order_id)


def has_open_order(db, user_id: str, provider_id: str) -> bool:
    """True while ``user_id`` has a placed, undelivered order with ``provider_id``."""
    filter_dict = {"user_id": user_id, "status": "placed", "items.provider_id": provider_id}
    return bool(get_documents(db, ORDERS, filter_dict, limit=1))
