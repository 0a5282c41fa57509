"""Tests for order placement, listing and delivery."""

from datetime import timedelta
from decimal import Decimal

import pytest
from pymongo.errors import ConnectionFailure

import orders
from conftest import NOW, make_item, make_promo
from database import ORDERS, SERVICE_PROVIDERS, create_document
from orders import (
    InvalidCartLine,
    OrderNotFound,
    OrderSubmissionError,
    build_order,
    has_open_order,
    list_orders,
    list_provider_orders,
    mark_delivered,
    order_stats,
    place_order,
    sort_orders,
)
from schemas import CartLine, Order, OrderLine


class FailingCollection:
    def insert_one(self, doc):
        raise ConnectionFailure("database unreachable")


class FailingDB:
    def __getitem__(self, name):
        return FailingCollection()


def _seed_order(db, user_id="user-1", status="placed", minutes_ago=0, providers=("provider-1",), total="30"):
    order = Order(
        user_id=user_id,
        items=[OrderLine(item_id=f"item-{p}", name="Dish", price=Decimal("5"), quantity=2, provider_id=p)
               for p in providers],
        delivery_fee=Decimal("20"),
        total=Decimal(total),
        status=status,
        created_at=NOW - timedelta(minutes=minutes_ago),
    )
    return create_document(db, ORDERS, order.model_dump(exclude={"id"}))


class TestPlaceOrder:
    def test_empty_cart_rejected_without_writes(self, db, cart_store):
        with pytest.raises(InvalidCartLine):
            place_order(db, cart_store, "user-1", Decimal("20"))
        assert db[ORDERS].count_documents({}) == 0

    def test_missing_user_rejected(self, db, cart_store):
        cart_store.add_item(make_item(), "provider-1")
        with pytest.raises(InvalidCartLine):
            place_order(db, cart_store, None, Decimal("20"))
        assert db[ORDERS].count_documents({}) == 0

    def test_non_positive_price_rejected_and_cart_kept(self, db, cart_store):
        cart_store.add_item(make_item("free", "0"), "provider-1")
        with pytest.raises(InvalidCartLine):
            place_order(db, cart_store, "user-1", Decimal("20"))
        assert db[ORDERS].count_documents({}) == 0
        assert len(cart_store.get_cart()) == 1

    def test_success_persists_snapshot_and_clears_cart(self, db, cart_store):
        cart_store.add_item(make_item("item-a", "100", promo=make_promo("20%")), "provider-1")
        cart_store.add_item(make_item("item-a", "100", promo=make_promo("20%")), "provider-1")
        cart_store.add_item(make_item("item-b", "7.50"), "provider-2")

        order_id = place_order(db, cart_store, "user-1", Decimal("20"), clock=lambda: NOW)

        assert order_id
        assert cart_store.get_cart() == []
        saved = orders.get_order(db, order_id)
        assert saved.user_id == "user-1"
        assert saved.total == Decimal("187.50")
        assert saved.status == "placed"
        assert saved.payment_status == "pending"
        assert [(line.item_id, line.price, line.quantity, line.provider_id) for line in saved.items] == [
            ("item-a", Decimal("80"), 2, "provider-1"),
            ("item-b", Decimal("7.5"), 1, "provider-2"),
        ]

    def test_remote_failure_keeps_cart(self, cart_store):
        cart_store.add_item(make_item(), "provider-1")

        with pytest.raises(OrderSubmissionError) as excinfo:
            place_order(FailingDB(), cart_store, "user-1", Decimal("20"))

        assert excinfo.value.retryable
        assert len(cart_store.get_cart()) == 1

    def test_build_order_rounds_total(self):
        line = CartLine(item_id="a", provider_id="p", name="A", quantity=3,
                        original_price=Decimal("3.333"), final_price=Decimal("3.333"))
        order = build_order("user-1", [line], Decimal("0.005"), NOW)
        assert order.total == Decimal("10.01")


class TestListOrders:
    def test_placed_first_then_newest(self, db):
        old_placed = _seed_order(db, status="placed", minutes_ago=60)
        new_delivered = _seed_order(db, status="delivered", minutes_ago=1)
        new_placed = _seed_order(db, status="placed", minutes_ago=5)
        old_delivered = _seed_order(db, status="delivered", minutes_ago=90)
        _seed_order(db, user_id="someone-else")

        result = list_orders(db, "user-1")

        assert [o.id for o in result] == [new_placed, old_placed, new_delivered, old_delivered]

    def test_equal_timestamps_keep_insertion_order(self):
        first = Order(user_id="u", items=[], total=Decimal("1"), created_at=NOW, id="first")
        second = Order(user_id="u", items=[], total=Decimal("1"), created_at=NOW, id="second")
        assert [o.id for o in sort_orders([first, second])] == ["first", "second"]

    def test_provider_names_resolved_once_per_provider(self, db, monkeypatch):
        db[SERVICE_PROVIDERS].insert_one({"_id": "provider-1", "business_name": "Mama's Kitchen"})
        db[SERVICE_PROVIDERS].insert_one({"_id": "provider-2", "business_name": "Bean There"})
        _seed_order(db, providers=("provider-1", "provider-2"))
        _seed_order(db, providers=("provider-1",), minutes_ago=3)

        lookups = []
        real_get_document = orders.get_document

        def spy(db_, collection, doc_id):
            lookups.append((collection, doc_id))
            return real_get_document(db_, collection, doc_id)

        monkeypatch.setattr(orders, "get_document", spy)

        result = list_orders(db, "user-1")

        assert sorted(lookups) == [(SERVICE_PROVIDERS, "provider-1"), (SERVICE_PROVIDERS, "provider-2")]
        assert result[0].provider_names == {"provider-1": "Mama's Kitchen", "provider-2": "Bean There"}
        assert [(g.provider_id, g.provider_name) for g in result[0].groups] == [
            ("provider-1", "Mama's Kitchen"),
            ("provider-2", "Bean There"),
        ]
        assert result[1].provider_names == {"provider-1": "Mama's Kitchen"}

    def test_status_filter(self, db):
        _seed_order(db, status="placed")
        _seed_order(db, status="delivered")

        assert [o.status for o in list_orders(db, "user-1", "pending")] == ["placed"]
        assert [o.status for o in list_orders(db, "user-1", "delivered")] == ["delivered"]
        with pytest.raises(ValueError):
            list_orders(db, "user-1", "cancelled")

    def test_provider_orders_and_stats(self, db):
        _seed_order(db, providers=("provider-1",), total="30")
        _seed_order(db, user_id="user-2", status="delivered", providers=("provider-1", "provider-2"), total="45.5")
        _seed_order(db, providers=("provider-2",), total="99")

        mine = list_provider_orders(db, "provider-1")
        stats = order_stats(mine)

        assert len(mine) == 2
        assert stats.total_orders == 2
        assert stats.revenue == Decimal("75.50")
        assert stats.pending_orders == 1


class TestMarkDelivered:
    def test_is_idempotent(self, db):
        order_id = _seed_order(db)

        assert mark_delivered(db, order_id).status == "delivered"
        assert mark_delivered(db, order_id).status == "delivered"

    def test_unknown_order(self, db):
        with pytest.raises(OrderNotFound):
            mark_delivered(db, "5f1d7f8e9b1e8a3c4d5e6f70")

    def test_customer_and_provider_may_deliver_but_strangers_may_not(self, db):
        order_id = _seed_order(db, providers=("provider-1",))

        with pytest.raises(PermissionError):
            mark_delivered(db, order_id, actor_id="intruder")
        assert mark_delivered(db, order_id, actor_id="provider-1").status == "delivered"
        assert mark_delivered(db, order_id, actor_id="user-1").status == "delivered"


def test_has_open_order_tracks_undelivered_orders_per_provider(db):
    order_id = _seed_order(db, providers=("provider-1",))

    assert has_open_order(db, "user-1", "provider-1")
    assert not has_open_order(db, "user-1", "provider-2")
    assert not has_open_order(db, "user-2", "provider-1")

    mark_delivered(db, order_id)
    assert not has_open_order(db, "user-1", "provider-1")
