"""Shared pytest fixtures: in-memory MongoDB, session store, fixed clock."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import mongomock
import pytest

from cart import CartItem, CartStore
from local_store import LocalStore
from schemas import PromoSnapshot

NOW = datetime(2024, 10, 13, 12, 0, tzinfo=timezone.utc)


class MemoryStorage:
    """Object storage double keeping uploads in a dict."""

    def __init__(self):
        self.objects = {}
        self.deleted = []

    def upload(self, path, data, content_type=None):
        self.objects[path] = (data, content_type)
        return "/storage/" + path

    def download(self, path):
        if path not in self.objects:
            raise FileNotFoundError(path)
        return self.objects[path]

    def delete(self, path):
        self.deleted.append(path)
        self.objects.pop(path, None)


class Clock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


def make_promo(value="20%", days_left=1, promo_id="promo-1"):
    return PromoSnapshot(
        promo_id=promo_id,
        percentage_value=value,
        description="Lunch deal",
        valid_from=NOW - timedelta(days=1),
        valid_to=NOW + timedelta(days=days_left),
    )


def make_item(item_id="item-a", price="100", promo=None, name=None):
    return CartItem(item_id=item_id, name=name or f"Item {item_id}", price=Decimal(price), promo=promo)


@pytest.fixture
def db():
    return mongomock.MongoClient().food_ordering


@pytest.fixture
def local_store(db):
    return LocalStore(db, "session-1")


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def cart_store(local_store, clock):
    return CartStore(local_store, clock=clock)


@pytest.fixture
def storage():
    return MemoryStorage()
