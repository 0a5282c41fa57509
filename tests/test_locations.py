"""Tests for location sharing."""

from datetime import timedelta

import pytest

from conftest import NOW
from database import CLIENT_LOCATIONS
from locations import (
    PERMISSION_DENIED,
    TIMEOUT,
    GeolocationError,
    describe_geolocation_error,
    get_location,
    share_location,
)
from schemas import LocationShare


def test_share_overwrites_previous_position(db):
    share_location(db, "client", "user-1", LocationShare(latitude=-1.29, longitude=36.82, accuracy=15), NOW)
    share_location(db, "client", "user-1", LocationShare(latitude=-1.30, longitude=36.80),
                   NOW + timedelta(minutes=5))

    record = get_location(db, "client", "user-1")

    assert db[CLIENT_LOCATIONS].count_documents({}) == 1
    assert (record.latitude, record.longitude, record.accuracy) == (-1.30, 36.80, None)
    assert record.captured_at == NOW + timedelta(minutes=5)


def test_client_and_provider_locations_are_separate(db):
    share_location(db, "service_provider", "shop-1", LocationShare(latitude=1, longitude=2), NOW)
    assert get_location(db, "client", "shop-1") is None
    assert get_location(db, "service_provider", "shop-1").point().lng == 2


def test_geolocation_error_maps_to_message(db):
    with pytest.raises(GeolocationError) as excinfo:
        share_location(db, "client", "user-1", LocationShare(error_code=PERMISSION_DENIED), NOW)

    assert "denied" in str(excinfo.value)
    assert get_location(db, "client", "user-1") is None
    assert describe_geolocation_error(TIMEOUT) != describe_geolocation_error(99)


def test_position_required_without_error_code():
    with pytest.raises(ValueError):
        LocationShare(latitude=1.0)


def test_unknown_owner_kind(db):
    with pytest.raises(ValueError):
        get_location(db, "courier", "x")
