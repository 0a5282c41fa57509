"""Tests for promo pricing and promo windows."""

from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import NOW, make_promo
from promos import (
    MalformedPromoValue,
    discounted_price,
    evaluate,
    find_active_promo,
    parse_percentage,
    promo_status,
    round2,
    snapshot_of,
)
from schemas import Promo


def _promo(item_id="item-a", type="discount", value="20%", start=-1, end=1, promo_id="p1"):
    return Promo(
        id=promo_id,
        item_id=item_id,
        type=type,
        value=value,
        valid_from=NOW + timedelta(days=start),
        valid_to=NOW + timedelta(days=end),
        owner_id="provider-1",
    )


class TestParsePercentage:
    @pytest.mark.parametrize("raw, expected", [
        ("20%", Decimal("20")),
        ("20", Decimal("20")),
        (" 12.5 % ", Decimal("12.5")),
        ("0%", Decimal("0")),
        ("100%", Decimal("100")),
    ])
    def test_accepts_plain_and_percent_suffixed_values(self, raw, expected):
        assert parse_percentage(raw) == expected

    @pytest.mark.parametrize("raw", ["", "%", "abc", "20% off", "2 for 1", "NaN", "150%", "-5%"])
    def test_rejects_malformed_values(self, raw):
        with pytest.raises(MalformedPromoValue):
            parse_percentage(raw)


class TestEvaluate:
    def test_no_promo_keeps_base_price(self):
        assert evaluate(Decimal("100"), None, NOW) == (Decimal("100"), None)

    def test_active_promo_discounts_price(self):
        promo = make_promo("20%")
        price, active = evaluate(Decimal("100"), promo, NOW)
        assert price == Decimal("80.00")
        assert active == promo

    def test_expired_promo_ignored_whatever_its_value(self):
        promo = make_promo("not a number")
        price, active = evaluate(Decimal("100"), promo, NOW + timedelta(days=2))
        assert price == Decimal("100")
        assert active is None

    def test_promo_still_applies_at_exact_end(self):
        promo = make_promo("10%")
        price, active = evaluate(Decimal("50"), promo, promo.valid_to)
        assert price == Decimal("45.00")
        assert active is promo

    def test_malformed_active_promo_raises(self):
        with pytest.raises(MalformedPromoValue):
            evaluate(Decimal("100"), make_promo("lots"), NOW)

    def test_rounds_half_up_to_cents(self):
        assert discounted_price(Decimal("1.25"), "50%") == Decimal("0.63")
        assert discounted_price(Decimal("9.99"), "15%") == Decimal("8.49")

    def test_float_prices_use_their_printed_value(self):
        assert discounted_price(19.99, "10%") == Decimal("17.99")
        assert round2(2.675) == Decimal("2.68")


class TestPromoWindow:
    def test_status_follows_window(self):
        assert promo_status(_promo(start=1, end=2), NOW) == "upcoming"
        assert promo_status(_promo(start=-2, end=-1), NOW) == "expired"
        assert promo_status(_promo(), NOW) == "active"

    def test_find_active_promo_matches_item_type_and_window(self):
        promos = [
            _promo(item_id="item-b", promo_id="other-item"),
            _promo(type="bogo", value="2 for 1", promo_id="bogo"),
            _promo(start=1, end=3, promo_id="upcoming"),
            _promo(promo_id="live"),
        ]
        assert find_active_promo(promos, "item-a", NOW).id == "live"
        assert find_active_promo(promos, "item-c", NOW) is None

    def test_snapshot_captures_window_and_value(self):
        snap = snapshot_of(_promo(value="15%"))
        assert snap.promo_id == "p1"
        assert snap.percentage_value == "15%"
        assert snap.valid_to == NOW + timedelta(days=1)
