from decimal import Decimal

import pytest

from errors import BadRequest, NotFound
from pricing import LineItem, build_line_items, price_booking, quote, round_half_up

CHEF_ID = "65a000000000000000000001"


def _dish(name, price, chef_id=CHEF_ID, available=True):
    return {"name": name, "price": price, "chef_id": chef_id, "is_available": available}


def test_reference_booking_totals():
    chef = {"_id": CHEF_ID, "price_per_hour": 500}
    dishes = {"d1": _dish("Paneer Curry", 200), "d2": _dish("Dal Tadka", 150)}

    result = price_booking(chef, dishes, [("d1", 2), ("d2", 1)])

    assert result.chef_fee == 1000
    assert result.dishes_total == 550
    assert result.platform_fee == 28
    assert result.taxes == 279
    assert result.total_amount == 1857


def test_minimum_hours_overrides_default():
    items = [LineItem("d1", "Soup", 1, 100)]
    assert quote(300, 4, items).chef_fee == 1200
    assert quote(300, None, items).chef_fee == 600


@pytest.mark.parametrize(
    "value, expected",
    [(Decimal("27.5"), 28), (Decimal("26.5"), 27), (Decimal("26.49"), 26), (Decimal("0.5"), 1), (0, 0)],
)
def test_round_half_up_whole_units(value, expected):
    assert round_half_up(value) == expected


def test_round_half_up_one_place():
    assert round_half_up(Decimal("4.25"), 1) == 4.3
    assert round_half_up(Decimal("4.24"), 1) == 4.2


def test_total_is_sum_of_rounded_parts():
    # 10 * 0.05 = 0.5 and (10 + 0) * 0.18 = 1.8, each rounded on its own
    result = quote(0, 1, [LineItem("d1", "Chai", 1, 10)])
    assert (result.platform_fee, result.taxes) == (1, 2)
    assert result.total_amount == 10 + 0 + 1 + 2


def test_line_items_snapshot_name_and_price():
    items = build_line_items(CHEF_ID, {"d1": _dish("Biryani", 350)}, [("d1", 3)])
    assert items[0].to_document() == {"dish_id": "d1", "name": "Biryani", "quantity": 3, "price": 350}
    assert items[0].subtotal == 1050


def test_empty_request_rejected():
    with pytest.raises(BadRequest):
        build_line_items(CHEF_ID, {}, [])


def test_unknown_dish_is_not_found():
    with pytest.raises(NotFound):
        build_line_items(CHEF_ID, {}, [("missing", 1)])


def test_foreign_dish_rejected():
    dishes = {"d1": _dish("Sushi", 400, chef_id="65a000000000000000000002")}
    with pytest.raises(BadRequest, match="does not belong"):
        build_line_items(CHEF_ID, dishes, [("d1", 1)])


def test_unavailable_dish_rejected():
    with pytest.raises(BadRequest, match="not available"):
        build_line_items(CHEF_ID, {"d1": _dish("Kulfi", 90, available=False)}, [("d1", 1)])


def test_zero_quantity_rejected():
    with pytest.raises(BadRequest, match="at least 1"):
        build_line_items(CHEF_ID, {"d1": _dish("Kulfi", 90)}, [("d1", 0)])
