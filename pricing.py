"""
Booking pricing

Pure computation over a chef document, the dishes it offers and the requested
quantities. Amounts are whole currency units. The platform fee and taxes are
each rounded half-up on their own; the total is the plain sum of the parts.
"""

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Sequence, Tuple

from errors import BadRequest, NotFound

PLATFORM_FEE_RATE = Decimal("0.05")
TAX_RATE = Decimal("0.18")
DEFAULT_MINIMUM_BOOKING_HOURS = 2


def round_half_up(value, places: int = 0):
    exponent = Decimal(1).scaleb(-places)
    rounded = Decimal(str(value)).quantize(exponent, rounding=ROUND_HALF_UP)
    return int(rounded) if places == 0 else float(rounded)


@dataclass
class LineItem:
    dish_id: str
    name: str
    quantity: int
    price: int

    @property
    def subtotal(self) -> int:
        return self.price * self.quantity

    def to_document(self) -> Dict:
        return {"dish_id": self.dish_id, "name": self.name, "quantity": self.quantity, "price": self.price}


@dataclass
class Quote:
    line_items: List[LineItem] = field(default_factory=list)
    dishes_total: int = 0
    chef_fee: int = 0
    platform_fee: int = 0
    taxes: int = 0

    @property
    def total_amount(self) -> int:
        return self.dishes_total + self.chef_fee + self.platform_fee + self.taxes


def quote(hourly_rate: int, minimum_hours, line_items: Sequence[LineItem]) -> Quote:
    dishes_total = sum(item.subtotal for item in line_items)
    chef_fee = hourly_rate * (minimum_hours or DEFAULT_MINIMUM_BOOKING_HOURS)
    platform_fee = round_half_up(Decimal(dishes_total) * PLATFORM_FEE_RATE)
    taxes = round_half_up(Decimal(dishes_total + chef_fee) * TAX_RATE)
    return Quote(
        line_items=list(line_items),
        dishes_total=dishes_total,
        chef_fee=chef_fee,
        platform_fee=platform_fee,
        taxes=taxes,
    )


def build_line_items(
    chef_id: str, dishes_by_id: Dict[str, Dict], requested: Sequence[Tuple[str, int]]
) -> List[LineItem]:
    """Validate each requested dish against the chef and snapshot its price."""
    if not requested:
        raise BadRequest("At least one dish is required")

    items: List[LineItem] = []
    for dish_id, quantity in requested:
        dish = dishes_by_id.get(dish_id)
        if dish is None:
            raise NotFound(f"Dish not found: {dish_id}")
        if dish.get("chef_id") != chef_id:
            raise BadRequest(f"Dish {dish['name']} does not belong to this chef")
        if not dish.get("is_available", False):
            raise BadRequest(f"Dish {dish['name']} is not available")
        if quantity < 1:
            raise BadRequest(f"Quantity for dish {dish['name']} must be at least 1")
        items.append(LineItem(dish_id=dish_id, name=dish["name"], quantity=quantity, price=dish["price"]))
    return items


def price_booking(chef: Dict, dishes_by_id: Dict[str, Dict], requested: Sequence[Tuple[str, int]]) -> Quote:
    chef_id = str(chef["_id"])
    items = build_line_items(chef_id, dishes_by_id, requested)
    return quote(chef.get("price_per_hour", 0), chef.get("minimum_booking_hours"), items)
