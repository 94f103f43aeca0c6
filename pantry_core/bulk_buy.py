"""
Bulk-buy savings calculator.

Compares a regular per-unit price against a bulk pack, sizes the purchase to
at least three months of use, and flags purchases that outlast shelf life.
"""

import math
from dataclasses import dataclass

from . import api
from .config import log
from .errors import PantryError, ValidationError


@dataclass(frozen=True)
class SavingsResult:
    item: str
    optimal_quantity: int
    total_savings: float
    savings_percentage: float
    months_supply: float
    bulk_unit_price: float
    regular_unit_price: float
    exceeds_shelf_life: bool

    @property
    def worth_it(self) -> bool:
        return self.total_savings > 0 and not self.exceeds_shelf_life


def _positive(errors, field, value, label, cast=float):
    try:
        number = cast(value)
    except (TypeError, ValueError):
        errors[field] = f"Please enter a valid {label}"
        return None
    if not math.isfinite(number) or number <= 0:
        errors[field] = f"Please enter a valid {label}"
        return None
    return number


def calculate_savings(item, price_per_unit, bulk_quantity, bulk_price,
                      monthly_usage, shelf_life_months=12):
    errors = {}
    if not (item or "").strip():
        errors["item"] = "Please enter an item name"
    unit_price = _positive(errors, "pricePerUnit", price_per_unit, "price per unit")
    quantity = _positive(errors, "bulkQuantity", bulk_quantity, "bulk quantity", cast=int)
    pack_price = _positive(errors, "bulkPrice", bulk_price, "bulk price")
    usage = _positive(errors, "monthlyUsage", monthly_usage, "monthly usage")
    shelf_life = _positive(errors, "shelfLife", shelf_life_months, "shelf life", cast=int)
    if errors:
        raise ValidationError(errors)

    bulk_unit_price = pack_price / quantity
    optimal = max(quantity, math.ceil(usage * 3))
    total_savings = (unit_price - bulk_unit_price) * optimal

    return SavingsResult(
        item=item.strip(),
        optimal_quantity=optimal,
        total_savings=round(total_savings, 2),
        savings_percentage=round(total_savings / (unit_price * optimal) * 100, 2),
        months_supply=round(optimal / usage, 2),
        bulk_unit_price=round(bulk_unit_price, 4),
        regular_unit_price=unit_price,
        exceeds_shelf_life=optimal > usage * shelf_life,
    )


def save_calculation(client, token, result):
    """Best-effort upload of a calculation. Returns True when saved."""
    if not token:
        return False
    payload = {
        "item": result.item,
        "pricePerUnit": result.regular_unit_price,
        "bulkUnitPrice": result.bulk_unit_price,
        "optimalQuantity": result.optimal_quantity,
        "totalSavings": result.total_savings,
        "savingsPercentage": result.savings_percentage,
        "monthsSupply": result.months_supply,
    }
    try:
        api.save_bulk_calculation(client, token, payload)
    except PantryError as e:
        log.warning("Bulk-buy calculation not saved: %s", e)
        return False
    log.info("Bulk-buy calculation saved for %s", result.item)
    return True
