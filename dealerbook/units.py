"""Two-tier unit handling for products.

Stock is always held in ``quantity_unit``. A product may also be sold in a
``larger_unit`` (historic name kept from the stock sheets: in practice it is
the piece unit), with ``conversion_factor`` pieces per ``quantity_unit``.
"""
import math

from dealerbook.errors import ValidationFailed


def has_second_unit(product) -> bool:
    return bool(product.larger_unit and product.conversion_factor and product.conversion_factor > 0)


def available_units(product) -> list[str]:
    units = [product.quantity_unit]
    if product.larger_unit:
        units.append(product.larger_unit)
    return [unit for unit in units if unit]


def to_base_quantity(product, quantity: float, unit: str) -> float:
    if product.larger_unit and product.conversion_factor and unit == product.larger_unit:
        return quantity / product.conversion_factor
    return quantity


def unit_price(product, unit: str, base_price: float) -> float:
    if unit == product.quantity_unit:
        return base_price
    if product.larger_unit and unit == product.larger_unit:
        factor = product.conversion_factor or 1
        return base_price / factor if factor > 0 else 0.0
    raise ValidationFailed(f"unit {unit!r} is not valid for product {product.name}")


def format_stock(product, quantity: float | None = None) -> str:
    if quantity is None:
        quantity = product.quantity
    if not has_second_unit(product):
        return f"{quantity:.2f} {product.quantity_unit}"
    whole = math.floor(quantity)
    pieces = math.floor((quantity - whole) * product.conversion_factor + 0.5)
    parts = []
    if whole > 0:
        parts.append(f"{whole} {product.quantity_unit}")
    if pieces > 0:
        parts.append(f"{pieces} {product.larger_unit}")
    if not parts:
        return f"0 {product.quantity_unit}"
    return ", ".join(parts)
