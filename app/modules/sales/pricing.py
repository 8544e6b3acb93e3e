"""
Cálculo de precios de venta, sin estado ni acceso a base.

precio_con_iva = base * (1 + iva/100)
precio_final   = precio_con_iva * (1 - descuento/100)   (sólo si descuento > 0)

El precio unitario se redondea a centavos (ROUND_HALF_UP); subtotales y total
son sumas exactas de valores ya redondeados.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, NamedTuple

CENT = Decimal("0.01")
HUNDRED = Decimal("100")


class PricedLine(NamedTuple):
    unit_price: Decimal
    quantity: int
    subtotal: Decimal


def _as_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def unit_price(base_price, tax_rate, discount=0) -> Decimal:
    price = _as_decimal(base_price) * (1 + _as_decimal(tax_rate) / HUNDRED)
    discount = _as_decimal(discount or 0)
    if discount > 0:
        price = price * (1 - discount / HUNDRED)
    return price.quantize(CENT, rounding=ROUND_HALF_UP)


def price_line(base_price, tax_rate, quantity: int, discount=0) -> PricedLine:
    price = unit_price(base_price, tax_rate, discount)
    return PricedLine(unit_price=price, quantity=quantity, subtotal=price * quantity)


def sale_total(lines: Iterable[PricedLine]) -> Decimal:
    return sum((line.subtotal for line in lines), Decimal("0.00"))
