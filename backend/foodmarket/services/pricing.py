"""
Pure pricing for carts and orders.

All amounts are integer cents. Percentages are applied with Decimal math and
rounded half-up to the cent, so a stored order can always be re-priced from
its lines and compared against the persisted totals.
"""
from dataclasses import asdict, dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable

from foodmarket.config import settings


@dataclass(frozen=True)
class PricingPolicy:
    tax_rate: Decimal
    delivery_fee_cents: int
    service_fee_rate: Decimal
    service_fee_cap_cents: int

    @classmethod
    def of(
        cls,
        tax_rate,
        delivery_fee_cents: int,
        service_fee_rate,
        service_fee_cap_cents: int,
    ) -> "PricingPolicy":
        # str() first so float config values do not leak binary noise into the rates
        return cls(
            tax_rate=Decimal(str(tax_rate)),
            delivery_fee_cents=int(delivery_fee_cents),
            service_fee_rate=Decimal(str(service_fee_rate)),
            service_fee_cap_cents=int(service_fee_cap_cents),
        )

    @classmethod
    def from_settings(cls) -> "PricingPolicy":
        return cls.of(
            settings.TAX_RATE,
            settings.DELIVERY_FEE_CENTS,
            settings.SERVICE_FEE_RATE,
            settings.SERVICE_FEE_CAP_CENTS,
        )


@dataclass(frozen=True)
class PriceBreakdown:
    subtotal_cents: int
    tax_cents: int
    delivery_fee_cents: int
    service_fee_cents: int
    total_cents: int

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


ZERO = PriceBreakdown(0, 0, 0, 0, 0)


def _round_cents(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def service_fee(base_cents: int, policy: PricingPolicy) -> int:
    """min(rate * base, cap), base being subtotal + tax + delivery fee."""
    fee = _round_cents(policy.service_fee_rate * Decimal(base_cents))
    return min(fee, policy.service_fee_cap_cents)


def compute(items: Iterable, policy: PricingPolicy) -> PriceBreakdown:
    """
    items: any objects exposing ``unit_price_cents`` and ``quantity``
    (CartItem, OrderLine, LineSnapshot).
    """
    items = list(items)
    if not items:
        return ZERO
    subtotal = sum(int(it.unit_price_cents) * int(it.quantity) for it in items)
    tax = _round_cents(policy.tax_rate * Decimal(subtotal))
    delivery = policy.delivery_fee_cents
    fee = service_fee(subtotal + tax + delivery, policy)
    return PriceBreakdown(
        subtotal_cents=subtotal,
        tax_cents=tax,
        delivery_fee_cents=delivery,
        service_fee_cents=fee,
        total_cents=subtotal + tax + delivery + fee,
    )
