from foodmarket.services.cart_service import LineSnapshot
from foodmarket.services.pricing import ZERO, PricingPolicy, compute, service_fee


def _line(unit, qty=1):
    return LineSnapshot(
        item_id="x", menu_item_id=None, is_custom=False, name="x", options=None,
        quantity=qty, unit_price_cents=unit,
    )


POLICY = PricingPolicy.of(0.075, 300, 0.02, 500)


def test_worked_example():
    p = compute([_line(1000, 2)], POLICY)
    assert p.subtotal_cents == 2000
    assert p.tax_cents == 150
    assert p.delivery_fee_cents == 300
    # 2% of 2450
    assert p.service_fee_cents == 49
    assert p.total_cents == 2499


def test_service_fee_is_capped():
    p = compute([_line(100000)], POLICY)
    assert p.service_fee_cents == 500
    assert service_fee(10_000_000, POLICY) == 500


def test_empty_cart_prices_to_zero():
    assert compute([], POLICY) == ZERO
    assert ZERO.total_cents == 0


def test_tax_rounds_half_up():
    # 7.5% of 140 = 10.5
    assert compute([_line(140)], POLICY).tax_cents == 11


def test_total_is_sum_of_components():
    for lines in ([_line(1)], [_line(333, 3), _line(1999)], [_line(0, 4)], [_line(45000, 2)]):
        p = compute(lines, POLICY)
        assert p.subtotal_cents == sum(l.line_total_cents for l in lines)
        assert p.total_cents == (
            p.subtotal_cents + p.tax_cents + p.delivery_fee_cents + p.service_fee_cents
        )
        assert 0 <= p.service_fee_cents <= POLICY.service_fee_cap_cents


def test_policy_from_settings_defaults():
    policy = PricingPolicy.from_settings()
    assert policy.delivery_fee_cents == 299
    assert policy.service_fee_cap_cents == 500
    assert str(policy.tax_rate) == "0.08"
