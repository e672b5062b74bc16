"""Unit tests for the pricing policy."""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

from apps.orders.domain import OrderLine
from apps.orders.pricing import PricingPolicy, to_minor_units


def line(price, qty=1):
    return OrderLine(product_id="p", name="P", quantity=qty, unit_price=Decimal(price))


def test_single_tee_under_threshold():
    """29.99 + 8% tax + flat 9.99 shipping = 42.38."""
    totals = PricingPolicy().price([line("29.99")])
    assert totals.subtotal == Decimal("29.99")
    assert totals.shipping == Decimal("9.99")
    assert totals.tax == Decimal("2.40")
    assert totals.total == Decimal("42.38")


def test_free_shipping_strictly_above_threshold():
    policy = PricingPolicy()
    assert policy.price([line("50.00")]).shipping == Decimal("9.99")
    assert policy.price([line("50.01")]).shipping == Decimal("0")


def test_total_identity_holds_after_rounding():
    policy = PricingPolicy()
    for prices in (["0.05"], ["19.99", "0.01"], ["33.33", "33.33", "33.33"], ["12.345"]):
        totals = policy.price([line(p, qty=3) for p in prices])
        assert totals.total == totals.subtotal + totals.tax + totals.shipping
        assert totals.total == totals.total.quantize(Decimal("0.01"))


def test_rounding_is_half_even_on_total_only():
    # 0.125 * 1.08 + 9.99 = 10.125 exactly; half-even rounds to 10.12
    totals = PricingPolicy().price([line("0.125")])
    assert totals.total == Decimal("10.12")
    assert totals.tax == Decimal("0.005")


def test_deterministic_under_concurrency():
    policy = PricingPolicy()
    lines = [line("29.99", 2), line("5.25", 3)]
    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _: policy.price(list(reversed(lines))), range(32)))
    assert all(r == policy.price(lines) for r in results)


def test_policy_reads_settings(settings):
    settings.TAX_RATE = Decimal("0.10")
    settings.FREE_SHIPPING_THRESHOLD = Decimal("100")
    settings.FLAT_SHIPPING_FEE = Decimal("5.00")
    totals = PricingPolicy.from_settings().price([line("60.00")])
    assert totals.total == Decimal("71.00")


def test_minor_units():
    assert to_minor_units(Decimal("42.38")) == 4238
    assert to_minor_units(Decimal("0.10")) == 10
