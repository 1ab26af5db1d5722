from decimal import Decimal
from types import SimpleNamespace

from django.test import SimpleTestCase

from commission.services.calculator import (
    MAX_MONEY,
    RuleTerms,
    Tier,
    calculate,
    calculate_fallback,
    fits_digits,
    normalize_sale_amount,
    parse_tiers,
    select_tier,
)
from commission.services.errors import CommissionRuleError

TIERS = parse_tiers(
    [
        {"min_amount": "10000", "max_amount": None, "rate": "8"},
        {"min_amount": "0", "max_amount": "10000", "rate": "5"},
    ]
)


class CalculatorTests(SimpleTestCase):
    def test_percentage_splits_sale(self):
        result = calculate(RuleTerms(kind="percentage", value=Decimal("10")), Decimal("1000"))
        self.assertEqual(result.commission_amount, Decimal("100.00"))
        self.assertEqual(result.vendor_earning, Decimal("900.00"))
        self.assertIsNone(result.tier_level)

    def test_percentage_amounts_always_add_up(self):
        for amount in ("19.99", "0.01", "333.33", "1234.56", "0"):
            for rate in ("12.5", "7", "33.3333", "100"):
                result = calculate(RuleTerms(kind="percentage", value=Decimal(rate)), amount)
                self.assertEqual(result.commission_amount + result.vendor_earning, Decimal(amount))

    def test_percentage_rounds_half_up(self):
        result = calculate(RuleTerms(kind="percentage", value=Decimal("12.5")), "19.99")
        self.assertEqual(result.commission_amount, Decimal("2.50"))
        self.assertEqual(result.vendor_earning, Decimal("17.49"))

    def test_fixed_is_clamped_to_sale_amount(self):
        result = calculate(RuleTerms(kind="fixed", value=Decimal("50000")), Decimal("300"))
        self.assertEqual(result.commission_amount, Decimal("300.00"))
        self.assertEqual(result.vendor_earning, Decimal("0.00"))

    def test_fixed_below_sale_amount(self):
        result = calculate(RuleTerms(kind="fixed", value=Decimal("15")), Decimal("300"))
        self.assertEqual(result.commission_amount, Decimal("15.00"))
        self.assertEqual(result.vendor_earning, Decimal("285.00"))

    def test_tiered_uses_sales_before_this_sale(self):
        terms = RuleTerms(kind="tiered", tiers=TIERS)
        result = calculate(terms, Decimal("1000"), period_sales=Decimal("9500"))
        self.assertEqual(result.tier_level, 0)
        self.assertEqual(result.applied_rate, Decimal("5"))
        self.assertEqual(result.commission_amount, Decimal("50.00"))

    def test_tiered_upper_bound_is_exclusive(self):
        result = calculate(RuleTerms(kind="tiered", tiers=TIERS), Decimal("1000"), period_sales=Decimal("10000"))
        self.assertEqual(result.tier_level, 1)
        self.assertEqual(result.commission_amount, Decimal("80.00"))

    def test_tier_selection_is_monotonic(self):
        previous = 0
        for volume in range(0, 30000, 250):
            level = select_tier(TIERS, Decimal(volume))
            self.assertGreaterEqual(level, previous)
            previous = level

    def test_tier_gap_keeps_last_reached_tier(self):
        tiers = (
            Tier(Decimal("0"), Decimal("1000"), Decimal("5")),
            Tier(Decimal("2000"), None, Decimal("8")),
        )
        self.assertEqual(select_tier(tiers, Decimal("1500")), 0)
        self.assertEqual(select_tier(tiers, Decimal("2500")), 1)

    def test_volume_below_first_tier_uses_first_tier(self):
        tiers = (Tier(Decimal("100"), None, Decimal("5")),)
        self.assertEqual(select_tier(tiers, Decimal("50")), 0)

    def test_parse_tiers_sorts_ascending(self):
        self.assertEqual([tier.min_amount for tier in TIERS], [Decimal("0"), Decimal("10000")])
        self.assertIsNone(TIERS[1].max_amount)

    def test_fallback_uses_plan_rate(self):
        result = calculate_fallback(Decimal("12"), Decimal("250"))
        self.assertEqual(result.commission_amount, Decimal("30.00"))
        self.assertEqual(result.vendor_earning, Decimal("220.00"))

    def test_negative_sale_is_rejected(self):
        with self.assertRaises(CommissionRuleError):
            calculate(RuleTerms(kind="percentage", value=Decimal("10")), "-1")

    def test_non_finite_amounts_are_rejected(self):
        terms = RuleTerms(kind="percentage", value=Decimal("10"))
        for raw in ("NaN", Decimal("Infinity"), float("nan")):
            with self.subTest(amount=raw):
                with self.assertRaises(CommissionRuleError):
                    calculate(terms, raw)
        with self.assertRaises(CommissionRuleError):
            RuleTerms.from_rule(SimpleNamespace(type="percentage", value="NaN", tiers=[]))

    def test_sale_beyond_money_column_is_rejected(self):
        self.assertEqual(normalize_sale_amount(MAX_MONEY), MAX_MONEY)
        with self.assertRaises(CommissionRuleError):
            normalize_sale_amount("1000000000000")

    def test_fits_digits(self):
        self.assertTrue(fits_digits(Decimal("9999999999.9999"), max_digits=14, decimal_places=4))
        self.assertFalse(fits_digits(Decimal("10000000000"), max_digits=14, decimal_places=4))
        self.assertFalse(fits_digits(Decimal("0.001"), max_digits=14, decimal_places=2))
        self.assertTrue(fits_digits(Decimal("12.50000"), max_digits=7, decimal_places=4))

    def test_terms_from_rule(self):
        terms = RuleTerms.from_rule(SimpleNamespace(type="fixed", value="2.5", tiers=[]))
        self.assertEqual(terms, RuleTerms(kind="fixed", value=Decimal("2.5")))

        with self.assertRaises(CommissionRuleError):
            RuleTerms.from_rule(SimpleNamespace(type="bogus", value="1", tiers=[]))

    def test_tiered_without_tiers_is_rejected(self):
        with self.assertRaises(CommissionRuleError):
            calculate(RuleTerms(kind="tiered"), "10")
