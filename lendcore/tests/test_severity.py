import unittest

from lendcore.core.severity import (
    MAX_DEPTH_RATIO,
    Severity,
    compute_depth_ratio,
    compute_liquidity_severity,
    compute_oracle_severity,
    compute_overall_severity,
    compute_protocol_severity,
    compute_rate_convexity_severity,
)


class TestLiquiditySeverity(unittest.TestCase):
    """Test the liquidity depth scorer."""

    def test_depth_ratio_thresholds(self):
        self.assertEqual(compute_liquidity_severity(5.0), Severity.NORMAL)
        self.assertEqual(compute_liquidity_severity(2.0), Severity.ELEVATED)
        self.assertEqual(compute_liquidity_severity(0.5), Severity.CRITICAL)

    def test_depth_ratio_boundaries(self):
        self.assertEqual(compute_liquidity_severity(3.0), Severity.ELEVATED)
        self.assertEqual(compute_liquidity_severity(1.0), Severity.ELEVATED)
        self.assertEqual(compute_liquidity_severity(0.99), Severity.CRITICAL)

    def test_depth_ratio_no_borrows(self):
        self.assertEqual(compute_depth_ratio(1000.0, 0.0), MAX_DEPTH_RATIO)
        self.assertEqual(compute_depth_ratio(0.0, 0.0), MAX_DEPTH_RATIO)

    def test_depth_ratio_is_capped(self):
        self.assertEqual(compute_depth_ratio(1_000_000.0, 1.0), MAX_DEPTH_RATIO)
        self.assertAlmostEqual(compute_depth_ratio(50.0, 100.0), 0.5)


class TestRateConvexitySeverity(unittest.TestCase):
    """Test the interest rate kink scorer."""

    def test_far_from_kink(self):
        self.assertEqual(compute_rate_convexity_severity(0.5, 0.8), Severity.NORMAL)

    def test_approaching_kink(self):
        self.assertEqual(compute_rate_convexity_severity(0.7, 0.8), Severity.ELEVATED)
        self.assertEqual(compute_rate_convexity_severity(0.77, 0.8), Severity.CRITICAL)

    def test_at_or_past_kink(self):
        self.assertEqual(compute_rate_convexity_severity(0.8, 0.8), Severity.EMERGENCY)
        self.assertEqual(compute_rate_convexity_severity(0.95, 0.8), Severity.EMERGENCY)


class TestOracleSeverity(unittest.TestCase):
    """Test the price feed scorer."""

    def test_zero_confidence_is_emergency(self):
        self.assertEqual(compute_oracle_severity(0, False, 0), Severity.EMERGENCY)

    def test_max_risk_score_is_emergency(self):
        self.assertEqual(compute_oracle_severity(100, False, 100), Severity.EMERGENCY)

    def test_high_risk_score(self):
        self.assertEqual(compute_oracle_severity(100, False, 85), Severity.CRITICAL)

    def test_stale_feed(self):
        self.assertEqual(compute_oracle_severity(90, True, 0), Severity.ELEVATED)
        self.assertEqual(compute_oracle_severity(50, True, 0), Severity.CRITICAL)
        self.assertEqual(compute_oracle_severity(20, True, 0), Severity.EMERGENCY)

    def test_fresh_feed(self):
        self.assertEqual(compute_oracle_severity(100, False, 0), Severity.NORMAL)
        self.assertEqual(compute_oracle_severity(80, False, 10), Severity.ELEVATED)
        self.assertEqual(compute_oracle_severity(50, False, 10), Severity.CRITICAL)


class TestAggregation(unittest.TestCase):
    """Test severity aggregation."""

    def test_overall_is_max(self):
        self.assertEqual(
            compute_overall_severity(Severity.NORMAL, Severity.CRITICAL, Severity.ELEVATED),
            Severity.CRITICAL,
        )

    def test_overall_ignores_unmeasured(self):
        self.assertEqual(
            compute_overall_severity(None, Severity.ELEVATED, None), Severity.ELEVATED
        )
        self.assertEqual(compute_overall_severity(None, None), Severity.NORMAL)

    def test_protocol_is_max_over_markets(self):
        self.assertEqual(compute_protocol_severity([0, 3, 1]), Severity.EMERGENCY)
        self.assertEqual(compute_protocol_severity([]), Severity.NORMAL)

    def test_severity_is_ordered(self):
        self.assertLess(Severity.NORMAL, Severity.ELEVATED)
        self.assertLess(Severity.CRITICAL, Severity.EMERGENCY)
        self.assertEqual(int(Severity.EMERGENCY), 3)


if __name__ == "__main__":
    unittest.main()
