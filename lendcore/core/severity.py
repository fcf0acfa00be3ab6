"""
Severity engine.

Stateless scorers that map continuous risk metrics to an ordinal level.
Aggregation takes the maximum: one red dimension makes the whole
assessment red.
"""

from enum import IntEnum
from typing import Iterable, Optional


class Severity(IntEnum):
    """
    Ordinal risk level.
    """

    NORMAL = 0
    ELEVATED = 1
    CRITICAL = 2
    EMERGENCY = 3


# Depth ratio reported when a market has no borrows.
MAX_DEPTH_RATIO = 10.0


def compute_depth_ratio(available_liquidity: float, total_borrows: float) -> float:
    """
    Liquidity depth: available liquidity per unit of outstanding borrows, capped.

    :param available_liquidity: Liquidity available to borrowers.
    :param total_borrows: Outstanding borrows.
    :return: The depth ratio in [0, MAX_DEPTH_RATIO].
    """
    if total_borrows == 0:
        return MAX_DEPTH_RATIO
    return min(available_liquidity / total_borrows, MAX_DEPTH_RATIO)


def compute_liquidity_severity(depth_ratio: float) -> Severity:
    if depth_ratio > 3.0:
        return Severity.NORMAL
    if depth_ratio >= 1.0:
        return Severity.ELEVATED
    return Severity.CRITICAL


def compute_rate_convexity_severity(
    utilization_rate: float, optimal_utilization: float
) -> Severity:
    """
    Score how close utilization is to the kink of the interest rate curve,
    where borrow rates turn steep.

    :param utilization_rate: Current utilization in [0, 1].
    :param optimal_utilization: The kink utilization in [0, 1].
    :return: The severity.
    """
    distance_to_kink = optimal_utilization - utilization_rate
    if utilization_rate >= optimal_utilization:
        return Severity.EMERGENCY
    if distance_to_kink < 0.05:
        return Severity.CRITICAL
    if distance_to_kink < 0.15:
        return Severity.ELEVATED
    return Severity.NORMAL


def compute_oracle_severity(confidence: int, is_stale: bool, risk_score: int) -> Severity:
    """
    Score the health of a market's price feed.

    :param confidence: Oracle confidence, 0-100.
    :param is_stale: True if the feed is stale.
    :param risk_score: Oracle risk score, 0-100.
    :return: The severity.
    """
    # Unusable data.
    if confidence == 0 or risk_score >= 100:
        return Severity.EMERGENCY
    if risk_score >= 80:
        return Severity.CRITICAL
    if is_stale:
        if confidence >= 80:
            return Severity.ELEVATED
        if confidence >= 40:
            return Severity.CRITICAL
        return Severity.EMERGENCY
    if confidence >= 95:
        return Severity.NORMAL
    if confidence >= 70:
        return Severity.ELEVATED
    return Severity.CRITICAL


def compute_overall_severity(*severities: Optional[int]) -> Severity:
    """
    Aggregate per-dimension severities of one market.
    Dimensions that were not measured are passed as None and ignored.
    """
    measured = [s for s in severities if s is not None]
    if not measured:
        return Severity.NORMAL
    return Severity(max(measured))


def compute_protocol_severity(market_severities: Iterable[int]) -> Severity:
    """
    Aggregate overall severities across markets.
    A protocol with no markets is normal.
    """
    return Severity(max(market_severities, default=Severity.NORMAL))
