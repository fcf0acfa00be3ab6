"""
Derived state computer.

Reads current market and position state from the chain and persists
append-only MarketSnapshot and UserPositionSnapshot rows.
These are re-derived measurements, not replays of log content,
so they are never corrected after a reorg, only superseded.
"""

import logging
from typing import Optional

from lendcore.core.chain_client import ChainClient
from lendcore.core.config import MarketConfig
from lendcore.core.models import MarketSnapshot, UserPositionSnapshot
from lendcore.core.severity import (
    Severity,
    compute_depth_ratio,
    compute_liquidity_severity,
    compute_oracle_severity,
    compute_overall_severity,
    compute_rate_convexity_severity,
)
from lendcore.core.store import SQLIndexStore, now_ms
from lendcore.core.types import CallResult, ContractCall
from lendcore.utils.chain_utils import WAD, normalize, normalize_address
from lendcore.utils.error_utils import ChainReadError
from lendcore.utils.log import get_default_logger

_LOG = get_default_logger(__name__)
_LOG.setLevel(logging.INFO)


def market_snapshot_calls(market: MarketConfig) -> list[ContractCall]:
    """
    The batched read behind a market snapshot, in result order.
    """
    return [
        ContractCall(market.vault_address, "Vault", "availableLiquidity"),
        ContractCall(market.vault_address, "Vault", "totalAssets"),
        ContractCall(market.market_address, "Market", "totalBorrows"),
        ContractCall(market.irm_address, "InterestRateModel", "getUtilizationRate"),
        ContractCall(market.irm_address, "InterestRateModel", "getDynamicBorrowRate"),
        ContractCall(market.irm_address, "InterestRateModel", "optimalUtilization"),
        ContractCall(market.market_address, "Market", "getLendingRate"),
        ContractCall(market.market_address, "Market", "globalBorrowIndex"),
        ContractCall(
            market.oracle_router_address, "OracleRouter", "evaluate", (market.loan_asset,)
        ),
    ]


def _amount(result: CallResult, decimals: int) -> float:
    # Failed sub-calls read as zero.
    return normalize(result.value, decimals) if result.ok else 0.0


def build_market_snapshot(
    market: MarketConfig, results: list[CallResult], timestamp: int
) -> MarketSnapshot:
    """
    Assemble and score a market snapshot from batched read results.

    :param market: The market.
    :param results: Results of market_snapshot_calls(market), in order.
    :param timestamp: The snapshot time in ms.
    :return: The unsaved snapshot row.
    """
    d = market.loan_asset_decimals
    available_liquidity = _amount(results[0], d)
    total_assets = _amount(results[1], d)
    total_borrows = _amount(results[2], d)
    utilization_rate = _amount(results[3], WAD)
    borrow_rate = _amount(results[4], WAD)
    optimal_utilization = _amount(results[5], WAD)
    lending_rate = _amount(results[6], WAD)
    global_borrow_index: Optional[float] = (
        normalize(results[7].value, WAD) if results[7].ok else None
    )

    # A missing feed (e.g. a market whose asset has no price source configured)
    # must not read as an emergency, so a failed oracle call reports neutral values.
    oracle = results[8]
    oracle_price = 0.0
    oracle_confidence = 100
    oracle_is_stale = False
    oracle_risk_score = 0
    if oracle.ok:
        evaluation = oracle.value
        oracle_price = normalize(evaluation["resolvedPrice"], WAD)
        oracle_confidence = round(normalize(evaluation["confidence"], WAD) * 100)
        oracle_is_stale = bool(evaluation["isStale"])
        oracle_risk_score = int(evaluation["oracleRiskScore"])

    depth_ratio = compute_depth_ratio(available_liquidity, total_borrows)
    distance_to_kink = optimal_utilization - utilization_rate

    liquidity_severity = compute_liquidity_severity(depth_ratio)
    rate_convexity_severity = compute_rate_convexity_severity(
        utilization_rate, optimal_utilization
    )
    oracle_severity = (
        compute_oracle_severity(oracle_confidence, oracle_is_stale, oracle_risk_score)
        if oracle.ok
        else Severity.NORMAL
    )
    overall_severity = compute_overall_severity(
        liquidity_severity, rate_convexity_severity, oracle_severity
    )

    return MarketSnapshot(
        market_id=market.market_id,
        total_supply=total_assets,
        total_borrows=total_borrows,
        available_liquidity=available_liquidity,
        utilization_rate=utilization_rate,
        borrow_rate=borrow_rate,
        lending_rate=lending_rate,
        optimal_utilization=optimal_utilization,
        liquidity_depth_ratio=depth_ratio,
        distance_to_kink=distance_to_kink,
        oracle_price=oracle_price,
        oracle_confidence=oracle_confidence,
        oracle_risk_score=oracle_risk_score,
        oracle_is_stale=oracle_is_stale,
        oracle_call_failed=not oracle.ok,
        global_borrow_index=global_borrow_index,
        liquidity_severity=int(liquidity_severity),
        rate_convexity_severity=int(rate_convexity_severity),
        oracle_severity=int(oracle_severity),
        overall_severity=int(overall_severity),
        timestamp=timestamp,
    )


class SnapshotComputer:
    """
    Computes and saves market and user position snapshots.
    Safe to call concurrently with block processing:
    reads are read-only against the chain and writes are append-only.
    """

    def __init__(self, chain: ChainClient, store: SQLIndexStore):
        self.chain = chain
        self.store = store

    def compute_market_snapshot(self, market: MarketConfig) -> MarketSnapshot:
        """
        Read current market state and persist a scored snapshot.

        :param market: The market.
        :return: The saved snapshot.
        """
        calls = market_snapshot_calls(market)
        results = self.chain.batched_read(calls)
        if len(results) != len(calls):
            raise ChainReadError(
                f"Batched read returned {len(results)} results for {len(calls)} calls"
            )
        snapshot = build_market_snapshot(market, results, now_ms())
        if snapshot.oracle_call_failed:
            _LOG.info(
                "Oracle call failed for market %s; oracle severity defaults to normal",
                market.market_id,
            )
        return self.store.insert_market_snapshot(snapshot)

    def compute_user_position(self, user: str, market: MarketConfig) -> UserPositionSnapshot:
        """
        Read a user's position in a market and persist a snapshot.

        :param user: The user address.
        :param market: The market.
        :return: The saved snapshot.
        """
        (result,) = self.chain.batched_read(
            [ContractCall(market.market_address, "Market", "getUserPosition", (user,))]
        )
        if not result.ok:
            raise ChainReadError(
                f"getUserPosition({user}) failed for market {market.market_id}"
            )
        position = result.value
        return self.store.insert_position_snapshot(
            UserPositionSnapshot(
                user_address=normalize_address(user),
                market_id=market.market_id,
                collateral_value=normalize(position["collateralValue"], WAD),
                total_debt=normalize(position["totalDebt"], WAD),
                health_factor=normalize(position["healthFactor"], WAD),
                borrowing_power=normalize(position["borrowingPower"], WAD),
                timestamp=now_ms(),
            )
        )
