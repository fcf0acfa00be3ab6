"""
Domain event handlers.

Every handler only recomputes and inserts fresh measurements
or upserts by a natural key, so applying the same event twice is safe.
"""

import logging
from typing import Callable, Dict

from lendcore.core.config import MarketConfig
from lendcore.core.events import (
    BORROWED,
    COLLATERAL_DEPOSITED,
    COLLATERAL_WITHDRAWN,
    GLOBAL_BORROW_INDEX_UPDATED,
    LIQUIDATED,
    REPAID,
)
from lendcore.core.models import LiquidationEvent
from lendcore.core.snapshot import SnapshotComputer
from lendcore.core.store import SQLIndexStore
from lendcore.core.types import BlockHeader, DecodedEvent
from lendcore.utils.chain_utils import WAD, normalize
from lendcore.utils.log import get_default_logger

_LOG = get_default_logger(__name__)
_LOG.setLevel(logging.INFO)


class EventHandlers:
    """
    Routes decoded market events to their handlers.
    """

    def __init__(self, store: SQLIndexStore, computer: SnapshotComputer):
        self.store = store
        self.computer = computer
        self._handlers: Dict[
            str, Callable[[DecodedEvent, MarketConfig, BlockHeader], None]
        ] = {
            COLLATERAL_DEPOSITED: self.on_user_event,
            COLLATERAL_WITHDRAWN: self.on_user_event,
            BORROWED: self.on_user_event,
            REPAID: self.on_user_event,
            LIQUIDATED: self.on_liquidated,
            GLOBAL_BORROW_INDEX_UPDATED: self.on_global_index_updated,
        }

    def handle(self, event: DecodedEvent, market: MarketConfig, header: BlockHeader) -> bool:
        """
        Apply one decoded event.

        :param event: The decoded event.
        :param market: The market that emitted it.
        :param header: The header of the block containing it.
        :return: True if the event was handled, False for an ignored event.
        """
        handler = self._handlers.get(event.name)
        if handler is None:
            return False
        handler(event, market, header)
        return True

    def on_user_event(self, event: DecodedEvent, market: MarketConfig, header: BlockHeader):
        """Collateral deposits and withdrawals, borrows and repayments."""
        user = event.args["user"]
        _LOG.info(
            "%s user=%s market=%s block=%s",
            event.name,
            user[:10],
            market.market_id,
            event.block_number,
        )
        self.computer.compute_user_position(user, market)
        self.computer.compute_market_snapshot(market)

    def on_liquidated(self, event: DecodedEvent, market: MarketConfig, header: BlockHeader):
        borrower = event.args["borrower"]
        liquidator = event.args["liquidator"]
        _LOG.info(
            "Liquidated borrower=%s liquidator=%s market=%s block=%s",
            borrower[:10],
            liquidator[:10],
            market.market_id,
            event.block_number,
        )
        d = market.loan_asset_decimals
        created = self.store.upsert_liquidation(
            LiquidationEvent(
                id=LiquidationEvent.make_id(event.tx_hash, event.log_index),
                market_id=market.market_id,
                tx_hash=event.tx_hash,
                log_index=event.log_index,
                block_number=event.block_number,
                borrower=borrower,
                liquidator=liquidator,
                debt_covered=normalize(event.args["debtCovered"], d),
                # Collateral is valued in WAD.
                collateral_seized=normalize(event.args["collateralSeized"], WAD),
                bad_debt=normalize(event.args["badDebt"], d),
                timestamp=header.timestamp * 1000,
            )
        )
        if not created:
            _LOG.info(
                "Liquidation %s:%s already recorded", event.tx_hash, event.log_index
            )
        self.computer.compute_user_position(borrower, market)
        self.computer.compute_market_snapshot(market)

    def on_global_index_updated(
        self, event: DecodedEvent, market: MarketConfig, header: BlockHeader
    ):
        _LOG.info(
            "GlobalBorrowIndexUpdated market=%s block=%s",
            market.market_id,
            event.block_number,
        )
        self.computer.compute_market_snapshot(market)
