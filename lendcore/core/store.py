"""
SQL store for the derived protocol state.

The block processor is the only writer of the cursor, the block hash ledger
and liquidation events. Snapshots are append-only measurements and may be
written concurrently by the periodic jobs.
"""

import logging
from typing import List, Optional, Tuple

import pandas as pd
from beeprint import pp
from sqlalchemy import delete, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, SQLModel, create_engine, select

from lendcore.core.config import MarketSet
from lendcore.core.models import (
    IndexedBlock,
    LiquidationEvent,
    Market,
    MarketSnapshot,
    SyncCursor,
    UserPositionSnapshot,
)
from lendcore.utils.chain_utils import ZERO_HASH, normalize_address
from lendcore.utils.log import get_default_logger

_LOG = get_default_logger(__name__)
_LOG.setLevel(logging.INFO)

# If the cursor has not moved for longer than this threshold, indexing is considered stale.
INDEXING_STALE_THRESHOLD_SECONDS = 300


def now_ms() -> int:
    """Current UTC wall clock time in ms."""
    return int(pd.Timestamp.now(tz="UTC").timestamp() * 1000)


class SQLIndexStore:
    """
    Store for derived state based on a SQL database.
    """

    def __init__(self, db_url: str, engine_kwargs: dict | None = None):
        if engine_kwargs is None:
            engine_kwargs = {}

        self.db_engine: Engine = create_engine(db_url, **engine_kwargs)

    def create_tables(self):
        """Create all tables that do not exist yet."""
        SQLModel.metadata.create_all(self.db_engine)

    def ping(self) -> bool:
        """Check the database connection."""
        with Session(self.db_engine) as session:
            session.execute(text("SELECT 1"))
        return True

    # ------------------------------------------------------------
    # Markets
    # ------------------------------------------------------------

    def add_market(self, market: Market) -> Market:
        """
        Insert or replace a market registry row.
        Addresses are stored lowercased to match the logs.
        """
        market.market_address = normalize_address(market.market_address)
        if not market.created_at:
            market.created_at = now_ms()
        with Session(self.db_engine) as session:
            market = session.merge(market)
            session.commit()
            session.refresh(market)
        return market

    def load_active_markets(self) -> MarketSet:
        """
        Load the active markets as an immutable snapshot.
        """
        with Session(self.db_engine) as session:
            statement = (
                select(Market)
                .where(Market.is_active == True)  # noqa: E712
                .order_by(Market.created_at, Market.id)
            )
            return MarketSet.from_rows(session.exec(statement).all())

    # ------------------------------------------------------------
    # Cursor and block hash ledger
    # ------------------------------------------------------------

    def get_cursor(self, chain_id: int) -> Optional[SyncCursor]:
        with Session(self.db_engine) as session:
            return session.get(SyncCursor, chain_id)

    def get_indexed_block_hash(self, block_number: int) -> Optional[str]:
        """
        Return the recorded hash for a height, or None if the height
        was never processed or has been pruned.
        """
        with Session(self.db_engine) as session:
            row = session.get(IndexedBlock, block_number)
            return row.block_hash if row is not None else None

    def indexed_blocks(self) -> List[IndexedBlock]:
        with Session(self.db_engine) as session:
            statement = select(IndexedBlock).order_by(IndexedBlock.block_number)
            return list(session.exec(statement).all())

    @staticmethod
    def _set_cursor(session: Session, chain_id: int, block_number: int, block_hash: str):
        cursor = session.get(SyncCursor, chain_id)
        if cursor is None:
            cursor = SyncCursor(chain_id=chain_id, last_processed_block=block_number, last_processed_hash=block_hash)
        cursor.last_processed_block = block_number
        cursor.last_processed_hash = block_hash
        cursor.updated_at = now_ms()
        session.add(cursor)

    def commit_block(
        self, chain_id: int, block_number: int, block_hash: str, reorg_buffer: int
    ):
        """
        Record a processed block in one transaction:
        advance the cursor, record the block hash,
        and prune hashes older than the reorg buffer.

        :param chain_id: The chain id of the cursor.
        :param block_number: The processed height.
        :param block_hash: The processed block hash.
        :param reorg_buffer: Number of recent block hashes to retain.
        """
        block_hash = block_hash.lower()
        with Session(self.db_engine) as session:
            self._set_cursor(session, chain_id, block_number, block_hash)
            indexed = session.get(IndexedBlock, block_number)
            if indexed is None:
                indexed = IndexedBlock(block_number=block_number, block_hash=block_hash)
            indexed.block_hash = block_hash
            session.add(indexed)
            session.execute(
                delete(IndexedBlock).where(
                    IndexedBlock.block_number < block_number - reorg_buffer
                )
            )
            session.commit()

    def rollback_from(self, chain_id: int, target: int):
        """
        Delete block-keyed state at or above the target height
        and rewind the cursor below it, in one transaction.
        Snapshots are re-derived measurements and are left in place.

        :param chain_id: The chain id of the cursor.
        :param target: The first height to be reprocessed.
        """
        _LOG.warning("Rolling back chain %s state from block %s", chain_id, target)
        with Session(self.db_engine) as session:
            session.execute(
                delete(IndexedBlock).where(IndexedBlock.block_number >= target)
            )
            session.execute(
                delete(LiquidationEvent).where(LiquidationEvent.block_number >= target)
            )
            self._set_cursor(session, chain_id, target - 1, ZERO_HASH)
            session.commit()
        _LOG.info("Rollback of chain %s from block %s complete", chain_id, target)

    def truncate_derived(self):
        """
        Delete all derived state and every cursor in one transaction.
        The market registry is preserved.
        """
        with Session(self.db_engine) as session:
            for table in [
                MarketSnapshot,
                UserPositionSnapshot,
                LiquidationEvent,
                IndexedBlock,
                SyncCursor,
            ]:
                session.execute(delete(table))
            session.commit()

    def is_stale(
        self, chain_id: int, threshold_seconds: int = INDEXING_STALE_THRESHOLD_SECONDS
    ) -> bool:
        """
        Check whether the cursor has not moved recently.
        A missing cursor counts as stale.
        """
        cursor = self.get_cursor(chain_id)
        if cursor is None:
            return True
        return (now_ms() - cursor.updated_at) / 1000 > threshold_seconds

    # ------------------------------------------------------------
    # Derived rows
    # ------------------------------------------------------------

    def upsert_liquidation(self, event: LiquidationEvent) -> bool:
        """
        Idempotently record a liquidation keyed by (tx hash, log index).

        :param event: The liquidation row.
        :return: True if a row was created, False if it already existed.
        """
        event.id = LiquidationEvent.make_id(event.tx_hash, event.log_index)
        event.tx_hash = event.tx_hash.lower()
        with Session(self.db_engine) as session:
            if session.get(LiquidationEvent, event.id) is not None:
                return False
            _LOG.debug("Recording liquidation:")
            _LOG.debug(pp(event.model_dump(), output=False))
            session.add(event)
            try:
                session.commit()
            except IntegrityError:
                # Inserted concurrently by a replay of the same log.
                session.rollback()
                return False
        return True

    def insert_market_snapshot(self, snapshot: MarketSnapshot) -> MarketSnapshot:
        with Session(self.db_engine) as session:
            session.add(snapshot)
            session.commit()
            session.refresh(snapshot)
        return snapshot

    def insert_position_snapshot(
        self, snapshot: UserPositionSnapshot
    ) -> UserPositionSnapshot:
        with Session(self.db_engine) as session:
            session.add(snapshot)
            session.commit()
            session.refresh(snapshot)
        return snapshot

    # ------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------

    def latest_market_snapshot(self, market_id: str) -> Optional[MarketSnapshot]:
        with Session(self.db_engine) as session:
            statement = (
                select(MarketSnapshot)
                .where(MarketSnapshot.market_id == market_id)
                .order_by(MarketSnapshot.timestamp.desc(), MarketSnapshot.id.desc())
            )
            return session.exec(statement).first()

    def market_snapshots_since(self, market_id: str, since_ms: int) -> List[MarketSnapshot]:
        with Session(self.db_engine) as session:
            statement = (
                select(MarketSnapshot)
                .where(
                    MarketSnapshot.market_id == market_id,
                    MarketSnapshot.timestamp >= since_ms,
                )
                .order_by(MarketSnapshot.timestamp)
            )
            return list(session.exec(statement).all())

    def position_snapshots(self, market_id: Optional[str] = None) -> List[UserPositionSnapshot]:
        with Session(self.db_engine) as session:
            statement = select(UserPositionSnapshot)
            if market_id is not None:
                statement = statement.where(UserPositionSnapshot.market_id == market_id)
            statement = statement.order_by(UserPositionSnapshot.timestamp)
            return list(session.exec(statement).all())

    def recent_position_keys(self, since_ms: int) -> List[Tuple[str, str]]:
        """
        Find (user address, market id) pairs with a position snapshot since a time.
        """
        with Session(self.db_engine) as session:
            statement = (
                select(UserPositionSnapshot.user_address, UserPositionSnapshot.market_id)
                .where(UserPositionSnapshot.timestamp >= since_ms)
                .distinct()
                .order_by(UserPositionSnapshot.user_address, UserPositionSnapshot.market_id)
            )
            return [(r[0], r[1]) for r in session.exec(statement).all()]

    def liquidations(self, market_id: Optional[str] = None) -> List[LiquidationEvent]:
        with Session(self.db_engine) as session:
            statement = select(LiquidationEvent)
            if market_id is not None:
                statement = statement.where(LiquidationEvent.market_id == market_id)
            statement = statement.order_by(
                LiquidationEvent.block_number, LiquidationEvent.log_index
            )
            return list(session.exec(statement).all())

    def liquidation_count_since(self, market_id: str, since_ms: int) -> int:
        with Session(self.db_engine) as session:
            statement = select(LiquidationEvent.id).where(
                LiquidationEvent.market_id == market_id,
                LiquidationEvent.timestamp >= since_ms,
            )
            return len(session.exec(statement).all())
