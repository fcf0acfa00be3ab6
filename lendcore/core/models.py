"""SQL models for the derived protocol state."""

from typing import Optional

from sqlmodel import Field, SQLModel


class Market(SQLModel, table=True):
    """ORM model for the market table, the registry of indexed lending markets."""

    __tablename__ = "market"
    id: str = Field(primary_key=True, index=True)
    label: str = Field(default="", index=False)
    symbol: str = Field(default="", index=False)
    vault_address: str = Field(index=False)
    market_address: str = Field(unique=True, index=True)
    irm_address: str = Field(index=False)
    oracle_router_address: str = Field(index=False)
    loan_asset: str = Field(index=False)
    loan_asset_decimals: int = Field(default=18, index=False)
    is_active: bool = Field(default=True, index=True)
    created_at: int = Field(default=0, index=False)


class SyncCursor(SQLModel, table=True):
    """ORM model for the sync_cursor table, one row per chain id."""

    __tablename__ = "sync_cursor"
    chain_id: int = Field(primary_key=True)
    last_processed_block: int = Field(index=False)
    last_processed_hash: str = Field(index=False)
    # Wall clock time of the last cursor write in ms, used for staleness checks only.
    updated_at: int = Field(default=0, index=False)


class IndexedBlock(SQLModel, table=True):
    """ORM model for the indexed_block table, the recent block hashes used for reorg detection."""

    __tablename__ = "indexed_block"
    block_number: int = Field(primary_key=True)
    block_hash: str = Field(index=False)


class LiquidationEvent(SQLModel, table=True):
    """ORM model for the liquidation_event table, keyed by (tx hash, log index)."""

    __tablename__ = "liquidation_event"
    id: str = Field(primary_key=True, index=True)
    market_id: str = Field(index=True)
    tx_hash: str = Field(index=False)
    log_index: int = Field(index=False)
    block_number: int = Field(index=True)
    borrower: str = Field(index=True)
    liquidator: str = Field(index=False)
    debt_covered: float = Field(index=False)
    collateral_seized: float = Field(index=False)
    bad_debt: float = Field(index=False)
    # Block timestamp in ms.
    timestamp: int = Field(index=False)

    @staticmethod
    def make_id(tx_hash: str, log_index: int) -> str:
        return f"{tx_hash.lower()}-{int(log_index)}"


class MarketSnapshot(SQLModel, table=True):
    """ORM model for the market_snapshot table, append-only market measurements."""

    __tablename__ = "market_snapshot"
    id: Optional[int] = Field(default=None, primary_key=True)
    market_id: str = Field(index=True)
    total_supply: float = Field(index=False)
    total_borrows: float = Field(index=False)
    available_liquidity: float = Field(index=False)
    utilization_rate: float = Field(index=False)
    borrow_rate: float = Field(index=False)
    lending_rate: float = Field(index=False)
    optimal_utilization: float = Field(index=False)
    liquidity_depth_ratio: float = Field(index=False)
    distance_to_kink: float = Field(index=False)
    oracle_price: float = Field(index=False)
    oracle_confidence: int = Field(index=False)
    oracle_risk_score: int = Field(index=False)
    oracle_is_stale: bool = Field(index=False)
    oracle_call_failed: bool = Field(default=False, index=False)
    global_borrow_index: Optional[float] = Field(default=None, index=False)
    liquidity_severity: int = Field(index=False)
    rate_convexity_severity: int = Field(index=False)
    oracle_severity: int = Field(index=False)
    overall_severity: int = Field(index=False)
    timestamp: int = Field(index=True)


class UserPositionSnapshot(SQLModel, table=True):
    """ORM model for the user_position_snapshot table, append-only position measurements."""

    __tablename__ = "user_position_snapshot"
    id: Optional[int] = Field(default=None, primary_key=True)
    user_address: str = Field(index=True)
    market_id: str = Field(index=True)
    collateral_value: float = Field(index=False)
    total_debt: float = Field(index=False)
    health_factor: float = Field(index=False)
    borrowing_power: float = Field(index=False)
    timestamp: int = Field(index=True)
