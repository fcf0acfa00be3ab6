"""
lendcore test utils
"""

import logging
from typing import Callable, Dict, List, Optional

from eth_abi import encode
from sqlalchemy.pool import StaticPool
from web3 import Web3

from lendcore.core.chain_client import ChainClient
from lendcore.core.config import IndexerConfig, MarketConfig, MarketSet
from lendcore.core.models import Market
from lendcore.core.store import SQLIndexStore
from lendcore.core.types import BlockHeader, CallResult, ContractCall, RawLog
from lendcore.utils.log import get_default_logger

_LOG = get_default_logger(__name__)
_LOG.setLevel(logging.INFO)

WAD_UNIT = 10**18

DEPLOYMENT_BLOCK = 100

MARKET_ADDRESS = "0x" + "11" * 20
VAULT_ADDRESS = "0x" + "22" * 20
IRM_ADDRESS = "0x" + "33" * 20
ORACLE_ADDRESS = "0x" + "44" * 20
LOAN_ASSET = "0x" + "55" * 20
USER = "0x" + "aa" * 20
LIQUIDATOR = "0x" + "bb" * 20

EVENT_SIGNATURES = {
    "CollateralDeposited": "CollateralDeposited(address,address,uint256)",
    "CollateralWithdrawn": "CollateralWithdrawn(address,address,uint256)",
    "Borrowed": "Borrowed(address,uint256,uint256)",
    "Repaid": "Repaid(address,uint256,uint256,uint256)",
    "Liquidated": "Liquidated(address,address,uint256,uint256,uint256)",
    "GlobalBorrowIndexUpdated": "GlobalBorrowIndexUpdated(uint256,uint256,uint256)",
}


def make_config(**kwargs) -> IndexerConfig:
    args = {
        "rpc_url": "http://localhost:8545",
        "db_url": "sqlite://",
        "chain_id": 31337,
        "confirmations": 0,
        "reorg_buffer": 5,
        "deployment_block": DEPLOYMENT_BLOCK,
        "retry_delay": 0,
        "tip_poll_interval": 0.01,
    }
    args.update(kwargs)
    return IndexerConfig(**args)


def make_store() -> SQLIndexStore:
    """
    Create an in-memory store shared across threads.
    """
    store = SQLIndexStore(
        "sqlite://",
        engine_kwargs={
            "connect_args": {"check_same_thread": False},
            "poolclass": StaticPool,
        },
    )
    store.create_tables()
    return store


def make_market(market_id: str = "usdc", market_address: str = MARKET_ADDRESS) -> MarketConfig:
    return MarketConfig(
        market_id=market_id,
        vault_address=VAULT_ADDRESS,
        market_address=market_address,
        irm_address=IRM_ADDRESS,
        oracle_router_address=ORACLE_ADDRESS,
        loan_asset=LOAN_ASSET,
        loan_asset_decimals=6,
    )


def make_market_row(market_id: str = "usdc", market_address: str = MARKET_ADDRESS) -> Market:
    return Market(
        id=market_id,
        label=market_id.upper(),
        symbol=market_id.upper(),
        vault_address=VAULT_ADDRESS,
        market_address=market_address,
        irm_address=IRM_ADDRESS,
        oracle_router_address=ORACLE_ADDRESS,
        loan_asset=LOAN_ASSET,
        loan_asset_decimals=6,
    )


def make_markets() -> MarketSet:
    return MarketSet([make_market()])


def block_hash(height: int, fork: str = "a") -> str:
    """
    A deterministic block hash for a height on a given fork.
    """
    return "0x" + fork + f"{height:063x}"


def _address_topic(address: str) -> str:
    return "0x" + "00" * 12 + address[2:].lower()


def make_log(
    event_name: str,
    indexed: List[str],
    data_types: List[str],
    data_values: list,
    block_number: int,
    log_index: int,
    tx_hash: str = "0x" + "ab" * 32,
    address: str = MARKET_ADDRESS,
) -> RawLog:
    """
    Build a raw market log the way a node would return it.

    :param event_name: The event name.
    :param indexed: The indexed address arguments, in order.
    :param data_types: The ABI types of the non-indexed arguments.
    :param data_values: The non-indexed argument values.
    :return: The raw log.
    """
    topic0 = Web3.keccak(text=EVENT_SIGNATURES[event_name]).hex()
    if not topic0.startswith("0x"):
        topic0 = "0x" + topic0
    return RawLog(
        address=address,
        topics=tuple([topic0] + [_address_topic(a) for a in indexed]),
        data="0x" + encode(data_types, data_values).hex(),
        tx_hash=tx_hash,
        block_number=block_number,
        log_index=log_index,
    )


def make_borrowed_log(block_number: int, log_index: int, user: str = USER, **kwargs) -> RawLog:
    return make_log(
        "Borrowed",
        [user],
        ["uint256", "uint256"],
        [100 * 10**6, 100 * 10**6],
        block_number,
        log_index,
        **kwargs,
    )


def make_liquidated_log(
    block_number: int, log_index: int, borrower: str = USER, **kwargs
) -> RawLog:
    return make_log(
        "Liquidated",
        [borrower, LIQUIDATOR],
        ["uint256", "uint256", "uint256"],
        [500 * 10**6, 2 * WAD_UNIT, 10**6],
        block_number,
        log_index,
        **kwargs,
    )


def default_reader(call: ContractCall) -> CallResult:
    """
    Serve plausible values for every read the indexer makes.
    """
    values = {
        "availableLiquidity": 500_000 * 10**6,
        "totalAssets": 600_000 * 10**6,
        "totalBorrows": 100_000 * 10**6,
        "getUtilizationRate": WAD_UNIT // 2,
        "getDynamicBorrowRate": WAD_UNIT // 20,
        "optimalUtilization": WAD_UNIT * 8 // 10,
        "getLendingRate": WAD_UNIT // 40,
        "globalBorrowIndex": WAD_UNIT,
        "evaluate": {
            "resolvedPrice": WAD_UNIT,
            "confidence": WAD_UNIT,
            "sourceUsed": 0,
            "oracleRiskScore": 0,
            "isStale": False,
            "deviation": 0,
        },
        "getUserPosition": {
            "collateralValue": 2000 * WAD_UNIT,
            "totalDebt": 1000 * WAD_UNIT,
            "healthFactor": 2 * WAD_UNIT,
            "borrowingPower": 600 * WAD_UNIT,
        },
    }
    if call.function not in values:
        return CallResult(ok=False)
    return CallResult(ok=True, value=values[call.function])


class FakeChainClient(ChainClient):
    """
    An in-process chain serving scripted headers, logs and reads.
    """

    def __init__(self, tip: int, reader: Optional[Callable[[ContractCall], CallResult]] = None):
        self.tip = tip
        self.forks: Dict[int, str] = {}
        self.block_logs: Dict[int, List[RawLog]] = {}
        self.reader = reader if reader is not None else default_reader
        # Heights mapped to the number of header fetches that should still fail.
        self.header_failures: Dict[int, int] = {}
        self.header_requests: List[int] = []
        self.batched_calls: List[List[ContractCall]] = []

    def fork_from(self, height: int, fork: str):
        """Replace every block at or above a height with one from another fork."""
        for h in range(height, self.tip + 1):
            self.forks[h] = fork

    def _hash(self, height: int) -> str:
        return block_hash(height, self.forks.get(height, "a"))

    def current_height(self) -> int:
        return self.tip

    def block_header(self, height: int) -> BlockHeader:
        self.header_requests.append(height)
        remaining = self.header_failures.get(height, 0)
        if remaining > 0:
            self.header_failures[height] = remaining - 1
            raise ConnectionError(f"header {height} unavailable")
        return BlockHeader(
            number=height,
            hash=self._hash(height),
            parent_hash=self._hash(height - 1),
            timestamp=1_700_000_000 + height,
        )

    def logs(self, addresses: List[str], from_height: int, to_height: int) -> List[RawLog]:
        wanted = {a.lower() for a in addresses}
        return [
            log
            for h in range(from_height, to_height + 1)
            for log in self.block_logs.get(h, [])
            if log.address.lower() in wanted
        ]

    def batched_read(self, calls: List[ContractCall]) -> List[CallResult]:
        self.batched_calls.append(list(calls))
        return [self.reader(call) for call in calls]
