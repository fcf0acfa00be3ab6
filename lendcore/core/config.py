"""
Indexer configuration.

The configuration is loaded once per run and passed explicitly to every
component. Markets are captured in an immutable MarketSet so that the
processor, the tip subscription and the periodic jobs never share a
mutable list.
"""

from __future__ import annotations

import logging
import os
import pprint
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple, Union

from dotenv import load_dotenv

from lendcore.utils.chain_utils import normalize_address
from lendcore.utils.error_utils import check_for_missing_env_vars
from lendcore.utils.log import get_default_logger

_LOG = get_default_logger(__name__)
_LOG.setLevel(logging.INFO)


def _get_bool_env_var(var_name: str, default: bool = False) -> bool:
    """
    Worker function to get a bool environment variable.

    :param var_name: The environment variable name.
    :param default: The default value to return.
    :return: The environment variable value.
    """
    val = os.environ.get(var_name)
    if val is None:
        return default
    return val.lower() in ["true", "1", "t", "y", "yes"]


@dataclass(frozen=True)
class IndexerConfig:
    """
    Indexer settings.

    Attributes:
        rpc_url: Node RPC URL.
        db_url: SQLAlchemy database URL.
        chain_id: The logical chain id the cursor is kept for.
        confirmations: Blocks kept behind the reported tip.
        reorg_buffer: Depth of the block hash ledger and of a reorg rollback.
        deployment_block: Protocol deployment height; nothing is replayed below it.
        retry_delay: Seconds to wait before retrying a failed block.
        tip_poll_interval: Seconds between chain tip polls.
        inject_poa_middleware: True if the chain needs the proof-of-authority
            extra data middleware.
    """

    rpc_url: str
    db_url: str
    chain_id: int = 11155111
    confirmations: int = 12
    reorg_buffer: int = 20
    deployment_block: int = 7800000
    retry_delay: float = 2.0
    tip_poll_interval: float = 12.0
    inject_poa_middleware: bool = False

    def __post_init__(self):
        if self.confirmations < 0:
            raise ValueError("confirmations must be non-negative")
        if self.reorg_buffer < 1:
            raise ValueError("reorg_buffer must be positive")
        if self.deployment_block < 0:
            raise ValueError("deployment_block must be non-negative")

    def safe_head(self, current_height: int) -> int:
        """
        The highest height the indexer processes for a given chain tip.

        :param current_height: The current chain tip.
        :return: The tip less the confirmation depth.
        """
        return current_height - self.confirmations

    @staticmethod
    def get_init_args_from_env(dotenv_path: Union[str, None] = None) -> dict:
        """
        Worker function to load the environment variables.

        :param dotenv_path: The .env file path, if any.
        :return: The dictionary of construction arguments.
        """
        # Load .env file if it exists.
        if dotenv_path:
            load_dotenv(dotenv_path, verbose=True, override=True)
        required_args = {
            "rpc_url": os.getenv("RPC_URL"),
            "db_url": os.getenv("DATABASE_URL", os.getenv("PG_URL")),
        }
        # Check for missing environment variables since these are unrecoverable.
        check_for_missing_env_vars(required_args)
        init_args = dict(required_args)
        for arg_name, var_name, cast in [
            ("chain_id", "CHAIN_ID", int),
            ("confirmations", "CONFIRMATIONS", int),
            ("reorg_buffer", "REORG_BUFFER", int),
            ("deployment_block", "DEPLOYMENT_BLOCK", int),
            ("retry_delay", "RETRY_DELAY", float),
            ("tip_poll_interval", "TIP_POLL_INTERVAL", float),
        ]:
            val = os.getenv(var_name)
            if val is not None:
                init_args[arg_name] = cast(val)
        init_args["inject_poa_middleware"] = _get_bool_env_var(
            "INJECT_POA_MIDDLEWARE"
        )
        _LOG.debug(
            "IndexerConfig.get_init_args_from_env(): init_args =\n%s",
            pprint.pformat({k: v for k, v in init_args.items() if k != "db_url"}),
        )
        return init_args

    @staticmethod
    def create_instance_from_env(
        dotenv_path: Union[str, None] = None
    ) -> "IndexerConfig":
        """
        Creates an instance initialized from environment variables.

        :param dotenv_path: Path to the .env file.
            If path is not specified, does not load the .env file.
        :return: The config created.
        """
        return IndexerConfig(**IndexerConfig.get_init_args_from_env(dotenv_path))


@dataclass(frozen=True)
class MarketConfig:
    """
    Contract addresses for one lending market.
    """

    market_id: str
    vault_address: str
    market_address: str
    irm_address: str
    oracle_router_address: str
    loan_asset: str
    loan_asset_decimals: int = 18


class MarketSet:
    """
    Immutable snapshot of the markets an indexer run operates on.
    """

    def __init__(self, markets: Iterable[MarketConfig] = ()):
        self._markets: Tuple[MarketConfig, ...] = tuple(markets)
        self._by_address = {
            normalize_address(m.market_address): m for m in self._markets
        }
        self._by_id = {m.market_id: m for m in self._markets}

    @staticmethod
    def from_rows(rows) -> "MarketSet":
        """
        Build a market set from Market table rows.

        :param rows: Market rows.
        :return: The market set.
        """
        return MarketSet(
            MarketConfig(
                market_id=row.id,
                vault_address=row.vault_address,
                market_address=row.market_address,
                irm_address=row.irm_address,
                oracle_router_address=row.oracle_router_address,
                loan_asset=row.loan_asset,
                loan_asset_decimals=row.loan_asset_decimals,
            )
            for row in rows
        )

    @property
    def addresses(self) -> list[str]:
        """Market contract addresses, in load order."""
        return [m.market_address for m in self._markets]

    def by_address(self, address: str) -> Optional[MarketConfig]:
        """
        Find the market for a contract address.
        The comparison is case-insensitive.
        """
        return self._by_address.get(normalize_address(address))

    def by_id(self, market_id: str) -> Optional[MarketConfig]:
        return self._by_id.get(market_id)

    def __iter__(self):
        return iter(self._markets)

    def __len__(self) -> int:
        return len(self._markets)

    def __repr__(self) -> str:
        return f"MarketSet({[m.market_id for m in self._markets]})"
