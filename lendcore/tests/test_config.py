import os
import unittest
from unittest.mock import patch

from lendcore.core.config import IndexerConfig, MarketConfig, MarketSet
from lendcore.tests.utils import make_market


class TestIndexerConfig(unittest.TestCase):
    """Test loading and validating the indexer configuration."""

    @patch.dict(
        os.environ,
        {"RPC_URL": "http://node:8545", "DATABASE_URL": "sqlite://"},
        clear=True,
    )
    def test_defaults(self):
        config = IndexerConfig.create_instance_from_env()
        self.assertEqual(config.rpc_url, "http://node:8545")
        self.assertEqual(config.chain_id, 11155111)
        self.assertEqual(config.confirmations, 12)
        self.assertEqual(config.reorg_buffer, 20)
        self.assertEqual(config.deployment_block, 7800000)
        self.assertFalse(config.inject_poa_middleware)

    @patch.dict(
        os.environ,
        {
            "RPC_URL": "http://node:8545",
            "PG_URL": "postgresql://localhost/lendcore",
            "CHAIN_ID": "1",
            "CONFIRMATIONS": "3",
            "REORG_BUFFER": "64",
            "DEPLOYMENT_BLOCK": "100",
            "RETRY_DELAY": "0.5",
            "INJECT_POA_MIDDLEWARE": "true",
        },
        clear=True,
    )
    def test_overrides(self):
        config = IndexerConfig.create_instance_from_env()
        self.assertEqual(config.db_url, "postgresql://localhost/lendcore")
        self.assertEqual(config.chain_id, 1)
        self.assertEqual(config.confirmations, 3)
        self.assertEqual(config.reorg_buffer, 64)
        self.assertEqual(config.deployment_block, 100)
        self.assertEqual(config.retry_delay, 0.5)
        self.assertTrue(config.inject_poa_middleware)

    @patch.dict(os.environ, {"DATABASE_URL": "sqlite://"}, clear=True)
    def test_missing_rpc_url(self):
        with self.assertRaises(EnvironmentError):
            IndexerConfig.create_instance_from_env()

    def test_safe_head(self):
        config = IndexerConfig(rpc_url="x", db_url="y", confirmations=12)
        self.assertEqual(config.safe_head(1000), 988)

    def test_invalid_values(self):
        with self.assertRaises(ValueError):
            IndexerConfig(rpc_url="x", db_url="y", confirmations=-1)
        with self.assertRaises(ValueError):
            IndexerConfig(rpc_url="x", db_url="y", reorg_buffer=0)


class TestMarketSet(unittest.TestCase):
    """Test the immutable market snapshot."""

    def test_lookup_is_case_insensitive(self):
        markets = MarketSet([make_market("usdc", "0x" + "ab" * 20)])
        self.assertEqual(markets.by_address("0x" + "AB" * 20).market_id, "usdc")
        self.assertIsNone(markets.by_address("0x" + "99" * 20))

    def test_lookup_by_id(self):
        markets = MarketSet([make_market("usdc"), make_market("weth", "0x" + "66" * 20)])
        self.assertEqual(len(markets), 2)
        self.assertEqual(markets.by_id("weth").market_address, "0x" + "66" * 20)
        self.assertIsNone(markets.by_id("dai"))
        self.assertEqual([m.market_id for m in markets], ["usdc", "weth"])

    def test_empty(self):
        markets = MarketSet()
        self.assertEqual(len(markets), 0)
        self.assertEqual(markets.addresses, [])

    def test_market_config_is_frozen(self):
        market = make_market()
        self.assertIsInstance(market, MarketConfig)
        with self.assertRaises(AttributeError):
            market.market_id = "other"


if __name__ == "__main__":
    unittest.main()
