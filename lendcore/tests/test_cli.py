import unittest
from unittest.mock import MagicMock, patch

from lendcore import cli
from lendcore.core.types import RangeResult, Skipped
from lendcore.utils.error_utils import OperatorError


class TestCli(unittest.TestCase):
    """Test the operator command line."""

    def setUp(self):
        self.service = MagicMock()
        self.service.backfill.return_value = RangeResult(from_block=100, to_block=105)
        self.service.resync.return_value = RangeResult(from_block=100, to_block=105)
        self.service.reindex.return_value = RangeResult(from_block=100, to_block=105)
        patchers = [
            patch.object(cli.IndexerConfig, "create_instance_from_env"),
            patch.object(cli, "build_service", return_value=self.service),
        ]
        for p in patchers:
            p.start()
            self.addCleanup(p.stop)

    def test_backfill(self):
        self.assertEqual(cli.main(["backfill", "--from-block", "100", "--to-block", "105"]), 0)
        self.service.load_markets.assert_called_once()
        self.service.backfill.assert_called_once_with(100, 105)

    def test_backfill_latest(self):
        cli.main(["backfill", "--from-block", "100"])
        self.service.backfill.assert_called_once_with(100, "latest")

    def test_resync_with_skipped_blocks(self):
        self.service.resync.return_value = RangeResult(
            from_block=100, to_block=105, skipped=[Skipped(height=103, reason="timeout")]
        )
        self.assertEqual(cli.main(["resync"]), 2)

    def test_operator_error(self):
        self.service.resync.side_effect = OperatorError("No active markets loaded")
        self.assertEqual(cli.main(["resync"]), 1)

    def test_reindex_with_yes(self):
        cli.main(["reindex", "--yes"])
        self.service.reindex.assert_called_once_with(confirm=True)

    @patch("builtins.input", return_value="no")
    def test_reindex_declined(self, _input):
        cli.main(["reindex"])
        self.service.reindex.assert_called_once_with(confirm=False)

    def test_status(self):
        self.service.health.return_value = {"status": "ok"}
        self.service.status.return_value = {"running": False}
        self.assertEqual(cli.main(["status"]), 0)
        self.service.health.assert_called_once()
        # Markets are loaded before the health report is built.
        called = [c[0] for c in self.service.method_calls]
        self.assertLess(called.index("load_markets"), called.index("health"))

    def test_env_file(self):
        cli.main(["--env-file", ".env.test", "status"])
        cli.IndexerConfig.create_instance_from_env.assert_called_once_with(".env.test")


if __name__ == "__main__":
    unittest.main()
