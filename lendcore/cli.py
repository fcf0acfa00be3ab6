"""
Operator command line.

Usage::
    lendcore --env-file .env run
    lendcore backfill --from-block 7800000 --to-block latest
    lendcore resync
    lendcore reindex --yes
    lendcore status
"""

import argparse
import logging
import pprint
import sys
import time
from typing import List, Optional

from lendcore.core.config import IndexerConfig
from lendcore.core.indexer import IndexerService
from lendcore.core.jobs import (
    DAILY_AGGREGATE_INTERVAL_SECONDS,
    HEALTH_FACTOR_RECHECK_INTERVAL_SECONDS,
    SNAPSHOT_INTERVAL_SECONDS,
    PeriodicJob,
    SnapshotJobs,
)
from lendcore.core.store import SQLIndexStore
from lendcore.core.web3_chain_client import Web3HTTPChainClient
from lendcore.utils.error_utils import IndexerError, OperatorError
from lendcore.utils.log import get_default_logger

_LOG = get_default_logger(__name__)
_LOG.setLevel(logging.INFO)


def _to_block(value: str):
    if value == "latest":
        return value
    return int(value)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lendcore", description="Lending protocol ledger indexer"
    )
    parser.add_argument(
        "--env-file", default=None, help="Path to a .env file with the configuration"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    backfill = sub.add_parser("backfill", help="Process an explicit block range")
    backfill.add_argument("--from-block", type=int, required=True)
    backfill.add_argument(
        "--to-block", type=_to_block, default="latest", help="A height or 'latest'"
    )

    sub.add_parser("resync", help="Replay recent blocks to repair skipped ones")

    reindex = sub.add_parser("reindex", help="Delete derived state and replay everything")
    reindex.add_argument(
        "--yes", action="store_true", help="Skip the interactive confirmation"
    )

    sub.add_parser("status", help="Show the cursor and connectivity")
    sub.add_parser("run", help="Run the indexer and periodic jobs until interrupted")
    return parser


def build_service(config: IndexerConfig) -> IndexerService:
    store = SQLIndexStore(config.db_url)
    store.create_tables()
    chain = Web3HTTPChainClient.create_instance_from_config(config)
    return IndexerService(config, chain, store)


def _run(service: IndexerService) -> int:
    status = service.start()
    if "error" in status:
        _LOG.error("Indexer did not start: %s", status["error"])
        return 1

    jobs = SnapshotJobs(service.computer, service.store, service.markets)
    periodic = [
        PeriodicJob(SNAPSHOT_INTERVAL_SECONDS, jobs.snapshot_tick, "snapshot"),
        PeriodicJob(
            HEALTH_FACTOR_RECHECK_INTERVAL_SECONDS,
            jobs.health_factor_recheck,
            "health-factor-recheck",
        ),
        PeriodicJob(
            DAILY_AGGREGATE_INTERVAL_SECONDS, jobs.daily_aggregate, "daily-aggregate"
        ),
    ]
    for job in periodic:
        job.start()
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        _LOG.info("Shutting down")
    finally:
        for job in periodic:
            job.stop(timeout=5)
        service.stop()
    return 0


def _confirm_reindex() -> bool:
    answer = input(
        "This deletes all derived state and replays from the deployment block. "
        "Type 'yes' to continue: "
    )
    return answer.strip().lower() == "yes"


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = IndexerConfig.create_instance_from_env(args.env_file)
    service = build_service(config)

    try:
        if args.command == "run":
            return _run(service)
        if args.command == "status":
            service.load_markets()
            report = service.health()
            report.update(service.status())
            print(pprint.pformat(report))
            return 0

        service.load_markets()
        if args.command == "backfill":
            result = service.backfill(args.from_block, args.to_block)
        elif args.command == "resync":
            result = service.resync()
        else:
            confirmed = args.yes or _confirm_reindex()
            result = service.reindex(confirm=confirmed)
        print(pprint.pformat(result))
        return 0 if not result.skipped else 2
    except OperatorError as e:
        _LOG.error("%s", e)
        return 1
    except IndexerError as e:
        _LOG.error("Indexer error: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
