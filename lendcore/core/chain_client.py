"""
The chain client module captures the read-only ledger operations
the indexer relies on.
Particular implementations may access a node directly over HTTP
or serve scripted data in tests.
"""

import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

from lendcore.core.types import BlockHeader, CallResult, ContractCall, RawLog
from lendcore.utils.log import get_default_logger

_LOG = get_default_logger(__name__)
_LOG.setLevel(logging.INFO)

_ABI_DIR = os.path.join(os.path.dirname(os.path.dirname(__file__)), "abi")


def get_abi_json_file(contract_name: str):
    """
    Open the JSON file with a contract's ABI.

    :param contract_name: The contract name, e.g. "Market".
    :return: The open file object.
    """
    return open(os.path.join(_ABI_DIR, f"{contract_name}.json"), encoding="utf-8")


def load_abi(contract_name: str) -> list:
    """
    Load a contract's ABI.

    :param contract_name: The contract name, e.g. "Market".
    :return: The ABI list.
    """
    with get_abi_json_file(contract_name) as f:
        return json.load(f)["abi"]


class ChainClient(ABC):
    """
    Interface for read-only ledger operations.
    """

    @abstractmethod
    def current_height(self) -> int:
        """
        Return the current chain tip height.
        """

    @abstractmethod
    def block_header(self, height: int) -> BlockHeader:
        """
        Fetch a block header.

        :param height: The block height.
        :return: The block header with its hash and parent hash.
        """

    @abstractmethod
    def logs(self, addresses: List[str], from_height: int, to_height: int) -> List[RawLog]:
        """
        Fetch all logs emitted by a set of contracts in a height range.

        :param addresses: The contract addresses.
        :param from_height: The first height, inclusive.
        :param to_height: The last height, inclusive.
        :return: The logs, in the order returned by the node.
        """

    @abstractmethod
    def batched_read(self, calls: List[ContractCall]) -> List[CallResult]:
        """
        Execute read-only contract calls in one batch.
        A failed sub-call yields CallResult(ok=False) and does not fail the batch.

        :param calls: The calls.
        :return: One result per call, in call order.
        """

    def subscribe_to_tip(
        self, callback: Callable[[int], None], poll_interval: float = 12.0
    ) -> "TipSubscription":
        """
        Watch the chain tip and invoke a callback with every new height.
        The tip is polled on a daemon thread, so the callback runs on that thread
        and callbacks never overlap.

        :param callback: Called with the new tip height.
        :param poll_interval: Seconds between polls.
        :return: The subscription handle; calling it unsubscribes.
            Unsubscribing stops new callbacks but does not interrupt
            a callback in flight.
        """
        stopped = threading.Event()

        def _poll():
            last_height = None
            while not stopped.is_set():
                try:
                    height = self.current_height()
                    if stopped.is_set():
                        break
                    if last_height is None or height > last_height:
                        callback(height)
                        # A failed callback is retried on the next poll.
                        last_height = height
                except Exception as e:  # pylint: disable=broad-except
                    _LOG.error("Tip poll failed: %s", e)
                stopped.wait(poll_interval)

        thread = threading.Thread(target=_poll, name="tip-watcher", daemon=True)
        thread.start()
        return TipSubscription(stopped, thread)


class TipSubscription:
    """
    Handle for a tip watch started by ChainClient.subscribe_to_tip.
    """

    def __init__(self, stopped: threading.Event, thread: threading.Thread):
        self._stopped = stopped
        self.thread = thread

    def __call__(self):
        self.stop()

    def stop(self):
        """Stop new callbacks. A callback in flight runs to completion."""
        self._stopped.set()

    def join(self, timeout: Optional[float] = None):
        self.thread.join(timeout)
