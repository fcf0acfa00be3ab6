"""
Market event decoding.

Logs are matched to an event of the market ABI by their first topic
and decoded through the contract event API of Web3.
Logs of any other shape, such as incidental token transfers, decode to None.
"""

import logging
from typing import Dict, Optional

from eth_abi.exceptions import DecodingError
from eth_utils import event_abi_to_log_topic, is_address
from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import MismatchedABI

from lendcore.core.chain_client import load_abi
from lendcore.core.types import DecodedEvent, RawLog
from lendcore.utils.chain_utils import bytes_to_hex_str, normalize_address
from lendcore.utils.log import get_default_logger

_LOG = get_default_logger(__name__)
_LOG.setLevel(logging.INFO)

COLLATERAL_DEPOSITED = "CollateralDeposited"
COLLATERAL_WITHDRAWN = "CollateralWithdrawn"
BORROWED = "Borrowed"
REPAID = "Repaid"
LIQUIDATED = "Liquidated"
GLOBAL_BORROW_INDEX_UPDATED = "GlobalBorrowIndexUpdated"


class EventDecoder:
    """
    Decodes raw logs against the market event ABI.
    """

    def __init__(self, abi: Optional[list] = None):
        """
        :param abi: The contract ABI with the event definitions.
            Defaults to the Market ABI shipped with the package.
        """
        if abi is None:
            abi = load_abi("Market")
        # We never interact with a node here, so the Web3 object needs no provider.
        self.contract = Web3().eth.contract(abi=abi)
        self.events_by_topic: Dict[bytes, dict] = {
            bytes(event_abi_to_log_topic(item)): item
            for item in abi
            if item.get("type") == "event"
        }

    def topic_for(self, event_name: str) -> str:
        """
        Return the topic0 hex string for an event name.
        """
        for topic, item in self.events_by_topic.items():
            if item["name"] == event_name:
                return bytes_to_hex_str(topic)
        raise KeyError(event_name)

    def decode(self, log: RawLog) -> Optional[DecodedEvent]:
        """
        Decode a raw log.

        :param log: The raw log.
        :return: The decoded event, or None if the log does not match a known event.
        """
        if not log.topics:
            return None
        topics = [HexBytes(t) for t in log.topics]
        event_abi = self.events_by_topic.get(bytes(topics[0]))
        if event_abi is None:
            return None

        log_entry = {
            "address": log.address,
            "topics": topics,
            "data": HexBytes(log.data),
            "logIndex": log.log_index,
            "transactionIndex": log.tx_index,
            "transactionHash": HexBytes(log.tx_hash),
            "blockHash": HexBytes(log.block_hash) if log.block_hash else HexBytes(b""),
            "blockNumber": log.block_number,
        }
        try:
            event_data = self.contract.events[event_abi["name"]]().process_log(log_entry)
        except (MismatchedABI, DecodingError, ValueError, IndexError) as e:
            _LOG.debug(
                "Could not decode log %s:%s as %s: %s",
                log.tx_hash,
                log.log_index,
                event_abi["name"],
                e,
            )
            return None

        args = {
            name: normalize_address(value) if isinstance(value, str) and is_address(value) else value
            for name, value in dict(event_data["args"]).items()
        }
        return DecodedEvent(
            name=event_data["event"],
            args=args,
            address=normalize_address(log.address),
            tx_hash=log.tx_hash.lower(),
            block_number=log.block_number,
            log_index=log.log_index,
        )
