"""
Chain client accessible using Web3.HTTPProvider.
Batched reads are executed through the Multicall3 contract
so that a market snapshot is one eth_call.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from eth_abi.exceptions import DecodingError
from eth_utils.abi import collapse_if_tuple
from web3 import Web3
from web3.middleware import ExtraDataToPOAMiddleware

from lendcore.core.chain_client import ChainClient, load_abi
from lendcore.core.config import IndexerConfig
from lendcore.core.types import BlockHeader, CallResult, ContractCall, RawLog
from lendcore.utils.chain_utils import bytes_to_hex_str, normalize_address
from lendcore.utils.log import get_default_logger
from lendcore.utils.retries import with_retries

_LOG = get_default_logger(__name__)
_LOG.setLevel(logging.INFO)


# Settings for the connection retry for Web3.HTTPProvider.
# Maximum number of attempts.
_W3_CONNECTION_MAX_ATTEMPTS = 5
# Initial backoff in seconds, doubled after every attempt.
_W3_CONNECTION_BACKOFF = 1

# Multicall3 is deployed at the same address on all major chains.
MULTICALL3_ADDRESS = "0xcA11bde05977b3631167028862bE2a173976CA11"

# Contracts the indexer reads, by ABI file name.
_CONTRACT_NAMES = ["Vault", "Market", "InterestRateModel", "OracleRouter"]


class Web3HTTPChainClient(ChainClient):
    """
    Chain client accessible using Web3.HTTPProvider.
    """

    def __init__(
        self,
        node_rpc_url: str,
        inject_poa_middleware: bool = False,
        multicall_address: str = MULTICALL3_ADDRESS,
        w3: Optional[Web3] = None,
    ):
        """
        Initialize the client.

        :param node_rpc_url: Node RPC URL.
        :param inject_poa_middleware: True if the proof-of-authority extra data
            middleware is required to connect to the network.
            This option is required for Polygon PoS, BNB, and other chains.
        :param multicall_address: The Multicall3 contract address.
        :param w3: A connected Web3 object to use instead of connecting.
        """
        self.node_rpc_url = node_rpc_url
        self.w3 = w3 if w3 is not None else self._connect(node_rpc_url)

        if inject_poa_middleware:
            self.w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)

        self.abis: Dict[str, list] = {name: load_abi(name) for name in _CONTRACT_NAMES}
        # Unbound contracts are used to encode calls for any address.
        self.contracts = {
            name: self.w3.eth.contract(abi=abi) for name, abi in self.abis.items()
        }
        self.multicall = self.w3.eth.contract(
            address=self.w3.to_checksum_address(multicall_address),
            abi=load_abi("Multicall3"),
        )

    @staticmethod
    def _connect(node_rpc_url: str) -> Web3:
        def _try_connect() -> Web3:
            w3 = Web3(Web3.HTTPProvider(node_rpc_url))
            if not w3.is_connected():
                raise ConnectionError(f"is_connected() returned False for {node_rpc_url}")
            return w3

        return with_retries(
            _try_connect,
            _LOG,
            max_attempts=_W3_CONNECTION_MAX_ATTEMPTS,
            delay=_W3_CONNECTION_BACKOFF,
            description=f"Connecting to {node_rpc_url}",
        )

    @staticmethod
    def create_instance_from_config(config: IndexerConfig) -> "Web3HTTPChainClient":
        return Web3HTTPChainClient(
            config.rpc_url, inject_poa_middleware=config.inject_poa_middleware
        )

    @staticmethod
    def create_instance_from_env(
        dotenv_path: Union[str, None] = None
    ) -> "Web3HTTPChainClient":
        return Web3HTTPChainClient.create_instance_from_config(
            IndexerConfig.create_instance_from_env(dotenv_path)
        )

    def current_height(self) -> int:
        return int(self.w3.eth.block_number)

    def block_header(self, height: int) -> BlockHeader:
        block = self.w3.eth.get_block(height)
        return BlockHeader(
            number=int(block["number"]),
            hash=bytes_to_hex_str(block["hash"]),
            parent_hash=bytes_to_hex_str(block["parentHash"]),
            timestamp=int(block["timestamp"]),
        )

    def logs(self, addresses: List[str], from_height: int, to_height: int) -> List[RawLog]:
        entries = self.w3.eth.get_logs(
            {
                "address": [self.w3.to_checksum_address(a) for a in addresses],
                "fromBlock": from_height,
                "toBlock": to_height,
            }
        )
        return [
            RawLog(
                address=normalize_address(entry["address"]),
                topics=tuple(bytes_to_hex_str(t) for t in entry["topics"]),
                data=bytes_to_hex_str(entry["data"]),
                tx_hash=bytes_to_hex_str(entry["transactionHash"]),
                block_number=int(entry["blockNumber"]),
                log_index=int(entry["logIndex"]),
                block_hash=bytes_to_hex_str(entry["blockHash"]),
                tx_index=int(entry["transactionIndex"]),
            )
            for entry in entries
        ]

    def _function_abi(self, contract: str, function: str) -> dict:
        for item in self.abis[contract]:
            if item.get("type") == "function" and item["name"] == function:
                return item
        raise ValueError(f"Function {function} not found in the {contract} ABI")

    def _decode_result(self, fn_abi: dict, return_data: bytes) -> Any:
        """
        Decode the return data of a call.
        Struct outputs are returned as dicts keyed by component name.
        """
        outputs = fn_abi["outputs"]
        values = self.w3.codec.decode(
            [collapse_if_tuple(o) for o in outputs], bytes(return_data)
        )
        named = []
        for output, value in zip(outputs, values):
            if output["type"] == "tuple":
                value = {
                    c["name"]: v for c, v in zip(output["components"], value)
                }
            named.append(value)
        return named[0] if len(named) == 1 else tuple(named)

    def _normalize_args(self, args) -> list:
        # Web3 only accepts checksum addresses as call arguments.
        return [
            self.w3.to_checksum_address(a)
            if isinstance(a, str) and self.w3.is_address(a)
            else a
            for a in args
        ]

    def batched_read(self, calls: List[ContractCall]) -> List[CallResult]:
        if not calls:
            return []
        encoded = []
        for call in calls:
            encoded.append(
                (
                    self.w3.to_checksum_address(call.address),
                    True,
                    self.contracts[call.contract].encode_abi(
                        call.function, args=self._normalize_args(call.args)
                    ),
                )
            )
        responses = self.multicall.functions.aggregate3(encoded).call()

        results = []
        for call, (success, return_data) in zip(calls, responses):
            if not success or len(return_data) == 0:
                _LOG.debug("Sub-call %s.%s failed", call.contract, call.function)
                results.append(CallResult(ok=False))
                continue
            try:
                value = self._decode_result(
                    self._function_abi(call.contract, call.function), return_data
                )
            except (DecodingError, ValueError) as e:
                _LOG.debug("Could not decode %s.%s: %s", call.contract, call.function, e)
                results.append(CallResult(ok=False))
                continue
            results.append(CallResult(ok=True, value=value))
        return results
