"""
Common hex, address and fixed-point utility functions
"""

from typing import Union

from eth_utils import add_0x_prefix

# Fixed point base used by the protocol contracts for rates, indices and prices.
WAD = 18

# Sentinel block hash stored in the cursor after a rollback.
ZERO_HASH = "0x" + "00" * 32


def bytes_to_hex_str(byte_arr: Union[bytes, str]) -> str:
    """
    Convert a byte array to a lowercase 0x-prefixed hex string.
    Nodes may return hashes as bytes, HexBytes, or a string,
    depending on the client and the path used.

    :param byte_arr: The byte array to convert.
    :return: The resulting hex string.
    """
    if isinstance(byte_arr, bytes):
        hex_str = byte_arr.hex()
    else:
        hex_str = str(byte_arr)
    return add_0x_prefix(hex_str).lower()


def normalize_address(address: str) -> str:
    """
    Normalize an address for storage and comparison.
    Addresses are compared case-insensitively, so we store them lowercased.

    :param address: The address to normalize.
    :return: The lowercase 0x-prefixed address.
    """
    return add_0x_prefix(str(address)).lower()


def normalize(raw: int, decimals: int) -> float:
    """
    Convert a raw on-chain integer amount to a float.

    :param raw: The raw integer amount.
    :param decimals: The number of decimals of the amount.
    :return: The normalized amount.
    """
    return int(raw) / 10**decimals
