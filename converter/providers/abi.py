"""
Minimal ABI helpers for the handful of calls and events the converter uses.

Only static 32-byte types are supported; that covers every read, write and
event involved in a conversion.
"""

from __future__ import annotations

from typing import List, Sequence

from eth_utils import keccak

WORD_HEX_LEN = 64
MAX_UINT256 = 2**256 - 1


def strip_0x(value: str) -> str:
    return value[2:] if value.startswith(("0x", "0X")) else value


def encode_uint(value: int) -> str:
    if value < 0:
        raise ValueError("Value must be non-negative")
    if value > MAX_UINT256:
        raise ValueError("Value exceeds uint256")
    return hex(value)[2:].rjust(WORD_HEX_LEN, "0")


def encode_address(address: str) -> str:
    addr = strip_0x(address).lower()
    if len(addr) != 40:
        raise ValueError(f"Invalid address length: {address}")
    return addr.rjust(WORD_HEX_LEN, "0")


def function_selector(signature: str) -> str:
    selector = keccak(text=signature)[:4].hex()
    return f"0x{selector}"


def event_topic(signature: str) -> str:
    return f"0x{keccak(text=signature).hex()}"


def encode_call(signature: str, *words: str) -> str:
    """Calldata for ``signature`` with already-encoded argument words."""
    return function_selector(signature) + "".join(words)


def decode_words(data: str) -> List[int]:
    """Split ABI-encoded return data into 32-byte integer words."""
    raw = strip_0x(data or "")
    if len(raw) % WORD_HEX_LEN != 0:
        raise ValueError(f"Malformed ABI data ({len(raw)} hex chars)")
    return [int(raw[i:i + WORD_HEX_LEN], 16) for i in range(0, len(raw), WORD_HEX_LEN)]


def decode_uint(data: str, index: int = 0) -> int:
    words = decode_words(data)
    if index >= len(words):
        raise ValueError(f"ABI data has {len(words)} words, wanted index {index}")
    return words[index]


def word_to_address(word: int) -> str:
    return "0x" + format(word, "064x")[-40:]


def decode_value(abi_type: str, word: int):
    """Interpret a 32-byte word as ``abi_type``."""
    if abi_type == "address":
        return word_to_address(word)
    if abi_type == "bool":
        return bool(word)
    if abi_type.startswith("uint"):
        return word
    if abi_type.startswith("int"):
        bits = int(abi_type[3:] or 256)
        return word - (1 << bits) if word >= 1 << (bits - 1) else word
    if abi_type == "bytes32":
        return "0x" + format(word, "064x")
    raise ValueError(f"Unsupported ABI type: {abi_type}")


def decode_static(types: Sequence[str], data: str) -> List:
    words = decode_words(data)
    if len(words) < len(types):
        raise ValueError(f"Expected {len(types)} words, got {len(words)}")
    return [decode_value(abi_type, word) for abi_type, word in zip(types, words)]
