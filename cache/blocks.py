"""Parsing of block numbers, hashes and block-number fields in responses."""
import re
from typing import Any, Optional

from .errors import KeyInputMalformed
from .models import BlockReference, BlockTag

MAX_BLOCK_NUMBER = 2 ** 64 - 1
HASH_LITERAL_LENGTH = 66  # "0x" + 64 hex chars

_HEX_QUANTITY = re.compile(r"^0x[0-9a-fA-F]+$")
_HASH_LITERAL = re.compile(r"^0x[0-9a-fA-F]{64}$")


def parse_hex_to_int(value: Any) -> int:
    """
    Parse a JSON-RPC quantity ("0x3e8") into an unsigned 64-bit integer.

    "earliest" parses to block 0. Every other tag, a missing prefix, a
    non-string or an out-of-range value raises KeyInputMalformed.
    """
    if not isinstance(value, str):
        raise KeyInputMalformed(f"Expected a hex string, got {type(value).__name__}")
    if value == BlockTag.EARLIEST.value:
        return 0
    if not _HEX_QUANTITY.match(value):
        raise KeyInputMalformed(f"Failed to parse hex: {value!r}")
    number = int(value, 16)
    if number > MAX_BLOCK_NUMBER:
        raise KeyInputMalformed(f"Block number out of range: {value}")
    return number


def is_hash_literal(value: Any) -> bool:
    return isinstance(value, str) and len(value) == HASH_LITERAL_LENGTH and bool(_HASH_LITERAL.match(value))


def normalize_hash(value: Any) -> str:
    """Validate a 32-byte hash literal and return it in lowercase."""
    if not is_hash_literal(value):
        raise KeyInputMalformed(f"Not a 32-byte hash: {value!r}")
    return value.lower()


def parse_block_reference(value: Any) -> BlockReference:
    """
    Classify a block parameter as a symbolic tag, a number or a hash.

    "earliest" is treated as block 0 so it follows the number rule.
    """
    if isinstance(value, str):
        if value == BlockTag.EARLIEST.value:
            return BlockReference.from_number(0)
        try:
            return BlockReference.symbolic(BlockTag(value))
        except ValueError:
            pass
        if is_hash_literal(value):
            return BlockReference.from_hash(value)
    return BlockReference.from_number(parse_hex_to_int(value))


def block_number_from_response(response: Any) -> Optional[int]:
    """
    Recover the block number a response belongs to.

    Looks at ``blockNumber`` (receipts, logs) and then ``number`` (blocks)
    on an object, or on the first element of a list. Trace trees expose
    neither, so they yield None.
    """
    item = response
    if isinstance(response, list):
        if not response:
            return None
        item = response[0]
    if not isinstance(item, dict):
        return None

    raw = item.get("blockNumber")
    if raw is None:
        raw = item.get("number")
    if raw is None or raw == "" or raw == "null":
        return None
    return parse_hex_to_int(raw)
