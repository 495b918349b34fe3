# https://ethereum.org/en/developers/docs/data-structures-and-encoding/rlp/
# an item is either a byte string or a list of items.
# non-negative ints are encoded as their minimal big-endian bytes, so zero
# encodes as the empty string (0x80).

from typing import Union

from rlp import encode as rlp_encode

from wallet_core.utils.bytes_utils import int_to_min_bytes

RLPItem = Union[bytes, list["RLPItem"]]


def encode(item: RLPItem | int) -> bytes:
    return rlp_encode(format_for_rlp_encode(item))


def format_for_rlp_encode(item: RLPItem | int) -> RLPItem:
    """Ints to minimal bytes and tuples to lists, order preserved."""
    if isinstance(item, bool):
        raise TypeError("Cannot RLP-encode a bool, pass an int or bytes")
    if isinstance(item, int):
        return int_to_min_bytes(item)
    if isinstance(item, (bytes, bytearray)):
        return bytes(item)
    if isinstance(item, (list, tuple)):
        return [format_for_rlp_encode(element) for element in item]
    raise TypeError(f"Cannot RLP-encode type {type(item).__name__}")
