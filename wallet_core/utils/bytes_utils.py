from eth_utils import is_hex, is_hex_address, remove_0x_prefix, to_canonical_address

from wallet_core.exceptions import InputException, InputExceptionCode

UINT256_MODULUS = 2**256


def left_pad(data: bytes, length: int = 32) -> bytes:
    return data.rjust(length, b"\x00")


def right_pad(data: bytes, length: int = 32) -> bytes:
    return data.ljust(length, b"\x00")


def int_to_min_bytes(value: int) -> bytes:
    """Minimal big-endian encoding. zero encodes as b''."""
    if value < 0:
        raise ValueError(f"Negative value {value} has no unsigned encoding")
    return value.to_bytes((value.bit_length() + 7) // 8, "big")


def to_twos_complement(value: int, bits: int = 256) -> int:
    return value % (1 << bits)


def bytes_to_hex(data: bytes) -> str:
    return "0x" + data.hex()


def hex_to_bytes(value: str) -> bytes:
    if not isinstance(value, str):
        raise InputException(
            InputExceptionCode.InvalidAddressOrHex,
            f"Expected a hex string, got {type(value).__name__}",
        )
    if value in ("0x", "0X", ""):
        return b""
    hex_value = remove_0x_prefix(value)
    if not is_hex(value) or len(hex_value) % 2 != 0:
        raise InputException(
            InputExceptionCode.InvalidAddressOrHex,
            f"Invalid hex string : {value}",
        )
    return bytes.fromhex(hex_value)


def to_address_bytes(address: str) -> bytes:
    if not isinstance(address, str) or not is_hex_address(address):
        raise InputException(
            InputExceptionCode.InvalidAddressOrHex,
            f"Wrong address format : {address}",
        )
    return to_canonical_address(address)


def parse_quantity(value: object) -> int:
    """
    Parse an integer given as a native int, a decimal string or a
    0x-prefixed hex string. raises ValueError for anything else.
    """
    if isinstance(value, bool):
        raise ValueError(f"Boolean {value} is not a quantity")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"Non integral quantity {value}")
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        if text[:2].lower() == "0x":
            return int(text[2:], 16)
        if text[:3].lower() == "-0x":
            return -int(text[3:], 16)
        return int(text, 10)
    raise ValueError(f"Unsupported quantity type {type(value).__name__}")


def parse_hex_quantity(value: str | None) -> int | None:
    """JSON-RPC quantity ("0x1a"). None or empty string gives None."""
    if value is None or value == "":
        return None
    if not isinstance(value, str) or not value[:2].lower() == "0x":
        raise InputException(
            InputExceptionCode.InvalidAddressOrHex,
            f"Invalid hex quantity : {value}",
        )
    try:
        return int(value[2:] or "0", 16)
    except ValueError:
        raise InputException(
            InputExceptionCode.InvalidAddressOrHex,
            f"Invalid hex quantity : {value}",
        )
