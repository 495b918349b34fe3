# EIP-191 version 0x45: keccak256("\x19Ethereum Signed Message:\n" + len(message) + message)

from eth_utils import is_hex_address, keccak

from wallet_core.exceptions import InputException, InputExceptionCode
from wallet_core.utils.bytes_utils import hex_to_bytes

PERSONAL_MESSAGE_PREFIX = b"\x19Ethereum Signed Message:\n"


def hash_personal_message(message: bytes) -> bytes:
    return keccak(
        PERSONAL_MESSAGE_PREFIX + str(len(message)).encode("utf-8") + message
    )


def parse_personal_sign_params(params: list) -> tuple[bytes, str]:
    """
    personal_sign is sent as [data, address] by most dapps and as
    [address, data] by some. returns (message bytes, address).
    """
    if not isinstance(params, (list, tuple)) or len(params) < 2:
        raise InputException(
            InputExceptionCode.MalformedInput, "Invalid personal_sign params")
    first, second = params[0], params[1]
    if not isinstance(first, str) or not isinstance(second, str):
        raise InputException(
            InputExceptionCode.MalformedInput, "Invalid personal_sign params")
    if is_hex_address(first) and not is_hex_address(second):
        message_hex, address = second, first
    else:
        message_hex, address = first, second
    return hex_to_bytes(message_hex), address
