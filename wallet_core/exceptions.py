from dataclasses import dataclass
from enum import Enum


class InputExceptionCode(Enum):
    MalformedInput = -32602
    InvalidAddressOrHex = -32001


@dataclass
class InputException(Exception):
    exception_code: InputExceptionCode
    message: str


class SigningExceptionCode(Enum):
    UserDeclined = 4001  # EIP-1193 user rejected request
    KeyUnavailable = 4100
    HardwareError = -32603
    Timeout = -32002


@dataclass
class SigningException(Exception):
    exception_code: SigningExceptionCode
    message: str


class NetworkExceptionCode(Enum):
    Rejected = -32000
    ConnectionFailed = -32003
    InvalidResponse = -32004
    Timeout = -32005


@dataclass
class NetworkException(Exception):
    exception_code: NetworkExceptionCode
    message: str
    rpc_error: dict | None = None
