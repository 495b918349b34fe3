import logging
from dataclasses import dataclass

from wallet_core.utils.bytes_utils import bytes_to_hex, left_pad

CANONICAL_SIGNATURE_LENGTH = 65


@dataclass(frozen=True)
class RawSignature:
    """Signature as handed back by a digest signer.

    r and s may be shorter than 32 bytes when leading zeros were stripped.
    v may use either the 27/28 or the 0/1 convention.
    """
    v: int
    r: bytes
    s: bytes

    @classmethod
    def from_bytes(cls, signature: bytes) -> "RawSignature":
        if len(signature) != CANONICAL_SIGNATURE_LENGTH:
            raise ValueError(
                f"Signature must be {CANONICAL_SIGNATURE_LENGTH} bytes, "
                f"got {len(signature)}"
            )
        return cls(v=signature[64], r=signature[:32], s=signature[32:64])

    @property
    def r_int(self) -> int:
        return int.from_bytes(self.r, "big")

    @property
    def s_int(self) -> int:
        return int.from_bytes(self.s, "big")


def normalize_v(v: int) -> int:
    if v in (0, 27):
        return 27
    if v in (1, 28):
        return 28
    logging.warning(f"Unexpected signature v value {v}; using lower byte {v & 0xFF}")
    return v & 0xFF


def normalize_y_parity(v: int) -> int:
    if v in (27, 28):
        return v - 27
    if v in (0, 1):
        return v
    return v & 1


def to_canonical_signature(signature: RawSignature) -> bytes:
    """r(32) || s(32) || v(1) with v in {27, 28}."""
    if len(signature.r) > 32 or len(signature.s) > 32:
        raise ValueError("Signature r and s must be at most 32 bytes")
    return (
        left_pad(signature.r)
        + left_pad(signature.s)
        + bytes([normalize_v(signature.v)])
    )


def to_canonical_signature_hex(signature: RawSignature) -> str:
    return bytes_to_hex(to_canonical_signature(signature))


def normalize_signature(signature: bytes) -> bytes:
    return to_canonical_signature(RawSignature.from_bytes(signature))
