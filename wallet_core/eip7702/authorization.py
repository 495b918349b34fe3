# https://github.com/ethereum/EIPs/blob/master/EIPS/eip-7702.md
# authorization digest = keccak(MAGIC || rlp([chain_id, address, nonce]))
# authorization_list = [[chain_id, address, nonce, y_parity, r, s], ...]

import logging
from dataclasses import dataclass

from eth_utils import keccak, to_checksum_address

from wallet_core.signing.digest_signer import (
    DEFAULT_SIGNING_TIMEOUT,
    DigestSigner,
    sign_digest_with_timeout,
)
from wallet_core.signing.signature import normalize_y_parity
from wallet_core.typing import Address
from wallet_core.utils import rlp_utils
from wallet_core.utils.bytes_utils import (
    bytes_to_hex,
    hex_to_bytes,
    left_pad,
    to_address_bytes,
)

AUTHORIZATION_MAGIC = b"\x05"
DELEGATION_DESIGNATOR_PREFIX = bytes.fromhex("ef0100")
SIMPLE_7702_ACCOUNT_ADDRESS = Address("0xe6Cae83BdE06E4c305530e199D7217f42808555B")
ZERO_ADDRESS = Address("0x0000000000000000000000000000000000000000")


@dataclass(frozen=True)
class Authorization:
    chain_id: int
    address: bytes
    nonce: int
    y_parity: int
    r: bytes
    s: bytes

    def to_rlp_list(self) -> list:
        # r and s are rlp integers, leading zero bytes are dropped
        return [
            self.chain_id,
            self.address,
            self.nonce,
            self.y_parity,
            int.from_bytes(self.r, "big"),
            int.from_bytes(self.s, "big"),
        ]

    def to_dict(self) -> dict[str, str]:
        return {
            "chainId": hex(self.chain_id),
            "address": to_checksum_address(self.address),
            "nonce": hex(self.nonce),
            "yParity": hex(self.y_parity),
            "r": bytes_to_hex(self.r),
            "s": bytes_to_hex(self.s),
        }


def authorization_nonce(transaction_nonce: int, signer_is_sender: bool = True) -> int:
    # the outer transaction increments the sender nonce before the
    # authorization list is processed
    return transaction_nonce + 1 if signer_is_sender else transaction_nonce


def create_authorization_hash(
    chain_id: int, delegate_address: bytes, nonce: int
) -> bytes:
    return keccak(
        AUTHORIZATION_MAGIC + rlp_utils.encode([chain_id, delegate_address, nonce])
    )


async def sign_authorization(
    signer: DigestSigner,
    authority: Address,
    delegate_address: str,
    chain_id: int,
    nonce: int,
    timeout: float = DEFAULT_SIGNING_TIMEOUT,
) -> Authorization:
    delegate_address_bytes = to_address_bytes(delegate_address)
    digest = create_authorization_hash(chain_id, delegate_address_bytes, nonce)
    signature = await sign_digest_with_timeout(
        signer, digest, authority, timeout)
    logging.info(
        f"Signed authorization for {authority} delegating to "
        f"{delegate_address} on chain {chain_id} with nonce {nonce}"
    )
    return Authorization(
        chain_id=chain_id,
        address=delegate_address_bytes,
        nonce=nonce,
        y_parity=normalize_y_parity(signature.v),
        r=left_pad(signature.r),
        s=left_pad(signature.s),
    )


def parse_delegation(code: str) -> str | None:
    """Delegate address from account code 0xef0100 || address, else None.

    raises InputException when code is not a hex string.
    """
    code_bytes = hex_to_bytes(code)
    if (
        len(code_bytes) == 23 and
        code_bytes.startswith(DELEGATION_DESIGNATOR_PREFIX)
    ):
        return to_checksum_address(code_bytes[3:])
    return None
