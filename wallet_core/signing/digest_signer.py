import asyncio
import logging
from abc import ABC, abstractmethod

from eth_account import Account
from eth_utils import to_checksum_address

from wallet_core.exceptions import SigningException, SigningExceptionCode
from wallet_core.signing.signature import RawSignature
from wallet_core.typing import Address

DEFAULT_SIGNING_TIMEOUT = 30


class DigestSigner(ABC):
    """Holds the key and signs 32-byte digests.

    key_handle identifies the key (the account address). implementations
    never expose key material and fail with SigningException.
    """

    @abstractmethod
    async def sign_digest(
        self, digest: bytes, key_handle: Address
    ) -> RawSignature:
        pass


class LocalAccountSigner(DigestSigner):
    """Software signer over an eth_account key, for development and tests."""

    def __init__(self, private_key: str | bytes):
        self._account = Account.from_key(private_key)

    @property
    def address(self) -> Address:
        return Address(self._account.address)

    async def sign_digest(
        self, digest: bytes, key_handle: Address
    ) -> RawSignature:
        if len(digest) != 32:
            raise ValueError(f"Digest must be 32 bytes, got {len(digest)}")
        if to_checksum_address(key_handle) != self._account.address:
            raise SigningException(
                SigningExceptionCode.KeyUnavailable,
                f"No key available for {key_handle}",
            )
        signed = self._account.unsafe_sign_hash(digest)
        return RawSignature(
            v=signed.v,
            r=signed.r.to_bytes(32, "big"),
            s=signed.s.to_bytes(32, "big"),
        )


async def sign_digest_with_timeout(
    signer: DigestSigner,
    digest: bytes,
    key_handle: Address,
    timeout: float = DEFAULT_SIGNING_TIMEOUT,
) -> RawSignature:
    try:
        return await asyncio.wait_for(
            signer.sign_digest(digest, key_handle), timeout)
    except SigningException as excp:
        logging.error(f"Signing failed for {key_handle}: {excp.message}")
        raise
    except asyncio.TimeoutError:
        logging.error(f"Signing timed out after {timeout}s for {key_handle}")
        raise SigningException(
            SigningExceptionCode.Timeout,
            f"Signer did not respond within {timeout} seconds",
        )
    except Exception as excp:
        logging.error(f"Signer error for {key_handle}: {str(excp)}")
        raise SigningException(
            SigningExceptionCode.HardwareError, str(excp)
        ) from excp
