# https://github.com/ethereum/EIPs/blob/master/EIPS/eip-7702.md
# rlp([chain_id, nonce, max_priority_fee_per_gas, max_fee_per_gas,
#   gas_limit, destination, value, data, access_list, authorization_list,
#   signature_y_parity, signature_r, signature_s]
# )
# access_list = [[address, [storage_key, ...]], ...]

import logging
from dataclasses import dataclass
from enum import Enum

from eth_utils import keccak

from wallet_core.eip7702.authorization import (
    Authorization,
    authorization_nonce,
    sign_authorization,
)
from wallet_core.exceptions import InputException, InputExceptionCode
from wallet_core.signing.digest_signer import (
    DEFAULT_SIGNING_TIMEOUT,
    DigestSigner,
    sign_digest_with_timeout,
)
from wallet_core.signing.signature import RawSignature, normalize_y_parity
from wallet_core.typing import Address, HexStr
from wallet_core.utils import rlp_utils
from wallet_core.utils.bytes_utils import (
    bytes_to_hex,
    hex_to_bytes,
    to_address_bytes,
)

SET_CODE_TX_TYPE = b"\x04"


@dataclass(frozen=True)
class AccessListEntry:
    address: bytes
    storage_keys: tuple[bytes, ...] = ()

    @classmethod
    def from_dict(cls, entry: dict) -> "AccessListEntry":
        storage_keys = tuple(
            hex_to_bytes(key) for key in entry.get("storageKeys", []))
        for key in storage_keys:
            if len(key) != 32:
                raise InputException(
                    InputExceptionCode.InvalidAddressOrHex,
                    f"Storage key must be 32 bytes : {bytes_to_hex(key)}",
                )
        return cls(
            address=to_address_bytes(entry.get("address")),
            storage_keys=storage_keys,
        )

    def to_rlp_list(self) -> list:
        return [self.address, list(self.storage_keys)]


@dataclass(frozen=True)
class SetCodeTransaction:
    chain_id: int
    nonce: int
    max_priority_fee_per_gas: int
    max_fee_per_gas: int
    gas_limit: int
    to: bytes | None
    value: int
    data: bytes
    access_list: tuple[AccessListEntry, ...] = ()
    authorization_list: tuple[Authorization, ...] = ()

    def payload_fields(self) -> list:
        return [
            self.chain_id,
            self.nonce,
            self.max_priority_fee_per_gas,
            self.max_fee_per_gas,
            self.gas_limit,
            self.to if self.to is not None else b"",
            self.value,
            self.data,
            [entry.to_rlp_list() for entry in self.access_list],
            [auth.to_rlp_list() for auth in self.authorization_list],
        ]

    def encode_payload(self) -> bytes:
        return rlp_utils.encode(self.payload_fields())

    def signing_hash(self) -> bytes:
        return keccak(SET_CODE_TX_TYPE + self.encode_payload())

    def encode_signed(self, y_parity: int, r: int, s: int) -> bytes:
        return SET_CODE_TX_TYPE + rlp_utils.encode(
            self.payload_fields() + [y_parity, r, s])


@dataclass(frozen=True)
class SignedSetCodeTransaction:
    transaction: SetCodeTransaction
    y_parity: int
    r: int
    s: int
    raw_transaction: bytes

    @property
    def raw_transaction_hex(self) -> HexStr:
        return HexStr(bytes_to_hex(self.raw_transaction))

    @property
    def transaction_hash(self) -> HexStr:
        return HexStr(bytes_to_hex(keccak(self.raw_transaction)))


class SetCodeTxStage(Enum):
    Draft = "draft"
    AuthorizationSigned = "authorization_signed"
    PayloadAssembled = "payload_assembled"
    OuterSigned = "outer_signed"
    Finalized = "finalized"


def apply_signature(
    transaction: SetCodeTransaction, signature: RawSignature
) -> SignedSetCodeTransaction:
    y_parity = normalize_y_parity(signature.v)
    return SignedSetCodeTransaction(
        transaction=transaction,
        y_parity=y_parity,
        r=signature.r_int,
        s=signature.s_int,
        raw_transaction=transaction.encode_signed(
            y_parity, signature.r_int, signature.s_int),
    )


class SetCodeTransactionBuilder:
    """
    Draft -> AuthorizationSigned -> PayloadAssembled -> OuterSigned -> Finalized

    sender both authorizes the delegation(s) and signs the outer transaction.
    a signer failure at any step leaves the builder where it was.
    """
    signer: DigestSigner
    sender: Address
    chain_id: int
    nonce: int
    timeout: float
    stage: SetCodeTxStage
    authorizations: list[Authorization]
    transaction: SetCodeTransaction | None
    signature: RawSignature | None

    def __init__(
        self,
        signer: DigestSigner,
        sender: Address,
        chain_id: int,
        nonce: int,
        timeout: float = DEFAULT_SIGNING_TIMEOUT,
    ):
        to_address_bytes(sender)
        self.signer = signer
        self.sender = sender
        self.chain_id = chain_id
        self.nonce = nonce
        self.timeout = timeout
        self.stage = SetCodeTxStage.Draft
        self.authorizations = []
        self.transaction = None
        self.signature = None

    def _require_stage(self, *stages: SetCodeTxStage) -> None:
        if self.stage not in stages:
            raise RuntimeError(
                f"Set code transaction is {self.stage.value}, expected "
                + " or ".join(stage.value for stage in stages)
            )

    async def add_authorization(
        self, delegate_address: str, nonce: int | None = None
    ) -> Authorization:
        self._require_stage(
            SetCodeTxStage.Draft, SetCodeTxStage.AuthorizationSigned)
        if nonce is None:
            nonce = authorization_nonce(
                self.nonce + len(self.authorizations), signer_is_sender=True)
        authorization = await sign_authorization(
            self.signer,
            self.sender,
            delegate_address,
            self.chain_id,
            nonce,
            self.timeout,
        )
        self.authorizations.append(authorization)
        self.stage = SetCodeTxStage.AuthorizationSigned
        return authorization

    def assemble(
        self,
        to: str | None,
        value: int,
        data: bytes,
        gas_limit: int,
        max_fee_per_gas: int,
        max_priority_fee_per_gas: int,
        access_list: list[AccessListEntry] | None = None,
    ) -> bytes:
        self._require_stage(SetCodeTxStage.AuthorizationSigned)
        self.transaction = SetCodeTransaction(
            chain_id=self.chain_id,
            nonce=self.nonce,
            max_priority_fee_per_gas=max_priority_fee_per_gas,
            max_fee_per_gas=max_fee_per_gas,
            gas_limit=gas_limit,
            to=to_address_bytes(to) if to is not None else None,
            value=value,
            data=data,
            access_list=tuple(access_list or ()),
            authorization_list=tuple(self.authorizations),
        )
        self.stage = SetCodeTxStage.PayloadAssembled
        return self.transaction.encode_payload()

    async def sign(self) -> RawSignature:
        self._require_stage(SetCodeTxStage.PayloadAssembled)
        self.signature = await sign_digest_with_timeout(
            self.signer,
            self.transaction.signing_hash(),
            self.sender,
            self.timeout,
        )
        self.stage = SetCodeTxStage.OuterSigned
        return self.signature

    def finalize(self) -> SignedSetCodeTransaction:
        self._require_stage(SetCodeTxStage.OuterSigned)
        signed = apply_signature(self.transaction, self.signature)
        self.stage = SetCodeTxStage.Finalized
        logging.info(
            f"Finalized set code transaction {signed.transaction_hash} "
            f"from {self.sender} with nonce {self.nonce}"
        )
        return signed
