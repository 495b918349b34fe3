import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from eth_utils import to_checksum_address

from wallet_core.eip712.typed_data import compute_digest
from wallet_core.eip7702.authorization import (
    SIMPLE_7702_ACCOUNT_ADDRESS,
    ZERO_ADDRESS,
    parse_delegation,
)
from wallet_core.eip7702.transaction import (
    AccessListEntry,
    SetCodeTransactionBuilder,
    SignedSetCodeTransaction,
)
from wallet_core.exceptions import (
    InputException,
    InputExceptionCode,
    NetworkException,
    SigningException,
    SigningExceptionCode,
)
from wallet_core.gas.gas_manager import (
    DEFAULT_MAX_FEE_CAP_GWEI,
    GasEstimate,
    GasManager,
    GasPrices,
    apply_eip7702_overhead,
)
from wallet_core.signing.digest_signer import (
    DEFAULT_SIGNING_TIMEOUT,
    DigestSigner,
    sign_digest_with_timeout,
)
from wallet_core.signing.personal_message import (
    hash_personal_message,
    parse_personal_sign_params,
)
from wallet_core.signing.signature import to_canonical_signature_hex
from wallet_core.typing import Address, HexStr, TransactionHash
from wallet_core.utils.bytes_utils import (
    hex_to_bytes,
    parse_hex_quantity,
    to_address_bytes,
)
from wallet_core.utils.eth_client_utils import (
    DEFAULT_RPC_TIMEOUT,
    eth_call,
    gather_or_raise,
    get_code,
    get_transaction_count,
    get_transaction_receipt,
    send_raw_transaction,
)

DEFAULT_RECEIPT_POLL_INTERVAL = 2


@dataclass
class AuthorizationStatus:
    chain_id: int
    address: Address
    has_authorization: bool
    authorized_address: str | None
    error: str | None


class WalletManager:
    ethereum_node_url: str
    chain_id: int
    signer: DigestSigner | None
    address: Address | None
    rpc_timeout: float
    signing_timeout: float
    strict_typed_data: bool
    gas_manager: GasManager

    def __init__(
        self,
        ethereum_node_url: str,
        chain_id: int,
        signer: DigestSigner | None = None,
        address: Address | None = None,
        rpc_timeout: float = DEFAULT_RPC_TIMEOUT,
        signing_timeout: float = DEFAULT_SIGNING_TIMEOUT,
        max_fee_cap_gwei: int = DEFAULT_MAX_FEE_CAP_GWEI,
        strict_typed_data: bool = False,
    ):
        self.ethereum_node_url = ethereum_node_url
        self.chain_id = chain_id
        self.signer = signer
        self.address = (
            Address(to_checksum_address(to_address_bytes(address)))
            if address is not None else None
        )
        self.rpc_timeout = rpc_timeout
        self.signing_timeout = signing_timeout
        self.strict_typed_data = strict_typed_data
        self.gas_manager = GasManager(
            ethereum_node_url, max_fee_cap_gwei, rpc_timeout)

    def _require_signer(self) -> None:
        if self.signer is None or self.address is None:
            raise SigningException(
                SigningExceptionCode.KeyUnavailable,
                "Wallet has no signing key",
            )

    def _check_own_address(self, address: str) -> None:
        self._require_signer()
        if to_address_bytes(address) != to_address_bytes(self.address):
            raise SigningException(
                SigningExceptionCode.KeyUnavailable,
                f"Unknown address {address}",
            )

    async def personal_sign(self, params: list) -> HexStr:
        message, address = parse_personal_sign_params(params)
        self._check_own_address(address)
        digest = hash_personal_message(message)
        signature = await sign_digest_with_timeout(
            self.signer, digest, self.address, self.signing_timeout)
        return HexStr(to_canonical_signature_hex(signature))

    async def sign_typed_data(self, params: list) -> HexStr:
        """eth_signTypedData_v4 params: [address, typed data json]."""
        if not isinstance(params, (list, tuple)) or len(params) < 2:
            raise InputException(
                InputExceptionCode.MalformedInput,
                "Invalid eth_signTypedData_v4 params",
            )
        address, typed_data = params[0], params[1]
        self._check_own_address(address)
        digest = compute_digest(typed_data, self.strict_typed_data)
        signature = await sign_digest_with_timeout(
            self.signer, digest, self.address, self.signing_timeout)
        return HexStr(to_canonical_signature_hex(signature))

    async def build_authorization_transaction(
        self,
        delegate_address: str,
        data: str = "0x",
        to: str | None = None,
        value: int = 0,
        gas_limit: int | None = None,
        max_fee_per_gas_hex: str | None = None,
        max_priority_fee_per_gas_hex: str | None = None,
        gas_price_hex: str | None = None,
        access_list: list[dict] | None = None,
    ) -> SignedSetCodeTransaction:
        """
        Sign a type 0x04 transaction delegating this account to
        delegate_address and executing data against to (defaults to the
        account itself). nothing is broadcast.
        """
        self._require_signer()
        to_address_bytes(delegate_address)
        target = Address(to) if to is not None else self.address
        to_address_bytes(target)
        calldata = hex_to_bytes(data)
        access_list_entries = [
            AccessListEntry.from_dict(entry) for entry in (access_list or [])
        ]
        for fee_hex in (
            max_fee_per_gas_hex, max_priority_fee_per_gas_hex, gas_price_hex
        ):
            parse_hex_quantity(fee_hex)

        nonce_op = get_transaction_count(
            self.ethereum_node_url, self.address, "pending", self.rpc_timeout)
        gas_prices_op = self.gas_manager.get_gas_prices(
            max_fee_per_gas_hex, max_priority_fee_per_gas_hex, gas_price_hex)
        tasks_arr: list[Any] = [nonce_op, gas_prices_op]
        if gas_limit is None:
            tasks_arr.append(self.gas_manager.estimate_gas_limit(
                self.address, target, value, data))
        tasks: Any = await gather_or_raise(*tasks_arr)
        nonce: int = tasks[0]
        gas_prices: GasPrices = tasks[1]
        if gas_limit is None:
            gas_limit = apply_eip7702_overhead(tasks[2], authorization_count=1)

        builder = SetCodeTransactionBuilder(
            self.signer, self.address, self.chain_id, nonce,
            self.signing_timeout
        )
        await builder.add_authorization(delegate_address)
        builder.assemble(
            to=target,
            value=value,
            data=calldata,
            gas_limit=gas_limit,
            max_fee_per_gas=gas_prices.max_fee_per_gas,
            max_priority_fee_per_gas=gas_prices.max_priority_fee_per_gas,
            access_list=access_list_entries,
        )
        await builder.sign()
        return builder.finalize()

    async def send_raw_transaction(self, raw_transaction: str) -> TransactionHash:
        hex_to_bytes(raw_transaction)
        transaction_hash = await send_raw_transaction(
            self.ethereum_node_url, raw_transaction, self.rpc_timeout)
        logging.info(f"Broadcast transaction {transaction_hash}")
        return transaction_hash

    async def upgrade_account(self) -> TransactionHash:
        signed = await self.build_authorization_transaction(
            SIMPLE_7702_ACCOUNT_ADDRESS)
        return await self.send_raw_transaction(signed.raw_transaction_hex)

    async def reset_authorization(self) -> TransactionHash:
        signed = await self.build_authorization_transaction(ZERO_ADDRESS)
        return await self.send_raw_transaction(signed.raw_transaction_hex)

    async def check_authorization(
        self, address: str | None = None
    ) -> AuthorizationStatus:
        address = Address(address if address is not None else self.address)
        to_address_bytes(address)
        try:
            code = await get_code(
                self.ethereum_node_url, address, "latest", self.rpc_timeout)
            authorized_address = parse_delegation(code)
        except (NetworkException, InputException) as excp:
            logging.warning(
                f"Authorization check failed for {address}: {excp.message}")
            return AuthorizationStatus(
                chain_id=self.chain_id,
                address=address,
                has_authorization=False,
                authorized_address=None,
                error=excp.message,
            )
        return AuthorizationStatus(
            chain_id=self.chain_id,
            address=address,
            has_authorization=authorized_address is not None,
            authorized_address=authorized_address,
            error=None,
        )

    async def estimate_transaction_cost(
        self, transaction: dict[str, Any]
    ) -> GasEstimate:
        transaction = {"from": self.address, **transaction}
        to_address_bytes(transaction["from"])
        if transaction.get("to") is not None:
            to_address_bytes(transaction["to"])
        return await self.gas_manager.estimate_transaction(transaction)

    async def simulate_call(self, transaction: dict[str, Any]) -> HexStr:
        transaction = {"from": self.address, **transaction}
        to_address_bytes(transaction.get("to"))
        return HexStr(await eth_call(
            self.ethereum_node_url, transaction, "latest", self.rpc_timeout))

    async def wait_for_receipt(
        self,
        transaction_hash: TransactionHash,
        timeout: float = 0,
        poll_interval: float = DEFAULT_RECEIPT_POLL_INTERVAL,
    ) -> dict | None:
        """
        Poll eth_getTransactionReceipt until the transaction is mined or
        timeout seconds have passed. returns None while still pending,
        timeout=0 checks once.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            receipt = await get_transaction_receipt(
                self.ethereum_node_url, transaction_hash, self.rpc_timeout)
            if receipt is not None:
                return receipt
            remaining = deadline - loop.time()
            if remaining <= 0:
                logging.info(f"Transaction {transaction_hash} still pending")
                return None
            await asyncio.sleep(min(poll_interval, remaining))
