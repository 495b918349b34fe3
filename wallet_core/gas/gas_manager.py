import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from wallet_core.typing import Address
from wallet_core.utils.bytes_utils import parse_hex_quantity
from wallet_core.utils.eth_client_utils import (
    DEFAULT_RPC_TIMEOUT,
    estimate_gas,
    gather_or_raise,
    get_gas_price,
)

MIN_GAS_BUFFER = 1_500
MIN_TRANSACTION_GAS = 21_000
EIP7702_PER_AUTHORIZATION_GAS = 25_000
EIP7702_BASE_GAS = 21_000
EIP7702_SAFETY_MARGIN_GAS = 20_000
ONE_GWEI = 1_000_000_000
DEFAULT_MAX_FEE_CAP_GWEI = 100
MAX_PRIORITY_FEE_PER_GAS_CAP = 2 * ONE_GWEI
WEI_PER_ETH = 10**18


class TransactionType(Enum):
    legacy = "legacy"
    eip1559 = "eip1559"
    eip7702 = "eip7702"

    def __str__(self):
        return self.value


@dataclass(frozen=True)
class GasPrices:
    max_fee_per_gas: int
    max_priority_fee_per_gas: int
    is_eip1559: bool


def format_wei(wei: int) -> str:
    """Wei as an ETH string truncated to 6 decimals."""
    integer, remainder = divmod(wei, WEI_PER_ETH)
    return f"{integer}.{str(remainder).rjust(18, '0')[:6]}"


@dataclass(frozen=True)
class GasEstimate:
    gas_limit: int
    max_fee_per_gas: int
    max_priority_fee_per_gas: int
    estimated_gas_cost: int
    total_cost: int
    type: TransactionType

    def to_dict(self) -> dict[str, str]:
        return {
            "gasLimit": hex(self.gas_limit),
            "maxFeePerGas": hex(self.max_fee_per_gas),
            "maxPriorityFeePerGas": hex(self.max_priority_fee_per_gas),
            "estimatedGasCost": hex(self.estimated_gas_cost),
            "estimatedGasCostEth": format_wei(self.estimated_gas_cost),
            "totalCost": hex(self.total_cost),
            "totalCostEth": format_wei(self.total_cost),
            "type": self.type.value,
        }


def apply_gas_buffer(estimate: int) -> int:
    """50% buffer or 1,500 gas whichever is larger, never below 21,000."""
    buffer = max(estimate // 2, MIN_GAS_BUFFER)
    return max(estimate + buffer, MIN_TRANSACTION_GAS)


def calculate_eip7702_overhead(
    authorization_count: int, include_safety_margin: bool = True
) -> int:
    safety_margin = EIP7702_SAFETY_MARGIN_GAS if include_safety_margin else 0
    return (
        EIP7702_PER_AUTHORIZATION_GAS * authorization_count
        + EIP7702_BASE_GAS
        + safety_margin
    )


def apply_eip7702_overhead(
    gas_limit: int,
    authorization_count: int,
    include_safety_margin: bool = True,
) -> int:
    return gas_limit + calculate_eip7702_overhead(
        authorization_count, include_safety_margin)


def derive_gas_prices(
    network_gas_price: int, max_fee_cap_gwei: int = DEFAULT_MAX_FEE_CAP_GWEI
) -> GasPrices:
    max_fee_per_gas = min(network_gas_price * 2, max_fee_cap_gwei * ONE_GWEI)
    max_priority_fee_per_gas = min(
        network_gas_price // 2, MAX_PRIORITY_FEE_PER_GAS_CAP)
    # max priority fee per gas can't be higher than max fee per gas
    if max_priority_fee_per_gas > max_fee_per_gas:
        max_priority_fee_per_gas = max_fee_per_gas
    return GasPrices(
        max_fee_per_gas=max_fee_per_gas,
        max_priority_fee_per_gas=max_priority_fee_per_gas,
        is_eip1559=True,
    )


def calculate_total_cost(
    gas_limit: int,
    gas_prices: GasPrices,
    transaction_value: int,
    transaction_type: TransactionType = TransactionType.eip1559,
) -> GasEstimate:
    estimated_gas_cost = gas_limit * gas_prices.max_fee_per_gas
    return GasEstimate(
        gas_limit=gas_limit,
        max_fee_per_gas=gas_prices.max_fee_per_gas,
        max_priority_fee_per_gas=gas_prices.max_priority_fee_per_gas,
        estimated_gas_cost=estimated_gas_cost,
        total_cost=estimated_gas_cost + transaction_value,
        type=transaction_type,
    )


class GasManager:
    ethereum_node_url: str
    max_fee_cap_gwei: int
    timeout: float

    def __init__(
        self,
        ethereum_node_url: str,
        max_fee_cap_gwei: int = DEFAULT_MAX_FEE_CAP_GWEI,
        timeout: float = DEFAULT_RPC_TIMEOUT,
    ):
        self.ethereum_node_url = ethereum_node_url
        self.max_fee_cap_gwei = max_fee_cap_gwei
        self.timeout = timeout

    async def estimate_gas_limit(
        self,
        from_address: Address,
        to_address: Address | None,
        value: int = 0,
        data: str = "0x",
    ) -> int:
        call = {"from": from_address, "value": hex(value), "data": data}
        if to_address is not None:
            call["to"] = to_address
        estimate = await estimate_gas(self.ethereum_node_url, call, self.timeout)
        buffered = apply_gas_buffer(estimate)
        logging.debug(f"Gas estimate {estimate} buffered to {buffered}")
        return buffered

    async def fetch_gas_prices(self) -> GasPrices:
        network_gas_price = await get_gas_price(
            self.ethereum_node_url, self.timeout)
        return derive_gas_prices(network_gas_price, self.max_fee_cap_gwei)

    async def get_gas_prices(
        self,
        max_fee_per_gas_hex: str | None = None,
        max_priority_fee_per_gas_hex: str | None = None,
        gas_price_hex: str | None = None,
    ) -> GasPrices:
        max_fee_per_gas = parse_hex_quantity(max_fee_per_gas_hex)
        max_priority_fee_per_gas = parse_hex_quantity(
            max_priority_fee_per_gas_hex)
        gas_price = parse_hex_quantity(gas_price_hex)

        if max_fee_per_gas is not None and max_priority_fee_per_gas is not None:
            return GasPrices(
                max_fee_per_gas=max_fee_per_gas,
                max_priority_fee_per_gas=max_priority_fee_per_gas,
                is_eip1559=True,
            )
        if gas_price is not None:
            return GasPrices(
                max_fee_per_gas=gas_price,
                max_priority_fee_per_gas=0,
                is_eip1559=False,
            )
        return await self.fetch_gas_prices()

    async def estimate_transaction(
        self,
        transaction: dict[str, Any],
        authorization_count: int = 0,
    ) -> GasEstimate:
        """
        Gas estimate for an eth_sendTransaction style dict
        (from, to, value, data, gas, gasPrice, maxFeePerGas,
        maxPriorityFeePerGas). a gas field skips eth_estimateGas.
        """
        value = parse_hex_quantity(transaction.get("value")) or 0
        gas_limit = parse_hex_quantity(transaction.get("gas"))
        # fail on malformed fee overrides before any network call
        for key in ("maxFeePerGas", "maxPriorityFeePerGas", "gasPrice"):
            parse_hex_quantity(transaction.get(key))

        gas_prices_op = self.get_gas_prices(
            transaction.get("maxFeePerGas"),
            transaction.get("maxPriorityFeePerGas"),
            transaction.get("gasPrice"),
        )
        if gas_limit is None:
            gas_limit_op = self.estimate_gas_limit(
                transaction["from"],
                transaction.get("to"),
                value,
                transaction.get("data") or transaction.get("input") or "0x",
            )
            gas_limit, gas_prices = await gather_or_raise(
                gas_limit_op, gas_prices_op)
        else:
            gas_prices = await gas_prices_op

        if authorization_count > 0:
            gas_limit = apply_eip7702_overhead(gas_limit, authorization_count)
            transaction_type = TransactionType.eip7702
        elif gas_prices.is_eip1559:
            transaction_type = TransactionType.eip1559
        else:
            transaction_type = TransactionType.legacy

        return calculate_total_cost(
            gas_limit, gas_prices, value, transaction_type)
