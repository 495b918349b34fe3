import asyncio
import json
import logging
from typing import Any

from aiohttp import ClientError, ClientSession, ClientTimeout

from wallet_core.exceptions import NetworkException, NetworkExceptionCode
from wallet_core.typing import Address, TransactionHash

DEFAULT_RPC_TIMEOUT = 30


async def gather_or_raise(*calls) -> list:
    """
    asyncio.gather that lets every call settle before raising the first
    error in argument order, so no sibling failure goes unretrieved.
    """
    results = await asyncio.gather(*calls, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return results


async def send_rpc_request_to_eth_client(
    ethereum_node_url: str,
    method: str,
    params=None,
    timeout: float = DEFAULT_RPC_TIMEOUT,
) -> Any:
    json_request = {
        "jsonrpc": "2.0",
        "id": 1,
        "method": method,
        "params": params if params is not None else [],
    }
    headers = {
        "content-type": "application/json",
        "connection": "keep-alive"
    }
    try:
        async with ClientSession(timeout=ClientTimeout(total=timeout)) as session:
            async with session.post(
                ethereum_node_url,
                json=json_request,
                headers=headers
            ) as response:
                resp = await response.read()
    except asyncio.TimeoutError:
        logging.error(f"Call to node rpc {method} timed out after {timeout}s")
        raise NetworkException(
            NetworkExceptionCode.Timeout,
            f"{method} timed out after {timeout} seconds",
        )
    except ClientError as excp:
        logging.error(f"Call to node rpc {method} failed. error: {str(excp)}")
        raise NetworkException(
            NetworkExceptionCode.ConnectionFailed,
            f"{method} failed: {str(excp)}",
        ) from excp

    try:
        json_result = json.loads(resp)
    except json.decoder.JSONDecodeError:
        logging.error(f"Invalid json response from eth client for {method}")
        raise NetworkException(
            NetworkExceptionCode.InvalidResponse,
            "Invalid json response from eth client",
        )

    if not isinstance(json_result, dict):
        raise NetworkException(
            NetworkExceptionCode.InvalidResponse,
            f"Unexpected response for {method}",
        )
    if "error" in json_result:
        error = json_result["error"]
        err_message = ""
        if isinstance(error, dict) and "message" in error:
            err_message = error["message"]
        logging.error(
            f"Call to node rpc {method} rejected."
            f" the request: {str(json_request)}"
            f" with error: {str(error)}"
        )
        raise NetworkException(
            NetworkExceptionCode.Rejected,
            err_message,
            error if isinstance(error, dict) else None,
        )
    if "result" not in json_result:
        raise NetworkException(
            NetworkExceptionCode.InvalidResponse,
            f"Invalid RPC response for {method}",
        )
    return json_result


async def get_chain_id(ethereum_node_url: str, timeout=DEFAULT_RPC_TIMEOUT) -> int:
    res = await send_rpc_request_to_eth_client(
        ethereum_node_url, "eth_chainId", [], timeout)
    return int(res["result"], 16)


async def get_gas_price(ethereum_node_url: str, timeout=DEFAULT_RPC_TIMEOUT) -> int:
    res = await send_rpc_request_to_eth_client(
        ethereum_node_url, "eth_gasPrice", [], timeout)
    return int(res["result"], 16)


async def estimate_gas(
    ethereum_node_url: str, call: dict[str, str], timeout=DEFAULT_RPC_TIMEOUT
) -> int:
    res = await send_rpc_request_to_eth_client(
        ethereum_node_url, "eth_estimateGas", [call], timeout)
    return int(res["result"], 16)


async def get_transaction_count(
    ethereum_node_url: str,
    address: Address,
    block: str = "pending",
    timeout=DEFAULT_RPC_TIMEOUT,
) -> int:
    res = await send_rpc_request_to_eth_client(
        ethereum_node_url, "eth_getTransactionCount", [address, block], timeout)
    return int(res["result"], 16)


async def get_code(
    ethereum_node_url: str,
    address: Address,
    block: str = "latest",
    timeout=DEFAULT_RPC_TIMEOUT,
) -> str:
    res = await send_rpc_request_to_eth_client(
        ethereum_node_url, "eth_getCode", [address, block], timeout)
    return res["result"]


async def eth_call(
    ethereum_node_url: str,
    call: dict[str, str],
    block: str = "latest",
    timeout=DEFAULT_RPC_TIMEOUT,
) -> str:
    res = await send_rpc_request_to_eth_client(
        ethereum_node_url, "eth_call", [call, block], timeout)
    return res["result"]


async def send_raw_transaction(
    ethereum_node_url: str, raw_transaction: str, timeout=DEFAULT_RPC_TIMEOUT
) -> TransactionHash:
    res = await send_rpc_request_to_eth_client(
        ethereum_node_url, "eth_sendRawTransaction", [raw_transaction], timeout)
    return TransactionHash(res["result"])


async def get_transaction_receipt(
    ethereum_node_url: str,
    transaction_hash: TransactionHash,
    timeout=DEFAULT_RPC_TIMEOUT,
) -> dict | None:
    res = await send_rpc_request_to_eth_client(
        ethereum_node_url, "eth_getTransactionReceipt", [transaction_hash], timeout)
    receipt = res["result"]
    if receipt is not None and not isinstance(receipt, dict):
        raise NetworkException(
            NetworkExceptionCode.InvalidResponse,
            "Unexpected response type for eth_getTransactionReceipt",
        )
    return receipt
