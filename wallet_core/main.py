import json
import logging
import sys
from dataclasses import asdict

import uvloop

from wallet_core.eip712.typed_data import compute_digest, load_typed_data
from wallet_core.eip7702.authorization import SIMPLE_7702_ACCOUNT_ADDRESS
from wallet_core.exceptions import (
    InputException,
    NetworkException,
    SigningException,
)
from wallet_core.utils.bytes_utils import bytes_to_hex
from wallet_core.wallet.wallet_manager import WalletManager

from .cli_manager import InitData, parse_args


def read_typed_data_file(path: str) -> dict:
    if path == "-":
        return load_typed_data(sys.stdin.read())
    with open(path) as typed_data_file:
        return load_typed_data(typed_data_file.read())


def print_result(result) -> None:
    if isinstance(result, str):
        print(result)
    else:
        print(json.dumps(result, indent=2))


async def run_command(init_data: InitData) -> object:
    args = init_data.command_args

    if init_data.command == "digest":
        typed_data = read_typed_data_file(args.typed_data_file)
        return bytes_to_hex(
            compute_digest(typed_data, init_data.strict_typed_data))

    wallet_manager = WalletManager(
        init_data.ethereum_node_url,
        init_data.chain_id,
        init_data.signer,
        init_data.address,
        rpc_timeout=init_data.rpc_timeout,
        max_fee_cap_gwei=init_data.max_fee_cap_gwei,
        strict_typed_data=init_data.strict_typed_data,
    )

    match init_data.command:
        case "personal-sign":
            return await wallet_manager.personal_sign(
                [args.message, init_data.address])
        case "sign-typed-data":
            typed_data = read_typed_data_file(args.typed_data_file)
            return await wallet_manager.sign_typed_data(
                [init_data.address, typed_data])
        case "delegate":
            delegate_address = args.delegate_address
            if delegate_address is None:
                delegate_address = SIMPLE_7702_ACCOUNT_ADDRESS
            signed = await wallet_manager.build_authorization_transaction(
                delegate_address,
                data=args.data,
                to=args.to,
                value=args.value,
                gas_limit=args.gas_limit,
                max_fee_per_gas_hex=args.max_fee_per_gas,
                max_priority_fee_per_gas_hex=args.max_priority_fee_per_gas,
                gas_price_hex=args.gas_price,
            )
            result = {
                "rawTransaction": signed.raw_transaction_hex,
                "transactionHash": signed.transaction_hash,
                "authorizationList": [
                    authorization.to_dict()
                    for authorization in signed.transaction.authorization_list
                ],
            }
            if args.broadcast:
                result["broadcastHash"] = await wallet_manager.send_raw_transaction(
                    signed.raw_transaction_hex)
            return result
        case "reset":
            return await wallet_manager.reset_authorization()
        case "status":
            address = args.address or init_data.address
            if address is None:
                logging.critical("status requires an address or an account key")
                sys.exit(1)
            status = await wallet_manager.check_authorization(address)
            return asdict(status)
        case "estimate":
            from_address = args.from_address or init_data.address
            if from_address is None:
                logging.critical("estimate requires --from or an account key")
                sys.exit(1)
            transaction = {
                "from": from_address,
                "value": hex(args.value),
                "data": args.data,
            }
            if args.to is not None:
                transaction["to"] = args.to
            estimate = await wallet_manager.estimate_transaction_cost(
                transaction)
            return estimate.to_dict()
        case "send-raw":
            return await wallet_manager.send_raw_transaction(
                args.raw_transaction)
        case "receipt":
            receipt = await wallet_manager.wait_for_receipt(
                args.transaction_hash, timeout=args.wait or 0)
            if receipt is None:
                return "pending"
            return receipt
        case _:
            raise ValueError(f"Unknown command {init_data.command}")


async def main(cmd_args=sys.argv[1:]) -> None:
    init_data = await parse_args(cmd_args)
    try:
        result = await run_command(init_data)
    except (InputException, SigningException, NetworkException) as excp:
        logging.critical(
            f"{init_data.command} failed with "
            f"{excp.exception_code.name} ({excp.exception_code.value}): "
            f"{excp.message}"
        )
        sys.exit(1)
    except OSError as excp:
        logging.critical(str(excp))
        sys.exit(1)
    print_result(result)


def run() -> None:
    uvloop.run(main())


if __name__ == "__main__":
    run()
