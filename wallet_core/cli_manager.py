import os
import logging
import re
import sys
from argparse import ArgumentParser, ArgumentTypeError, Namespace
from dataclasses import dataclass
from importlib.metadata import PackageNotFoundError, version

from wallet_core.exceptions import NetworkException
from wallet_core.gas.gas_manager import DEFAULT_MAX_FEE_CAP_GWEI
from wallet_core.signing.digest_signer import LocalAccountSigner
from wallet_core.typing import Address
from wallet_core.utils.eth_client_utils import DEFAULT_RPC_TIMEOUT, get_chain_id
from wallet_core.utils.import_key import (
    import_signer_from_keystore,
    import_signer_from_secret,
)

try:
    __version__ = version("wallet_core")
except PackageNotFoundError:
    __version__ = "0.0.0"

DEFAULT_ETHEREUM_NODE_URL = "https://eth.llamarpc.com"

# commands that only hash and never touch the signer or the node
OFFLINE_COMMANDS = ("digest",)
# commands that read the node and work without a key
READ_ONLY_COMMANDS = ("status", "estimate", "send-raw", "receipt")


@dataclass()
class InitData:
    command: str
    ethereum_node_url: str
    chain_id: int | None
    signer: LocalAccountSigner | None
    address: Address | None
    rpc_timeout: float
    max_fee_cap_gwei: int
    strict_typed_data: bool
    is_verbose: bool
    command_args: Namespace


def address(ep: str):
    address_pattern = "^0x[0-9a-fA-F]{40}$"
    if not isinstance(ep, str) or re.match(address_pattern, ep) is None:
        raise ArgumentTypeError(f"Wrong address format : {ep}")
    return ep


def hex_data(value: str):
    if re.match("^0x([0-9a-fA-F]{2})*$", value) is None:
        raise ArgumentTypeError(f"Wrong hex format : {value}")
    return value


def hex_quantity(value: str):
    if re.match("^0x[0-9a-fA-F]+$", value) is None:
        raise ArgumentTypeError(f"Wrong hex quantity format : {value}")
    return value


def unsigned_int(value):
    ivalue = int(value, 0) if isinstance(value, str) else int(value)
    if ivalue < 0:
        raise ArgumentTypeError(
                "%s is an invalid unsigned int value" % value)
    return ivalue


def positive_float(value):
    fvalue = float(value)
    if fvalue <= 0:
        raise ArgumentTypeError(f"{value} is not a positive number")
    return fvalue


def _get_env_or_default(env_var, default, value_type):
    """
    Helper function to get the value from an environment variable or return the default value.
    """
    value = os.getenv(env_var, None)
    if value is not None:
        if value_type == bool:
            return value.lower() in ("1", "true", "yes")
        return value_type(value)
    return default


def initialize_argument_parser() -> ArgumentParser:
    parser = ArgumentParser(
        prog="wallet-core",
        description="EIP-712 / EIP-7702 signing core of a self-custodial wallet",
    )

    group = parser.add_mutually_exclusive_group(required=False)

    group.add_argument(
        "--secret",
        type=str,
        help="Account private key (development only)",
        nargs="?",
        default=_get_env_or_default("WALLET_SECRET", None, str),
    )

    group.add_argument(
        "--keystore_file_path",
        type=str,
        help=(
            "Account Keystore file path - "
            "defaults to first file in keystore folder"
        ),
        nargs="?",
        default=_get_env_or_default("WALLET_KEYSTORE_FILE_PATH", None, str),
    )

    parser.add_argument(
        "--keystore_file_password",
        type=str,
        help="Account Keystore file password - defaults to no password",
        nargs="?",
        const="",
        default=_get_env_or_default("WALLET_KEYSTORE_FILE_PASSWORD", "", str),
    )

    parser.add_argument(
        "--ethereum_node_url",
        type=str,
        help=f"Ethereum node url - defaults to {DEFAULT_ETHEREUM_NODE_URL}",
        nargs="?",
        const=DEFAULT_ETHEREUM_NODE_URL,
        default=_get_env_or_default(
            "WALLET_ETHEREUM_NODE_URL", DEFAULT_ETHEREUM_NODE_URL, str),
    )

    parser.add_argument(
        "--chain_id",
        type=unsigned_int,
        help="Chain id - defaults to the node's eth_chainId",
        nargs="?",
        default=_get_env_or_default("WALLET_CHAIN_ID", None, unsigned_int),
    )

    parser.add_argument(
        "--rpc_timeout",
        type=positive_float,
        help=f"Seconds to wait for each node or signer call - defaults to {DEFAULT_RPC_TIMEOUT}",
        nargs="?",
        const=DEFAULT_RPC_TIMEOUT,
        default=_get_env_or_default(
            "WALLET_RPC_TIMEOUT", DEFAULT_RPC_TIMEOUT, positive_float),
    )

    parser.add_argument(
        "--max_fee_cap_gwei",
        type=unsigned_int,
        help=f"Cap on the derived max fee per gas in gwei - defaults to {DEFAULT_MAX_FEE_CAP_GWEI}",
        nargs="?",
        const=DEFAULT_MAX_FEE_CAP_GWEI,
        default=_get_env_or_default(
            "WALLET_MAX_FEE_CAP_GWEI", DEFAULT_MAX_FEE_CAP_GWEI, unsigned_int),
    )

    parser.add_argument(
        "--strict_typed_data",
        help="Reject typed data with invalid values instead of zero-encoding them",
        action="store_true",
        default=_get_env_or_default("WALLET_STRICT_TYPED_DATA", False, bool),
    )

    parser.add_argument(
        "--verbose",
        help="show debug log",
        action="store_true",
        default=_get_env_or_default("WALLET_VERBOSE", False, bool),
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    digest_parser = subparsers.add_parser(
        "digest", help="Print the EIP-712 digest of a typed data json file")
    digest_parser.add_argument(
        "typed_data_file", type=str, help="json file path, - for stdin")

    personal_sign_parser = subparsers.add_parser(
        "personal-sign", help="Sign a 0x hex message with EIP-191")
    personal_sign_parser.add_argument("message", type=hex_data)

    typed_data_parser = subparsers.add_parser(
        "sign-typed-data", help="Sign an eth_signTypedData_v4 json file")
    typed_data_parser.add_argument(
        "typed_data_file", type=str, help="json file path, - for stdin")

    delegate_parser = subparsers.add_parser(
        "delegate",
        help="Sign an EIP-7702 transaction delegating the account",
    )
    delegate_parser.add_argument(
        "delegate_address", type=address, nargs="?", default=None,
        help="Contract to delegate to - defaults to Simple7702Account")
    delegate_parser.add_argument("--to", type=address, default=None)
    delegate_parser.add_argument("--data", type=hex_data, default="0x")
    delegate_parser.add_argument("--value", type=unsigned_int, default=0)
    delegate_parser.add_argument("--gas_limit", type=unsigned_int, default=None)
    delegate_parser.add_argument("--max_fee_per_gas", type=hex_quantity, default=None)
    delegate_parser.add_argument(
        "--max_priority_fee_per_gas", type=hex_quantity, default=None)
    delegate_parser.add_argument("--gas_price", type=hex_quantity, default=None)
    delegate_parser.add_argument(
        "--broadcast", action="store_true",
        help="Send the signed transaction with eth_sendRawTransaction")

    subparsers.add_parser(
        "reset", help="Delegate the account to the zero address and broadcast")

    status_parser = subparsers.add_parser(
        "status", help="Show the EIP-7702 delegation of an address")
    status_parser.add_argument(
        "address", type=address, nargs="?", default=None)

    estimate_parser = subparsers.add_parser(
        "estimate", help="Estimate gas and total cost of a transaction")
    estimate_parser.add_argument("--from", dest="from_address", type=address, default=None)
    estimate_parser.add_argument("--to", type=address, default=None)
    estimate_parser.add_argument("--data", type=hex_data, default="0x")
    estimate_parser.add_argument("--value", type=unsigned_int, default=0)

    send_raw_parser = subparsers.add_parser(
        "send-raw", help="Broadcast a signed raw transaction")
    send_raw_parser.add_argument("raw_transaction", type=hex_data)

    receipt_parser = subparsers.add_parser(
        "receipt", help="Fetch a transaction receipt")
    receipt_parser.add_argument("transaction_hash", type=hex_data)
    receipt_parser.add_argument(
        "--wait", type=positive_float, default=None,
        help="Seconds to poll until the transaction is mined")

    return parser


async def parse_args(cmd_args: list[str]) -> InitData:
    argParser: ArgumentParser = initialize_argument_parser()
    args = argParser.parse_args(cmd_args)

    init_logging(args)

    init_data = await get_init_data(args)

    return init_data


def init_logging(args: Namespace):
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s.%(msecs)03d %(levelname)s %(message)s",
        datefmt="%b %d %H:%M:%S",
    )

    logging.getLogger("wallet_core")


def init_signer(args: Namespace) -> LocalAccountSigner | None:
    if args.secret is not None:
        if re.match("^(0x)?[0-9a-fA-F]{64}$", args.secret) is None:
            logging.critical("Invalid account secret.")
            sys.exit(1)
        return import_signer_from_secret(args.secret)
    if args.keystore_file_path is not None:
        return import_signer_from_keystore(
            args.keystore_file_password, args.keystore_file_path)
    return None


async def check_valid_ethereum_rpc_and_get_chain_id(
    ethereum_node_url: str, timeout: float
) -> int:
    try:
        return await get_chain_id(ethereum_node_url, timeout)
    except NetworkException as excp:
        logging.critical(
            f"Error when connecting to Eth node {ethereum_node_url}: {excp.message}")
        sys.exit(1)


async def get_init_data(args: Namespace) -> InitData:
    signer = init_signer(args)
    if args.command not in OFFLINE_COMMANDS + READ_ONLY_COMMANDS:
        if signer is None:
            logging.critical(
                f"{args.command} requires --secret or --keystore_file_path")
            sys.exit(1)

    chain_id = args.chain_id
    if chain_id is None and args.command not in OFFLINE_COMMANDS:
        chain_id = await check_valid_ethereum_rpc_and_get_chain_id(
            args.ethereum_node_url, args.rpc_timeout)

    return InitData(
        command=args.command,
        ethereum_node_url=args.ethereum_node_url,
        chain_id=chain_id,
        signer=signer,
        address=signer.address if signer is not None else None,
        rpc_timeout=args.rpc_timeout,
        max_fee_cap_gwei=args.max_fee_cap_gwei,
        strict_typed_data=args.strict_typed_data,
        is_verbose=args.verbose,
        command_args=args,
    )
