import copy
import json
import logging
import os

import pytest
from eth_abi import encode
from eth_account import Account
from eth_utils import keccak

from wallet_core.eip712.typed_data import (
    ZERO_WORD,
    TypedDataEncoder,
    array_element_type,
    base_type,
    compute_digest,
    infer_domain_type,
    load_typed_data,
    parse_type_map,
)
from wallet_core.exceptions import InputException, InputExceptionCode

DATA_DIR = os.path.join(os.path.dirname(__file__), "data")

PERMIT2_DIGEST = (
    "0x246219975cf9f81c34fc2a45dfa8969b2f25df8bd154fe3644b38a43c5305a73"
)
ETHER_MAIL_DIGEST = (
    "0xbe609aee343fb3c4b28e1df9e632fca64fcfaede20f02e86244efddf30957bd2"
)

ETHER_MAIL = {
    "types": {
        "EIP712Domain": [
            {"name": "name", "type": "string"},
            {"name": "version", "type": "string"},
            {"name": "chainId", "type": "uint256"},
            {"name": "verifyingContract", "type": "address"},
        ],
        "Person": [
            {"name": "name", "type": "string"},
            {"name": "wallet", "type": "address"},
        ],
        "Mail": [
            {"name": "from", "type": "Person"},
            {"name": "to", "type": "Person"},
            {"name": "contents", "type": "string"},
        ],
    },
    "primaryType": "Mail",
    "domain": {
        "name": "Ether Mail",
        "version": "1",
        "chainId": 1,
        "verifyingContract": "0xCcCCccccCCCCcCCCCCCcCcCccCcCCCcCcccccccC",
    },
    "message": {
        "from": {
            "name": "Cow",
            "wallet": "0xCD2a3d9F938E13CD947Ec05AbC7FE734Df8DD826",
        },
        "to": {
            "name": "Bob",
            "wallet": "0xbBbBBBBbbBBBbbbBbbBbbbbBBbBbbbbBbBbbBBbB",
        },
        "contents": "Hello, Bob!",
    },
}


@pytest.fixture
def permit2_typed_data() -> str:
    with open(os.path.join(DATA_DIR, "permit2_witness_transfer.json")) as f:
        return f.read()


@pytest.fixture
def ether_mail() -> dict:
    return copy.deepcopy(ETHER_MAIL)


def test_permit2_witness_transfer_digest(permit2_typed_data):
    assert "0x" + compute_digest(permit2_typed_data).hex() == PERMIT2_DIGEST


def test_permit2_digest_from_dict(permit2_typed_data):
    document = json.loads(permit2_typed_data)
    assert "0x" + compute_digest(document).hex() == PERMIT2_DIGEST


def test_permit2_digest_is_strict_clean(permit2_typed_data):
    assert "0x" + compute_digest(permit2_typed_data, strict=True).hex() == (
        PERMIT2_DIGEST)


def test_permit2_type_string(permit2_typed_data):
    document = json.loads(permit2_typed_data)
    encoder = TypedDataEncoder(parse_type_map(document["types"]))
    assert encoder.encode_type("PermitWitnessTransferFrom") == (
        "PermitWitnessTransferFrom(TokenPermissions permitted,address spender,"
        "uint256 nonce,uint256 deadline,PriorityOrder witness)"
        "OrderInfo(address reactor,address swapper,uint256 nonce,"
        "uint256 deadline,address additionalValidationContract,"
        "bytes additionalValidationData)"
        "PriorityInput(address token,uint256 amount,uint256 mpsPerPriorityFeeWei)"
        "PriorityOrder(OrderInfo info,address cosigner,uint256 auctionStartBlock,"
        "uint256 baselinePriorityFeeWei,PriorityInput input,"
        "PriorityOutput[] outputs)"
        "PriorityOutput(address token,uint256 amount,"
        "uint256 mpsPerPriorityFeeWei,address recipient)"
        "TokenPermissions(address token,uint256 amount)"
    )


def test_ether_mail_digest(ether_mail):
    assert "0x" + compute_digest(ether_mail).hex() == ETHER_MAIL_DIGEST


def test_ether_mail_matches_eth_account(ether_mail, private_key):
    signed = Account.sign_typed_data(private_key, full_message=ether_mail)
    assert compute_digest(ether_mail) == bytes(signed.message_hash)


def test_dependencies_sorted_alphabetically():
    encoder = TypedDataEncoder(parse_type_map({
        "Main": [
            {"name": "z", "type": "Zebra"},
            {"name": "a", "type": "Apple"},
        ],
        "Zebra": [{"name": "name", "type": "string"}],
        "Apple": [{"name": "name", "type": "string"}],
    }))
    assert encoder.encode_type("Main") == (
        "Main(Zebra z,Apple a)Apple(string name)Zebra(string name)")


def test_recursive_type_lists_primary_once():
    encoder = TypedDataEncoder(parse_type_map({
        "Node": [
            {"name": "value", "type": "uint256"},
            {"name": "children", "type": "Node[]"},
        ],
    }))
    assert encoder.encode_type("Node") == "Node(uint256 value,Node[] children)"
    assert encoder.find_type_dependencies("Node") == set()


def test_domain_type_inferred_from_present_keys(ether_mail):
    explicit = compute_digest(ether_mail)
    del ether_mail["types"]["EIP712Domain"]
    assert compute_digest(ether_mail) == explicit

    fields = infer_domain_type({"chainId": 1, "name": "x"})
    assert [(field.name, field.type) for field in fields] == [
        ("name", "string"), ("chainId", "uint256")]


def test_inferred_domain_hash():
    domain = {"name": "Permit2", "chainId": 8453}
    type_map = {"EIP712Domain": infer_domain_type(domain)}
    encoder = TypedDataEncoder(type_map)
    expected = keccak(
        keccak(text="EIP712Domain(string name,uint256 chainId)")
        + keccak(text="Permit2")
        + encode(["uint256"], [8453])
    )
    assert encoder.hash_struct("EIP712Domain", domain) == expected


def test_base_and_array_element_type():
    assert base_type("Person[][2]") == "Person"
    assert base_type("uint256") == "uint256"
    assert array_element_type("uint8[][3]") == "uint8[]"
    assert array_element_type("uint8[]") == "uint8"
    assert array_element_type("uint8") is None


def test_array_of_arrays():
    encoder = TypedDataEncoder({})
    word = lambda n: encode(["uint256"], [n])  # noqa: E731
    expected = keccak(
        keccak(word(1) + word(2)) + keccak(word(3))
    )
    assert encoder.encode_field("uint8[][]", [[1, 2], [3]]) == expected
    assert encoder.encode_field("uint8[]", []) == keccak(b"")


def test_integer_encodings():
    encoder = TypedDataEncoder({})
    assert encoder.encode_field("int256", -1) == b"\xff" * 32
    assert encoder.encode_field("int8", "-0x01") == b"\xff" * 32
    assert encoder.encode_field("uint256", "0x10") == encode(["uint256"], [16])
    assert encoder.encode_field("uint256", "16") == encode(["uint256"], [16])
    assert encoder.encode_field("uint256", None) == ZERO_WORD


@pytest.mark.parametrize("value", [-1, 2**256, "-5"])
def test_uint_out_of_range_raises(value):
    encoder = TypedDataEncoder({})
    with pytest.raises(InputException):
        encoder.encode_field("uint256", value)


def test_scalar_encodings():
    encoder = TypedDataEncoder({})
    assert encoder.encode_field("bool", True) == encode(["bool"], [True])
    assert encoder.encode_field("bool", "true") == ZERO_WORD
    assert encoder.encode_field("string", "hi") == keccak(text="hi")
    assert encoder.encode_field("bytes", "0x1234") == keccak(b"\x12\x34")
    assert encoder.encode_field("bytes4", "0x12345678") == (
        bytes.fromhex("12345678") + b"\x00" * 28)


def test_bytes_longer_than_fixed_size_raises():
    encoder = TypedDataEncoder({})
    with pytest.raises(InputException):
        encoder.encode_field("bytes32", "0x" + "11" * 33)


def test_lenient_encodes_invalid_values_as_zero(ether_mail):
    zero_wallet = copy.deepcopy(ether_mail)
    zero_wallet["message"]["to"]["wallet"] = "0x" + "00" * 20
    ether_mail["message"]["to"]["wallet"] = "not an address"
    assert compute_digest(ether_mail) == compute_digest(zero_wallet)

    encoder = TypedDataEncoder({})
    assert encoder.encode_field("uint256", "twelve") == ZERO_WORD
    assert encoder.encode_field("fixed128x18", 1) == ZERO_WORD


def test_strict_rejects_invalid_values(ether_mail):
    ether_mail["message"]["to"]["wallet"] = "not an address"
    with pytest.raises(InputException) as excinfo:
        compute_digest(ether_mail, strict=True)
    assert excinfo.value.exception_code == InputExceptionCode.MalformedInput

    encoder = TypedDataEncoder({}, strict=True)
    with pytest.raises(InputException):
        encoder.encode_field("fixed128x18", 1)


def test_undeclared_primary_type(ether_mail):
    ether_mail["primaryType"] = "Letter"
    compute_digest(ether_mail)
    with pytest.raises(InputException):
        compute_digest(ether_mail, strict=True)


@pytest.mark.parametrize(
    "typed_data",
    [
        "{not json",
        "[]",
        {"types": {}, "domain": {}, "message": {}},
        {"types": {}, "primaryType": 1, "domain": {}, "message": {}},
        {"types": {}, "primaryType": "Mail", "domain": [], "message": {}},
        {"types": [], "primaryType": "Mail", "domain": {}, "message": {}},
    ],
)
def test_malformed_documents(typed_data):
    with pytest.raises(InputException) as excinfo:
        compute_digest(typed_data)
    assert excinfo.value.exception_code == InputExceptionCode.MalformedInput


def test_load_typed_data_returns_document(ether_mail):
    assert load_typed_data(json.dumps(ether_mail)) == ether_mail


def single_field_document(field_type: str, message: dict) -> dict:
    return {
        "types": {"Item": [{"name": "v", "type": field_type}]},
        "primaryType": "Item",
        "domain": {"name": "Test"},
        "message": message,
    }


@pytest.mark.parametrize(
    "field_type, message",
    [
        ("uint256", {}),
        ("int64", {"v": None}),
        ("bool", {"v": "true"}),
        ("bool", {}),
        ("bytes4", {"v": "0x0102030405060708"}),
    ],
)
def test_lenient_fallbacks_log_warning(caplog, field_type, message):
    with caplog.at_level(logging.WARNING):
        compute_digest(single_field_document(field_type, message))
    assert any(
        record.levelno == logging.WARNING for record in caplog.records)


@pytest.mark.parametrize(
    "field_type, message",
    [
        ("uint256", {}),
        ("int64", {"v": None}),
        ("bool", {"v": "true"}),
        ("bool", {}),
        ("bytes4", {"v": "0x0102030405060708"}),
    ],
)
def test_strict_rejects_fallbacks(field_type, message):
    with pytest.raises(InputException) as excinfo:
        compute_digest(single_field_document(field_type, message), strict=True)
    assert excinfo.value.exception_code == InputExceptionCode.MalformedInput


def test_lenient_fallbacks_encode_as_zero():
    encoder = TypedDataEncoder({})
    assert encoder.encode_field("uint256", None) == ZERO_WORD
    assert encoder.encode_field("bool", None) == encode(["bool"], [False])
    assert encoder.encode_field("bytes4", "0x0102030405") == ZERO_WORD
    assert encoder.encode_field("bool", 1) == encode(["bool"], [True])
    assert encoder.encode_field("bytes4", "0x0102") == (
        b"\x01\x02" + b"\x00" * 30)


def test_invalid_dynamic_bytes_hash_as_empty(caplog):
    encoder = TypedDataEncoder({})
    with caplog.at_level(logging.WARNING):
        assert encoder.encode_field("bytes", "0xzz") == keccak(b"")
    assert "encoding as empty bytes" in caplog.text
    assert "encoding as zero" not in caplog.text
    with pytest.raises(InputException):
        TypedDataEncoder({}, strict=True).encode_field("bytes", "0xzz")
