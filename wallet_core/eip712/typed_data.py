"""
EIP-712 typed-data hashing for eth_signTypedData_v4 documents.

Digests match viem's hashTypedData: the type string lists the primary type
first and its struct dependencies alphabetically, and when the document
declares no EIP712Domain type one is inferred from the keys present in the
domain value.

Malformed leaf values (an invalid address, a missing or unparsable integer, a
non-bool bool, oversized bytesN, an unknown type name) are encoded as 32 zero
bytes and logged with a warning. Invalid hex for dynamic bytes hashes as empty
bytes. With strict=True they raise InputException instead.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Union

from eth_abi import encode
from eth_utils import is_hex_address, keccak, to_canonical_address

from wallet_core.exceptions import InputException, InputExceptionCode
from wallet_core.utils.bytes_utils import (
    UINT256_MODULUS,
    hex_to_bytes,
    parse_quantity,
    to_twos_complement,
)

JsonValue = Union[str, int, float, bool, None, list, dict]

EIP712_DOMAIN = "EIP712Domain"
ZERO_WORD = b"\x00" * 32

DOMAIN_FIELDS = (
    ("name", "string"),
    ("version", "string"),
    ("chainId", "uint256"),
    ("verifyingContract", "address"),
    ("salt", "bytes32"),
)


@dataclass(frozen=True)
class TypeDefinition:
    name: str
    type: str


TypeMap = dict[str, list[TypeDefinition]]


def base_type(type_name: str) -> str:
    """Name before the first "[" ("Person[][2]" -> "Person")."""
    return type_name.split("[", 1)[0].strip()


def array_element_type(type_name: str) -> str | None:
    """Strip the outermost array suffix ("uint8[][3]" -> "uint8[]")."""
    if not type_name.endswith("]") or "[" not in type_name:
        return None
    return type_name[:type_name.rindex("[")]


def parse_type_map(types: JsonValue) -> TypeMap:
    if not isinstance(types, dict):
        raise InputException(
            InputExceptionCode.MalformedInput, "types must be an object")
    type_map: TypeMap = {}
    for type_name, fields in types.items():
        if not isinstance(fields, list):
            logging.warning(f"Ignoring EIP-712 type {type_name}: fields are not a list")
            continue
        type_map[type_name] = [
            TypeDefinition(name=field["name"], type=field["type"])
            for field in fields
            if isinstance(field, dict)
            and isinstance(field.get("name"), str)
            and isinstance(field.get("type"), str)
        ]
    return type_map


def infer_domain_type(domain: dict[str, Any]) -> list[TypeDefinition]:
    """EIP712Domain fields restricted to the keys present in the domain."""
    return [
        TypeDefinition(name=name, type=type_)
        for name, type_ in DOMAIN_FIELDS
        if name in domain
    ]


class TypedDataEncoder:
    type_map: TypeMap
    strict: bool

    def __init__(self, type_map: TypeMap, strict: bool = False):
        self.type_map = type_map
        self.strict = strict

    def find_type_dependencies(self, type_name: str) -> set[str]:
        """Struct types reachable from type_name, excluding itself."""
        dependencies: set[str] = set()
        stack = [type_name]
        while stack:
            current = stack.pop()
            for field in self.type_map.get(current, []):
                dependency = base_type(field.type)
                if (
                    dependency in self.type_map and
                    dependency != type_name and
                    dependency not in dependencies
                ):
                    dependencies.add(dependency)
                    stack.append(dependency)
        return dependencies

    def encode_type(self, type_name: str) -> str:
        ordered = [type_name] + sorted(self.find_type_dependencies(type_name))
        encoded = []
        for name in ordered:
            fields = self.type_map.get(name)
            if fields is None:
                continue
            members = ",".join(f"{field.type} {field.name}" for field in fields)
            encoded.append(f"{name}({members})")
        return "".join(encoded)

    def hash_type(self, type_name: str) -> bytes:
        return keccak(text=self.encode_type(type_name))

    def hash_struct(self, type_name: str, value: JsonValue) -> bytes:
        type_hash = self.hash_type(type_name)
        fields = self.type_map.get(type_name)
        if fields is None:
            self._degrade(f"Type {type_name!r} is not declared in types")
            return type_hash
        if value is None:
            value = {}
        elif not isinstance(value, dict):
            self._degrade(f"Value for struct {type_name!r} is not an object")
            value = {}
        encoded = bytearray(type_hash)
        for field in fields:
            encoded += self.encode_field(field.type, value.get(field.name))
        return keccak(bytes(encoded))

    def encode_field(self, field_type: str, value: JsonValue) -> bytes:
        element_type = array_element_type(field_type)
        if element_type is not None:
            if value is None:
                value = []
            elif not isinstance(value, list):
                self._degrade(f"Value for {field_type} is not an array")
                value = []
            return keccak(b"".join(
                self.encode_field(element_type, element) for element in value
            ))

        struct_name = base_type(field_type)
        if struct_name in self.type_map:
            return self.hash_struct(struct_name, value)

        type_ = struct_name.lower()
        if type_ == "address":
            return self._encode_address(value)
        if type_.startswith("uint"):
            return self._encode_uint(type_, value)
        if type_.startswith("int"):
            return self._encode_int(type_, value)
        if type_ == "bool":
            return self._encode_bool(value)
        if type_ == "string":
            if isinstance(value, str):
                return keccak(text=value)
            return self._degrade(f"Value for string is not a string: {value!r}")
        if type_ == "bytes":
            return self._encode_dynamic_bytes(value)
        if type_.startswith("bytes"):
            return self._encode_fixed_bytes(type_, value)
        return self._degrade(f"Unsupported EIP-712 type {field_type!r}")

    def _encode_address(self, value: JsonValue) -> bytes:
        if isinstance(value, str) and is_hex_address(value):
            return encode(["address"], [to_canonical_address(value)])
        return self._degrade(f"Invalid address {value!r}")

    def _encode_bool(self, value: JsonValue) -> bytes:
        if isinstance(value, bool):
            return encode(["bool"], [value])
        if isinstance(value, int):
            return encode(["bool"], [value != 0])
        return self._degrade(f"Invalid bool value {value!r}", "false")

    def _parse_int(self, type_: str, value: JsonValue) -> int | None:
        if value is None:
            self._degrade(f"Missing {type_} value")
            return None
        try:
            return parse_quantity(value)
        except ValueError:
            self._degrade(f"Invalid {type_} value {value!r}")
            return None

    def _encode_uint(self, type_: str, value: JsonValue) -> bytes:
        number = self._parse_int(type_, value)
        if number is None:
            return ZERO_WORD
        if number < 0 or number >= UINT256_MODULUS:
            raise InputException(
                InputExceptionCode.MalformedInput,
                f"Value {value!r} out of range for {type_}",
            )
        return encode(["uint256"], [number])

    def _encode_int(self, type_: str, value: JsonValue) -> bytes:
        number = self._parse_int(type_, value)
        if number is None:
            return ZERO_WORD
        return encode(["uint256"], [to_twos_complement(number)])

    def _decode_bytes(self, value: JsonValue) -> bytes | None:
        if isinstance(value, (bytes, bytearray)):
            return bytes(value)
        if isinstance(value, str):
            try:
                return hex_to_bytes(value)
            except InputException:
                self._degrade(f"Invalid hex bytes {value!r}", "empty bytes")
                return b""
        return None

    def _encode_dynamic_bytes(self, value: JsonValue) -> bytes:
        data = self._decode_bytes(value)
        if data is None:
            return self._degrade(f"Value for bytes is not hex: {value!r}")
        return keccak(data)

    def _encode_fixed_bytes(self, type_: str, value: JsonValue) -> bytes:
        size = type_[len("bytes"):]
        if not size.isdigit() or not 1 <= int(size) <= 32:
            return self._degrade(f"Unsupported EIP-712 type {type_!r}")
        data = self._decode_bytes(value)
        if data is None:
            return self._degrade(f"Value for {type_} is not hex: {value!r}")
        if len(data) > 32:
            raise InputException(
                InputExceptionCode.MalformedInput,
                f"Value {value!r} longer than 32 bytes for {type_}",
            )
        if len(data) > int(size):
            return self._degrade(
                f"Value {value!r} longer than {size} bytes for {type_}")
        return encode(["bytes32"], [data])

    def _degrade(self, message: str, fallback: str = "zero") -> bytes:
        if self.strict:
            raise InputException(InputExceptionCode.MalformedInput, message)
        logging.warning(f"{message}; encoding as {fallback}")
        return ZERO_WORD


def load_typed_data(typed_data: str | dict) -> dict:
    if isinstance(typed_data, (str, bytes)):
        try:
            typed_data = json.loads(typed_data)
        except json.decoder.JSONDecodeError as excp:
            raise InputException(
                InputExceptionCode.MalformedInput,
                f"Invalid typed data json: {str(excp)}",
            )
    if not isinstance(typed_data, dict):
        raise InputException(
            InputExceptionCode.MalformedInput, "Typed data must be an object")
    for key in ("types", "primaryType", "domain", "message"):
        if key not in typed_data:
            raise InputException(
                InputExceptionCode.MalformedInput,
                f"Typed data is missing {key}",
            )
    if not isinstance(typed_data["primaryType"], str):
        raise InputException(
            InputExceptionCode.MalformedInput, "primaryType must be a string")
    for key in ("domain", "message"):
        if not isinstance(typed_data[key], dict):
            raise InputException(
                InputExceptionCode.MalformedInput, f"{key} must be an object")
    return typed_data


def hash_domain(domain: dict[str, Any], encoder: TypedDataEncoder) -> bytes:
    return encoder.hash_struct(EIP712_DOMAIN, domain)


def compute_digest(typed_data: str | dict, strict: bool = False) -> bytes:
    """
    keccak256(0x19 || 0x01 || domainSeparator || hashStruct(message))

    Args:
        typed_data: eth_signTypedData_v4 document as json text or a dict
            with "types", "primaryType", "domain" and "message".
        strict: raise instead of zero-encoding malformed values.

    Returns:
        32-byte digest to sign.
    """
    document = load_typed_data(typed_data)
    type_map = parse_type_map(document["types"])
    domain = document["domain"]
    if EIP712_DOMAIN not in type_map:
        type_map[EIP712_DOMAIN] = infer_domain_type(domain)

    encoder = TypedDataEncoder(type_map, strict)
    domain_separator = hash_domain(domain, encoder)
    message_hash = encoder.hash_struct(
        document["primaryType"], document["message"])
    return keccak(b"\x19\x01" + domain_separator + message_hash)
