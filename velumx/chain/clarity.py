"""
Clarity Value Codec

The subset of Clarity's consensus serialization needed to call read-only
contract functions through a Stacks node: principals going in, and the
uint/tuple/optional/response values coming back. Addresses are c32check
strings ("SP..."/"ST..."), optionally suffixed with ".contract-name".

Decoded values map to Python as:
- int/uint -> int, bool -> bool, buffer -> bytes, strings -> str
- none -> None, (some x) -> x
- (ok x)/(err x) -> ClarityResponse
- tuple -> dict, list -> list, principal -> address string

Malformed input raises ValueError.
"""

import hashlib
from dataclasses import dataclass
from typing import Any, Tuple

C32_ALPHABET = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"

INT = 0x00
UINT = 0x01
BUFFER = 0x02
TRUE = 0x03
FALSE = 0x04
STANDARD_PRINCIPAL = 0x05
CONTRACT_PRINCIPAL = 0x06
RESPONSE_OK = 0x07
RESPONSE_ERR = 0x08
NONE = 0x09
SOME = 0x0A
LIST = 0x0B
TUPLE = 0x0C
STRING_ASCII = 0x0D
STRING_UTF8 = 0x0E

HASH160_SIZE = 20
CHECKSUM_SIZE = 4


@dataclass(frozen=True)
class ClarityResponse:
    ok: bool
    value: Any


# =============================================================================
# c32check addresses
# =============================================================================

def _normalize(text: str) -> str:
    return text.upper().replace("O", "0").replace("L", "1").replace("I", "1")


def c32_encode(data: bytes) -> str:
    value = int.from_bytes(data, "big")
    digits = []
    while value:
        value, digit = divmod(value, 32)
        digits.append(C32_ALPHABET[digit])
    # Each leading zero byte is written as one '0'
    leading = len(data) - len(data.lstrip(b"\x00"))
    return "0" * leading + "".join(reversed(digits))


def c32_decode(text: str) -> bytes:
    text = _normalize(text)
    value = 0
    for char in text:
        digit = C32_ALPHABET.find(char)
        if digit < 0:
            raise ValueError(f"Invalid c32 character {char!r}")
        value = value * 32 + digit
    leading = len(text) - len(text.lstrip("0"))
    return b"\x00" * leading + value.to_bytes((value.bit_length() + 7) // 8, "big")


def _checksum(version: int, data: bytes) -> bytes:
    digest = hashlib.sha256(hashlib.sha256(bytes([version]) + data).digest()).digest()
    return digest[:CHECKSUM_SIZE]


def decode_address(address: str) -> Tuple[int, bytes]:
    """(version, hash160) of a c32check address."""
    if len(address) < 3 or address[0] != "S":
        raise ValueError(f"Not a Stacks address: {address!r}")

    version = C32_ALPHABET.find(_normalize(address[1]))
    if version < 0:
        raise ValueError(f"Invalid address version in {address!r}")

    payload = c32_decode(address[2:]).rjust(HASH160_SIZE + CHECKSUM_SIZE, b"\x00")
    data, checksum = payload[:-CHECKSUM_SIZE], payload[-CHECKSUM_SIZE:]
    if len(data) != HASH160_SIZE:
        raise ValueError(f"Invalid address length: {address!r}")
    if _checksum(version, data) != checksum:
        raise ValueError(f"Address checksum mismatch: {address!r}")
    return version, data


def encode_address(version: int, hash160: bytes) -> str:
    return "S" + C32_ALPHABET[version] + c32_encode(hash160 + _checksum(version, hash160))


# =============================================================================
# Serialization
# =============================================================================

def serialize_principal(principal: str) -> bytes:
    address, _, contract_name = principal.partition(".")
    version, hash160 = decode_address(address)
    if not contract_name:
        return bytes([STANDARD_PRINCIPAL, version]) + hash160

    name = contract_name.encode("ascii")
    if len(name) > 128:
        raise ValueError(f"Contract name too long: {contract_name!r}")
    return bytes([CONTRACT_PRINCIPAL, version]) + hash160 + bytes([len(name)]) + name


def serialize_uint(value: int) -> bytes:
    return bytes([UINT]) + value.to_bytes(16, "big")


def to_hex(data: bytes) -> str:
    return "0x" + data.hex()


def from_hex(text: str) -> bytes:
    if text.startswith("0x"):
        text = text[2:]
    return bytes.fromhex(text)


class _Reader:
    def __init__(self, data: bytes):
        self.data = data
        self.offset = 0

    def take(self, size: int) -> bytes:
        end = self.offset + size
        if end > len(self.data):
            raise ValueError("Truncated Clarity value")
        chunk = self.data[self.offset:end]
        self.offset = end
        return chunk

    def u8(self) -> int:
        return self.take(1)[0]

    def u32(self) -> int:
        return int.from_bytes(self.take(4), "big")

    def principal(self) -> str:
        version = self.u8()
        return encode_address(version, self.take(HASH160_SIZE))

    def value(self) -> Any:
        kind = self.u8()
        if kind == INT:
            return int.from_bytes(self.take(16), "big", signed=True)
        if kind == UINT:
            return int.from_bytes(self.take(16), "big")
        if kind == BUFFER:
            return self.take(self.u32())
        if kind == TRUE:
            return True
        if kind == FALSE:
            return False
        if kind == STANDARD_PRINCIPAL:
            return self.principal()
        if kind == CONTRACT_PRINCIPAL:
            address = self.principal()
            name = self.take(self.u8()).decode("ascii")
            return f"{address}.{name}"
        if kind in (RESPONSE_OK, RESPONSE_ERR):
            return ClarityResponse(ok=kind == RESPONSE_OK, value=self.value())
        if kind == NONE:
            return None
        if kind == SOME:
            return self.value()
        if kind == LIST:
            return [self.value() for _ in range(self.u32())]
        if kind == TUPLE:
            fields = {}
            for _ in range(self.u32()):
                name = self.take(self.u8()).decode("ascii")
                fields[name] = self.value()
            return fields
        if kind == STRING_ASCII:
            return self.take(self.u32()).decode("ascii")
        if kind == STRING_UTF8:
            return self.take(self.u32()).decode("utf-8")
        raise ValueError(f"Unknown Clarity type prefix 0x{kind:02x}")


def deserialize(data: bytes) -> Any:
    reader = _Reader(data)
    value = reader.value()
    if reader.offset != len(data):
        raise ValueError("Trailing bytes after Clarity value")
    return value
