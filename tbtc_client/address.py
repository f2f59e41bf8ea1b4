"""
Bitcoin address and key decoding.

Supports:
- Segwit (bech32 / bech32m): bc1q..., bc1p... (mainnet), tb1..., bcrt1... (test networks)
- Base58Check: P2PKH (1..., m.../n...), P2SH (3..., 2...) and WIF private keys

Redeemer output scripts handed to the ledger are derived from addresses
here; they are unprefixed (no length byte).
"""

import hashlib
from typing import Tuple

# Bech32 character set
BECH32_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
BECH32_CONST = 1
BECH32M_CONST = 0x2BC830A3

SEGWIT_HRPS = ("bc", "tb", "bcrt")

P2PKH_VERSIONS = (0x00, 0x6F)
P2SH_VERSIONS = (0x05, 0xC4)


def bech32_polymod(values: list[int]) -> int:
    """Internal function for Bech32 checksum computation."""
    GEN = [0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3]
    chk = 1
    for v in values:
        b = chk >> 25
        chk = ((chk & 0x1FFFFFF) << 5) ^ v
        for i in range(5):
            chk ^= GEN[i] if ((b >> i) & 1) else 0
    return chk


def bech32_hrp_expand(hrp: str) -> list[int]:
    """Expand HRP for checksum computation."""
    return [ord(x) >> 5 for x in hrp] + [0] + [ord(x) & 31 for x in hrp]


def convert_bits(data: list[int], frombits: int, tobits: int, pad: bool) -> list[int] | None:
    """Convert between bit widths."""
    acc = 0
    bits = 0
    ret = []
    maxv = (1 << tobits) - 1
    max_acc = (1 << (frombits + tobits - 1)) - 1

    for value in data:
        if value < 0 or (value >> frombits):
            return None
        acc = ((acc << frombits) | value) & max_acc
        bits += frombits
        while bits >= tobits:
            bits -= tobits
            ret.append((acc >> bits) & maxv)

    if pad:
        if bits:
            ret.append((acc << (tobits - bits)) & maxv)
    elif bits >= frombits or ((acc << (tobits - bits)) & maxv):
        return None

    return ret


def bech32_decode(address: str) -> Tuple[str, int, bytes] | None:
    """
    Decode a segwit address.

    Version 0 programs must use the bech32 checksum, later versions bech32m
    (BIP 350).

    Returns:
        (hrp, witness_version, witness_program) or None if invalid
    """
    if address.lower() != address and address.upper() != address:
        return None
    address = address.lower()

    pos = address.rfind("1")
    if pos < 1 or pos + 7 > len(address):
        return None

    hrp = address[:pos]
    data = []
    for c in address[pos + 1 :]:
        if c not in BECH32_CHARSET:
            return None
        data.append(BECH32_CHARSET.index(c))

    const = bech32_polymod(bech32_hrp_expand(hrp) + data)
    if const not in (BECH32_CONST, BECH32M_CONST):
        return None

    # Remove checksum (last 6 characters)
    data = data[:-6]
    if len(data) < 1:
        return None

    version = data[0]
    if version > 16:
        return None
    if (version == 0) != (const == BECH32_CONST):
        return None

    program = convert_bits(data[1:], 5, 8, False)
    if program is None or not 2 <= len(program) <= 40:
        return None

    # Version 0 requires 20 or 32 byte programs
    if version == 0 and len(program) not in (20, 32):
        return None

    return hrp, version, bytes(program)


# Base58 character set
BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"


def base58_decode(s: str) -> bytes | None:
    """Decode a Base58 string."""
    num = 0
    for c in s:
        if c not in BASE58_ALPHABET:
            return None
        num = num * 58 + BASE58_ALPHABET.index(c)

    result = num.to_bytes((num.bit_length() + 7) // 8, "big")

    # Add leading zeros
    pad_size = len(s) - len(s.lstrip("1"))
    return b"\x00" * pad_size + result


def base58_encode(data: bytes) -> str:
    """Encode bytes as Base58."""
    num = int.from_bytes(data, "big")
    encoded = ""
    while num > 0:
        num, rem = divmod(num, 58)
        encoded = BASE58_ALPHABET[rem] + encoded

    pad_size = len(data) - len(data.lstrip(b"\x00"))
    return "1" * pad_size + encoded


def base58check_encode(version: int, payload: bytes) -> str:
    data = bytes([version]) + payload
    checksum = hashlib.sha256(hashlib.sha256(data).digest()).digest()[:4]
    return base58_encode(data + checksum)


def base58check_decode(s: str) -> Tuple[int, bytes] | None:
    """
    Decode a Base58Check encoded string.

    Returns:
        (version, payload) or None if invalid
    """
    data = base58_decode(s)
    if data is None or len(data) < 5:
        return None

    checksum = data[-4:]
    payload = data[:-4]

    expected_checksum = hashlib.sha256(hashlib.sha256(payload).digest()).digest()[:4]
    if checksum != expected_checksum:
        return None

    return (payload[0], payload[1:])


def address_to_output_script(address: str) -> bytes | None:
    """
    Convert a Bitcoin address into its output script.

    Returns None for invalid or unsupported addresses.
    """
    segwit = bech32_decode(address)
    if segwit is not None:
        hrp, version, program = segwit
        if hrp not in SEGWIT_HRPS:
            return None
        # OP_0 or OP_1..OP_16, then a direct push of the program
        opcode = 0x00 if version == 0 else 0x50 + version
        return bytes([opcode, len(program)]) + program

    decoded = base58check_decode(address)
    if decoded is None:
        return None

    version, payload = decoded
    if len(payload) != 20:
        return None
    if version in P2PKH_VERSIONS:
        return b"\x76\xa9\x14" + payload + b"\x88\xac"
    if version in P2SH_VERSIONS:
        return b"\xa9\x14" + payload + b"\x87"
    return None
