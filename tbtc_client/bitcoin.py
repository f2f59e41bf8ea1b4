"""
Bitcoin data structures and utilities for transaction building and SPV proofs.

Byte order convention used throughout the package:
- Display order: transaction and block hashes as shown by Bitcoin Core and
  block explorers (reversed hex). This is how hashes travel between
  components.
- Internal order: raw sha256d output. This is what the ledger hashes and
  compares, so hashes are reversed exactly where they cross that boundary.
"""

import hashlib
from dataclasses import dataclass, field
from typing import List, Tuple

from .errors import FatalError


def sha256d(data: bytes) -> bytes:
    """Double SHA256 hash (Bitcoin standard)."""
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def hash160(data: bytes) -> bytes:
    """RIPEMD160(SHA256(data)), used for public key hashes."""
    return hashlib.new("ripemd160", hashlib.sha256(data).digest()).digest()


def reverse_bytes(data: bytes) -> bytes:
    """Reverse byte order (for Bitcoin little-endian display)."""
    return data[::-1]


def bytes_to_hex_le(data: bytes) -> str:
    """Convert bytes to hex string in little-endian display format."""
    return reverse_bytes(data).hex()


def hex_le_to_bytes(hex_str: str) -> bytes:
    """Convert little-endian hex string to bytes."""
    return reverse_bytes(bytes.fromhex(hex_str))


def txid_display_to_internal(txid: str) -> bytes:
    """Convert a display format txid (optionally 0x-prefixed) to internal bytes."""
    txid = txid.lower().removeprefix("0x")
    internal = hex_le_to_bytes(txid)
    if len(internal) != 32:
        raise ValueError(f"Transaction hash must be 32 bytes, got {len(internal)}")
    return internal


def txid_internal_to_display(internal: bytes) -> str:
    """Convert internal byte order txid to display format hex."""
    return bytes_to_hex_le(internal)


@dataclass(frozen=True)
class BitcoinUtxo:
    """Unspent transaction output.

    transaction_hash is kept in display order; convert with
    txid_display_to_internal before embedding it in a ledger value.
    """

    transaction_hash: str
    output_index: int
    value: int  # satoshis


@dataclass(frozen=True)
class RawTransaction:
    """Raw transaction in hex format."""

    transaction_hex: str


@dataclass(frozen=True)
class RawTransactionVectors:
    """
    Transaction decomposed into the parts the ledger's proof verifier expects.

    Witness data is not part of the vectors; the concatenation of the four
    fields is the legacy serialization whose sha256d is the txid.
    """

    version: bytes  # 4 bytes
    inputs: bytes  # compact size count followed by inputs
    outputs: bytes  # compact size count followed by outputs
    locktime: bytes  # 4 bytes

    def to_dict(self) -> dict:
        return {
            "version": self.version.hex(),
            "inputVector": self.inputs.hex(),
            "outputVector": self.outputs.hex(),
            "locktime": self.locktime.hex(),
        }


@dataclass
class BlockHeader:
    """Bitcoin block header (80 bytes)."""

    version: int
    prev_block_hash: bytes  # 32 bytes, internal byte order
    merkle_root: bytes  # 32 bytes, internal byte order
    timestamp: int
    bits: int
    nonce: int

    @classmethod
    def from_bytes(cls, data: bytes) -> "BlockHeader":
        """Parse 80-byte header."""
        if len(data) != 80:
            raise ValueError(f"Header must be 80 bytes, got {len(data)}")

        return cls(
            version=int.from_bytes(data[0:4], "little"),
            prev_block_hash=data[4:36],
            merkle_root=data[36:68],
            timestamp=int.from_bytes(data[68:72], "little"),
            bits=int.from_bytes(data[72:76], "little"),
            nonce=int.from_bytes(data[76:80], "little"),
        )

    def to_bytes(self) -> bytes:
        """Serialize to 80 bytes."""
        return (
            self.version.to_bytes(4, "little")
            + self.prev_block_hash
            + self.merkle_root
            + self.timestamp.to_bytes(4, "little")
            + self.bits.to_bytes(4, "little")
            + self.nonce.to_bytes(4, "little")
        )

    def block_hash(self) -> bytes:
        """Calculate block hash (internal byte order)."""
        return sha256d(self.to_bytes())

    def block_hash_hex(self) -> str:
        """Block hash in display format (reversed, hex)."""
        return bytes_to_hex_le(self.block_hash())

    def target(self) -> int:
        """Difficulty target encoded in the compact bits field."""
        return bits_to_target(self.bits)

    def has_valid_pow(self) -> bool:
        """Check the header hash against its own target."""
        return int.from_bytes(self.block_hash(), "little") <= self.target()


def bits_to_target(bits: int) -> int:
    """Expand compact difficulty bits into the full 256-bit target."""
    exponent = bits >> 24
    mantissa = bits & 0x007FFFFF
    if exponent <= 3:
        return mantissa >> (8 * (3 - exponent))
    return mantissa << (8 * (exponent - 3))


def split_headers(headers: bytes) -> List[bytes]:
    """Split concatenated 80-byte headers."""
    if len(headers) % 80 != 0:
        raise ValueError(f"Headers length {len(headers)} is not a multiple of 80")
    return [headers[i : i + 80] for i in range(0, len(headers), 80)]


# Merkle trees


def compute_merkle_root(txids: List[bytes]) -> bytes:
    """
    Compute Merkle root from list of transaction IDs.
    Bitcoin uses double-SHA256 Merkle trees.
    """
    if not txids:
        raise ValueError("Cannot compute Merkle root of empty list")

    hashes = list(txids)

    while len(hashes) > 1:
        # If odd number, duplicate last hash
        if len(hashes) % 2 == 1:
            hashes.append(hashes[-1])

        hashes = [sha256d(hashes[i] + hashes[i + 1]) for i in range(0, len(hashes), 2)]

    return hashes[0]


def generate_merkle_proof(txids: List[bytes], tx_index: int) -> Tuple[List[bytes], bytes]:
    """
    Generate Merkle proof for transaction at given index.

    Returns:
        (proof, merkle_root) where proof is list of sibling hashes
    """
    if not txids:
        raise ValueError("Cannot generate proof for empty list")
    if tx_index < 0 or tx_index >= len(txids):
        raise ValueError(f"tx_index {tx_index} out of range [0, {len(txids)})")

    proof: List[bytes] = []
    hashes = list(txids)
    index = tx_index

    while len(hashes) > 1:
        if len(hashes) % 2 == 1:
            hashes.append(hashes[-1])

        sibling_index = index ^ 1  # XOR to flip last bit
        proof.append(hashes[sibling_index])

        hashes = [sha256d(hashes[i] + hashes[i + 1]) for i in range(0, len(hashes), 2)]
        index //= 2

    return proof, hashes[0]


def verify_merkle_proof(
    txid: bytes, merkle_root: bytes, proof: List[bytes], tx_index: int
) -> bool:
    """Verify a Merkle proof."""
    current = txid
    index = tx_index

    for sibling in proof:
        if index & 1 == 0:
            current = sha256d(current + sibling)
        else:
            current = sha256d(sibling + current)
        index //= 2

    return current == merkle_root


# Compact size integers


def parse_varint(data: bytes, offset: int = 0) -> Tuple[int, int]:
    """
    Parse Bitcoin VarInt.
    Returns (value, new_offset).
    """
    first = data[offset]
    if first < 0xFD:
        return first, offset + 1
    elif first == 0xFD:
        return int.from_bytes(data[offset + 1 : offset + 3], "little"), offset + 3
    elif first == 0xFE:
        return int.from_bytes(data[offset + 1 : offset + 5], "little"), offset + 5
    else:
        return int.from_bytes(data[offset + 1 : offset + 9], "little"), offset + 9


def encode_varint(value: int) -> bytes:
    if value < 0xFD:
        return bytes([value])
    if value <= 0xFFFF:
        return b"\xfd" + value.to_bytes(2, "little")
    if value <= 0xFFFFFFFF:
        return b"\xfe" + value.to_bytes(4, "little")
    return b"\xff" + value.to_bytes(8, "little")


# Output scripts


def prefix_output_script(script: bytes) -> bytes:
    """Prepend a single length byte, as the ledger stores output scripts."""
    if len(script) > 255:
        raise FatalError(
            f"Output script of {len(script)} bytes does not fit a single-byte length prefix"
        )
    return bytes([len(script)]) + script


def strip_output_script_prefix(prefixed: bytes) -> bytes:
    """Remove the single length byte prepended by prefix_output_script."""
    if not prefixed:
        raise ValueError("Empty output script")
    length = prefixed[0]
    script = prefixed[1:]
    if len(script) != length:
        raise ValueError(
            f"Output script length prefix {length} does not match payload length {len(script)}"
        )
    return script


def p2pkh_script(pubkey_hash: bytes) -> bytes:
    """OP_DUP OP_HASH160 <20 bytes> OP_EQUALVERIFY OP_CHECKSIG."""
    return b"\x76\xa9\x14" + pubkey_hash + b"\x88\xac"


def p2wpkh_script(pubkey_hash: bytes) -> bytes:
    """OP_0 <20 bytes>."""
    return b"\x00\x14" + pubkey_hash


def push_data(data: bytes) -> bytes:
    """Minimal script push of a data element."""
    if len(data) < 0x4C:
        return bytes([len(data)]) + data
    if len(data) <= 0xFF:
        return b"\x4c" + bytes([len(data)]) + data
    if len(data) <= 0xFFFF:
        return b"\x4d" + len(data).to_bytes(2, "little") + data
    raise ValueError(f"Data element of {len(data)} bytes is too large to push")


def extract_pubkey_hash(script_pubkey: bytes) -> Tuple[bytes | None, str]:
    """
    Extract pubkey hash from scriptPubKey.

    Returns:
        (pubkey_hash, script_type) where script_type is "p2wpkh", "p2pkh", or "unknown"
    """
    # P2WPKH: OP_0 <20 bytes>
    if len(script_pubkey) == 22 and script_pubkey[0] == 0x00 and script_pubkey[1] == 0x14:
        return script_pubkey[2:22], "p2wpkh"

    # P2PKH: OP_DUP OP_HASH160 <20 bytes> OP_EQUALVERIFY OP_CHECKSIG
    if (
        len(script_pubkey) == 25
        and script_pubkey[0] == 0x76
        and script_pubkey[1] == 0xA9
        and script_pubkey[2] == 0x14
        and script_pubkey[23] == 0x88
        and script_pubkey[24] == 0xAC
    ):
        return script_pubkey[3:23], "p2pkh"

    return None, "unknown"


# Transactions


@dataclass
class TxInput:
    prev_txid: bytes  # 32 bytes, internal byte order
    prev_vout: int
    script_sig: bytes = b""
    sequence: int = 0xFFFFFFFF
    witness: List[bytes] = field(default_factory=list)

    def serialize(self) -> bytes:
        return (
            self.prev_txid
            + self.prev_vout.to_bytes(4, "little")
            + encode_varint(len(self.script_sig))
            + self.script_sig
            + self.sequence.to_bytes(4, "little")
        )


@dataclass
class TxOutput:
    """Bitcoin transaction output."""

    value: int  # satoshis
    script_pubkey: bytes

    def serialize(self) -> bytes:
        return (
            self.value.to_bytes(8, "little")
            + encode_varint(len(self.script_pubkey))
            + self.script_pubkey
        )


@dataclass
class Transaction:
    version: int
    inputs: List[TxInput]
    outputs: List[TxOutput]
    locktime: int = 0

    @property
    def has_witness(self) -> bool:
        return any(inp.witness for inp in self.inputs)

    def input_vector(self) -> bytes:
        return encode_varint(len(self.inputs)) + b"".join(i.serialize() for i in self.inputs)

    def output_vector(self) -> bytes:
        return encode_varint(len(self.outputs)) + b"".join(o.serialize() for o in self.outputs)

    def serialize(self, include_witness: bool = True) -> bytes:
        version = self.version.to_bytes(4, "little")
        locktime = self.locktime.to_bytes(4, "little")

        if not (include_witness and self.has_witness):
            return version + self.input_vector() + self.output_vector() + locktime

        witness = b""
        for inp in self.inputs:
            witness += encode_varint(len(inp.witness))
            for item in inp.witness:
                witness += encode_varint(len(item)) + item

        return (
            version
            + b"\x00\x01"  # segwit marker and flag
            + self.input_vector()
            + self.output_vector()
            + witness
            + locktime
        )

    def txid(self) -> bytes:
        """Transaction hash (internal byte order)."""
        return sha256d(self.serialize(include_witness=False))

    def txid_hex(self) -> str:
        """Transaction hash in display format."""
        return txid_internal_to_display(self.txid())


def deserialize_transaction(raw_tx: bytes) -> Transaction:
    """Parse a raw transaction, with or without segwit serialization."""
    try:
        offset = 0
        version = int.from_bytes(raw_tx[0:4], "little")
        offset += 4

        segwit = False
        if raw_tx[offset] == 0x00 and raw_tx[offset + 1] == 0x01:
            segwit = True
            offset += 2  # Skip marker and flag

        input_count, offset = parse_varint(raw_tx, offset)
        inputs: List[TxInput] = []
        for _ in range(input_count):
            prev_txid = raw_tx[offset : offset + 32]
            offset += 32
            prev_vout = int.from_bytes(raw_tx[offset : offset + 4], "little")
            offset += 4
            script_len, offset = parse_varint(raw_tx, offset)
            script_sig = raw_tx[offset : offset + script_len]
            offset += script_len
            sequence = int.from_bytes(raw_tx[offset : offset + 4], "little")
            offset += 4
            inputs.append(TxInput(prev_txid, prev_vout, script_sig, sequence))

        output_count, offset = parse_varint(raw_tx, offset)
        outputs: List[TxOutput] = []
        for _ in range(output_count):
            value = int.from_bytes(raw_tx[offset : offset + 8], "little")
            offset += 8
            script_len, offset = parse_varint(raw_tx, offset)
            script_pubkey = raw_tx[offset : offset + script_len]
            offset += script_len
            outputs.append(TxOutput(value=value, script_pubkey=script_pubkey))

        if segwit:
            for inp in inputs:
                item_count, offset = parse_varint(raw_tx, offset)
                for _ in range(item_count):
                    item_len, offset = parse_varint(raw_tx, offset)
                    inp.witness.append(raw_tx[offset : offset + item_len])
                    offset += item_len

        locktime = int.from_bytes(raw_tx[offset : offset + 4], "little")
        offset += 4
    except IndexError as e:
        raise ValueError(f"Truncated transaction: {e}") from e

    if offset != len(raw_tx):
        raise ValueError(f"Unexpected trailing data after transaction at offset {offset}")

    return Transaction(version=version, inputs=inputs, outputs=outputs, locktime=locktime)


def decompose_raw_transaction(raw_transaction: RawTransaction) -> RawTransactionVectors:
    """Decompose a raw transaction into ledger vectors, dropping witness data."""
    tx = deserialize_transaction(bytes.fromhex(raw_transaction.transaction_hex))
    return RawTransactionVectors(
        version=tx.version.to_bytes(4, "little"),
        inputs=tx.input_vector(),
        outputs=tx.output_vector(),
        locktime=tx.locktime.to_bytes(4, "little"),
    )
