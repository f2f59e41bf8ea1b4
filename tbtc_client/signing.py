"""
Wallet key handling and input signing for P2PKH and P2WPKH outputs.

Signatures are produced by libsecp256k1 (through coincurve) with RFC 6979
nonces, so signing the same transaction twice yields identical bytes.
"""

import copy
from dataclasses import dataclass

from coincurve import PrivateKey, PublicKey

from .address import base58check_decode, base58check_encode
from .bitcoin import (
    Transaction,
    TxOutput,
    encode_varint,
    extract_pubkey_hash,
    hash160,
    p2pkh_script,
    p2wpkh_script,
    push_data,
    sha256d,
)
from .errors import FatalError

SIGHASH_ALL = 1

# WIF version bytes
WIF_MAINNET = 0x80
WIF_TESTNET = 0xEF


@dataclass(frozen=True)
class WalletKey:
    """Private key of a bridge wallet."""

    private_key: PrivateKey
    compressed: bool = True

    @classmethod
    def from_wif(cls, wif: str) -> "WalletKey":
        decoded = base58check_decode(wif)
        if decoded is None:
            raise FatalError("Invalid WIF private key")

        version, payload = decoded
        if version not in (WIF_MAINNET, WIF_TESTNET):
            raise FatalError(f"Unsupported WIF version byte 0x{version:02x}")

        if len(payload) == 33 and payload[32] == 0x01:
            return cls(PrivateKey(payload[:32]), compressed=True)
        if len(payload) == 32:
            return cls(PrivateKey(payload), compressed=False)
        raise FatalError("Invalid WIF private key length")

    def to_wif(self, testnet: bool = False) -> str:
        payload = self.private_key.secret + (b"\x01" if self.compressed else b"")
        return base58check_encode(WIF_TESTNET if testnet else WIF_MAINNET, payload)

    @property
    def public_key(self) -> bytes:
        return self.private_key.public_key.format(compressed=self.compressed)

    @property
    def public_key_hash(self) -> bytes:
        return hash160(self.public_key)

    def output_script(self, witness: bool) -> bytes:
        """Script locking funds to this wallet: P2WPKH if witness, else P2PKH."""
        if witness:
            return p2wpkh_script(self.public_key_hash)
        return p2pkh_script(self.public_key_hash)


def compress_public_key(public_key: bytes) -> bytes:
    """
    Compress a secp256k1 public key.

    Accepts the 64-byte X||Y form returned by the wallet registry as well as
    65-byte (0x04-prefixed) and already compressed keys.
    """
    if len(public_key) == 64:
        public_key = b"\x04" + public_key
    try:
        return PublicKey(public_key).format(compressed=True)
    except ValueError as e:
        raise FatalError(f"Invalid wallet public key: {e}") from e


def compute_sighash_segwit(
    tx: Transaction,
    input_index: int,
    script_code: bytes,
    value: int,
    sighash_type: int = SIGHASH_ALL,
) -> bytes:
    """BIP 143 signature hash."""
    hash_prevouts = sha256d(
        b"".join(inp.prev_txid + inp.prev_vout.to_bytes(4, "little") for inp in tx.inputs)
    )
    hash_sequence = sha256d(b"".join(inp.sequence.to_bytes(4, "little") for inp in tx.inputs))
    hash_outputs = sha256d(b"".join(out.serialize() for out in tx.outputs))

    target = tx.inputs[input_index]

    preimage = (
        tx.version.to_bytes(4, "little")
        + hash_prevouts
        + hash_sequence
        + target.prev_txid
        + target.prev_vout.to_bytes(4, "little")
        + encode_varint(len(script_code))
        + script_code
        + value.to_bytes(8, "little")
        + target.sequence.to_bytes(4, "little")
        + hash_outputs
        + tx.locktime.to_bytes(4, "little")
        + sighash_type.to_bytes(4, "little")
    )

    return sha256d(preimage)


def compute_sighash_legacy(
    tx: Transaction,
    input_index: int,
    script_pubkey: bytes,
    sighash_type: int = SIGHASH_ALL,
) -> bytes:
    """Pre-segwit signature hash for SIGHASH_ALL."""
    unsigned = copy.deepcopy(tx)
    for i, inp in enumerate(unsigned.inputs):
        inp.script_sig = script_pubkey if i == input_index else b""
        inp.witness = []

    preimage = unsigned.serialize(include_witness=False) + sighash_type.to_bytes(4, "little")
    return sha256d(preimage)


def sign_input(
    tx: Transaction,
    input_index: int,
    prev_output: TxOutput,
    key: WalletKey,
) -> None:
    """
    Sign one input in place.

    The spent output must be a P2PKH or P2WPKH output locked to the key.
    """
    pubkey_hash, script_type = extract_pubkey_hash(prev_output.script_pubkey)
    if pubkey_hash is None:
        raise FatalError(
            f"Unsupported script type of spent output: {prev_output.script_pubkey.hex()}"
        )
    if pubkey_hash != key.public_key_hash:
        raise FatalError("Spent output is not locked to the wallet public key")

    inp = tx.inputs[input_index]

    if script_type == "p2wpkh":
        sighash = compute_sighash_segwit(
            tx, input_index, p2pkh_script(pubkey_hash), prev_output.value
        )
        signature = key.private_key.sign(sighash, hasher=None) + bytes([SIGHASH_ALL])
        inp.script_sig = b""
        inp.witness = [signature, key.public_key]
    else:
        sighash = compute_sighash_legacy(tx, input_index, prev_output.script_pubkey)
        signature = key.private_key.sign(sighash, hasher=None) + bytes([SIGHASH_ALL])
        inp.script_sig = push_data(signature) + push_data(key.public_key)
        inp.witness = []
