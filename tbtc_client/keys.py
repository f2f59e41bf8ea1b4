"""
Deterministic identifiers the ledger uses to index bridge requests.

These must match the ledger's own derivation exactly: a mismatch does not
raise anywhere, the lookup simply finds nothing.
"""

from web3 import Web3

from .bitcoin import BitcoinUtxo, prefix_output_script, txid_display_to_internal
from .errors import FatalError


def build_redemption_key(wallet_public_key_hash: bytes, redeemer_output_script: bytes) -> bytes:
    """
    Build the key of a redemption request.

    keccak256(keccak256(len(script) || script) || walletPubKeyHash)

    Args:
        wallet_public_key_hash: 20-byte wallet public key hash
        redeemer_output_script: Unprefixed output script (no length byte)
    """
    if len(wallet_public_key_hash) != 20:
        raise FatalError(
            f"Wallet public key hash must be 20 bytes, got {len(wallet_public_key_hash)}"
        )

    script_hash = Web3.solidity_keccak(["bytes"], [prefix_output_script(redeemer_output_script)])
    return bytes(
        Web3.solidity_keccak(["bytes32", "bytes20"], [script_hash, wallet_public_key_hash])
    )


def build_deposit_key(deposit_tx_hash: str, deposit_output_index: int) -> bytes:
    """
    Build the key of a revealed deposit.

    Args:
        deposit_tx_hash: Deposit transaction hash in display byte order
        deposit_output_index: Index of the output funding the deposit
    """
    return bytes(
        Web3.solidity_keccak(
            ["bytes32", "uint32"],
            [txid_display_to_internal(deposit_tx_hash), deposit_output_index],
        )
    )


def build_utxo_hash(utxo: BitcoinUtxo) -> bytes:
    """keccak256(txHash || txOutputIndex || txOutputValue), txHash in internal order."""
    return bytes(
        Web3.solidity_keccak(
            ["bytes32", "uint32", "uint64"],
            [txid_display_to_internal(utxo.transaction_hash), utxo.output_index, utxo.value],
        )
    )
