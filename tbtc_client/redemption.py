"""
Redemption handling: building, signing and proving redemption transactions.

A redemption transaction spends the wallet's main UTXO and pays every
pending redemption request to its redeemer output script. Whatever is left
after outputs and fees goes back to the wallet as an explicit change
output, which becomes the wallet's new main UTXO.
"""

from typing import Sequence

import structlog

from .bitcoin import (
    BitcoinUtxo,
    RawTransaction,
    Transaction,
    TxInput,
    TxOutput,
    decompose_raw_transaction,
    deserialize_transaction,
    hash160,
    txid_display_to_internal,
)
from .chain import Bridge, RedemptionRequest
from .errors import FatalError, InvalidRequestList
from .proof import ProofBuilder
from .rpc import BitcoinClient
from .signing import WalletKey, sign_input

logger = structlog.get_logger()

TX_VERSION = 1


async def make_redemptions(
    bitcoin_client: BitcoinClient,
    bridge: Bridge,
    wallet_private_key: str,
    main_utxo: BitcoinUtxo,
    redeemer_output_scripts: Sequence[bytes],
    witness: bool,
) -> RawTransaction:
    """
    Handle pending redemption requests of a wallet.

    Fetches the requests identified by the wallet key and the given output
    scripts, builds the redemption transaction spending main_utxo and
    broadcasts it. Broadcasting does not wait for acceptance: a rejected
    transaction is only detectable by the lack of confirmations later.

    It is up to the caller to serialize sweeps per wallet; two concurrent
    calls over the same main UTXO produce conflicting transactions.

    Args:
        wallet_private_key: Wallet private key in WIF format
        main_utxo: Main UTXO of the wallet, as known by the ledger
        redeemer_output_scripts: Unprefixed output scripts of the requests
        witness: Change output type, P2WPKH if True, P2PKH if False
    """
    raw_main_utxo_tx = await bitcoin_client.get_raw_transaction(main_utxo.transaction_hash)

    key = WalletKey.from_wif(wallet_private_key)
    requests = await fetch_redemption_requests(bridge, key.public_key, redeemer_output_scripts)

    transaction = create_redemption_transaction(
        wallet_private_key, main_utxo, raw_main_utxo_tx, requests, witness
    )

    await bitcoin_client.broadcast(transaction)
    return transaction


async def fetch_redemption_requests(
    bridge: Bridge,
    wallet_public_key: bytes,
    redeemer_output_scripts: Sequence[bytes],
) -> list[RedemptionRequest]:
    """
    Fetch pending redemption requests from the ledger.

    Raises NotFound (from the bridge) if any script does not identify a
    pending request of the wallet.
    """
    requests = []
    for script in redeemer_output_scripts:
        requests.append(await bridge.pending_redemptions(wallet_public_key, script))
    return requests


def validate_redemption_requests(requests: Sequence[RedemptionRequest]) -> None:
    """Reject empty request lists and requests that cannot cover their fees."""
    if len(requests) < 1:
        raise InvalidRequestList("There must be at least one request to redeem")

    for request in requests:
        fees = request.tx_max_fee + request.treasury_fee
        if request.requested_amount <= fees:
            raise InvalidRequestList(
                f"Requested amount {request.requested_amount} of redemption to "
                f"{request.redeemer_output_script.hex()} does not exceed its fees {fees}"
            )


def create_redemption_transaction(
    wallet_private_key: str,
    main_utxo: BitcoinUtxo,
    main_utxo_raw_transaction: RawTransaction,
    requests: Sequence[RedemptionRequest],
    witness: bool,
) -> RawTransaction:
    """
    Create a signed Bitcoin redemption transaction.

    The transaction has a single input (the main UTXO), one output per
    request valued requested_amount - tx_max_fee - treasury_fee, and a
    change output to the wallet when anything is left. The network fee is
    the sum of the requests' tx_max_fee.

    Signing is deterministic: the same inputs produce the same bytes.
    """
    validate_redemption_requests(requests)

    key = WalletKey.from_wif(wallet_private_key)

    funding_tx = deserialize_transaction(bytes.fromhex(main_utxo_raw_transaction.transaction_hex))
    if funding_tx.txid_hex() != main_utxo.transaction_hash.lower():
        raise FatalError(
            f"Raw transaction {funding_tx.txid_hex()} does not match main UTXO "
            f"{main_utxo.transaction_hash}"
        )
    if main_utxo.output_index >= len(funding_tx.outputs):
        raise FatalError(
            f"Output index {main_utxo.output_index} out of range "
            f"(tx has {len(funding_tx.outputs)} outputs)"
        )
    funding_output = funding_tx.outputs[main_utxo.output_index]
    if funding_output.value != main_utxo.value:
        raise FatalError(
            f"Main UTXO value {main_utxo.value} does not match output value {funding_output.value}"
        )

    outputs: list[TxOutput] = []
    total_outputs_value = 0
    tx_total_fee = 0

    for request in requests:
        output_value = request.requested_amount - request.tx_max_fee - request.treasury_fee
        total_outputs_value += output_value
        # TODO: accept a caller-proposed fee below the sum of tx_max_fee and
        # spread the difference over the outputs proportionally.
        tx_total_fee += request.tx_max_fee
        outputs.append(TxOutput(value=output_value, script_pubkey=request.redeemer_output_script))

    change_value = main_utxo.value - total_outputs_value - tx_total_fee
    if change_value < 0:
        raise InvalidRequestList(
            f"Main UTXO value {main_utxo.value} cannot cover outputs "
            f"{total_outputs_value} and fee {tx_total_fee}"
        )
    if change_value > 0:
        outputs.append(TxOutput(value=change_value, script_pubkey=key.output_script(witness)))

    transaction = Transaction(
        version=TX_VERSION,
        inputs=[
            TxInput(
                prev_txid=txid_display_to_internal(main_utxo.transaction_hash),
                prev_vout=main_utxo.output_index,
            )
        ],
        outputs=outputs,
    )
    sign_input(transaction, 0, funding_output, key)

    logger.info(
        "redemption_transaction_built",
        tx_hash=transaction.txid_hex(),
        main_utxo=f"{main_utxo.transaction_hash}:{main_utxo.output_index}",
        redemptions=len(requests),
        outputs_value=total_outputs_value,
        change_value=change_value,
        fee=tx_total_fee,
    )

    return RawTransaction(transaction_hex=transaction.serialize().hex())


async def prove_redemption(
    transaction_hash: str,
    main_utxo: BitcoinUtxo,
    wallet_public_key: bytes,
    bridge: Bridge,
    bitcoin_client: BitcoinClient,
) -> None:
    """
    Prove a mined redemption transaction and submit the proof to the ledger.

    The required depth is read from the ledger on every call. Raises
    InsufficientConfirmations if the transaction is not deep enough yet.

    Args:
        transaction_hash: Redemption transaction hash in display format
        main_utxo: Main UTXO of the wallet as currently known by the ledger
        wallet_public_key: Compressed wallet public key
    """
    confirmations = await bridge.tx_proof_difficulty_factor()
    proof = await ProofBuilder(bitcoin_client).assemble_transaction_proof(
        transaction_hash, confirmations
    )
    raw_transaction = await bitcoin_client.get_raw_transaction(transaction_hash)

    await bridge.submit_redemption_proof(
        decompose_raw_transaction(raw_transaction),
        proof,
        main_utxo,
        wallet_public_key,
    )

    logger.info(
        "redemption_proof_submitted",
        tx_hash=transaction_hash,
        wallet_public_key_hash=hash160(wallet_public_key).hex(),
    )
