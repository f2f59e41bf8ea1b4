"""
Deposit handling: revealing funding transactions and proving sweeps.
"""

from typing import Optional

import structlog

from .bitcoin import BitcoinUtxo, decompose_raw_transaction
from .chain import Bridge, DepositReceipt, DepositRequest
from .proof import ProofBuilder
from .rpc import BitcoinClient

logger = structlog.get_logger()


async def reveal_deposit(
    bitcoin_client: BitcoinClient,
    bridge: Bridge,
    deposit_tx_hash: str,
    deposit_output_index: int,
    deposit: DepositReceipt,
    vault: Optional[str] = None,
) -> Optional[str]:
    """
    Reveal an already broadcast deposit funding transaction to the ledger.

    Returns the ledger transaction hash, or None if the deposit had already
    been revealed.
    """
    raw_transaction = await bitcoin_client.get_raw_transaction(deposit_tx_hash)
    ledger_tx_hash = await bridge.reveal_deposit(
        decompose_raw_transaction(raw_transaction),
        deposit_output_index,
        deposit,
        vault,
    )

    logger.info(
        "deposit_revealed",
        deposit_tx_hash=deposit_tx_hash,
        output_index=deposit_output_index,
        depositor=deposit.depositor,
        ledger_tx_hash=ledger_tx_hash,
    )
    return ledger_tx_hash


async def get_revealed_deposit(
    deposit_tx_hash: str, deposit_output_index: int, bridge: Bridge
) -> DepositRequest:
    """Fetch a revealed deposit; raises NotFound if it was never revealed."""
    return await bridge.deposits(deposit_tx_hash, deposit_output_index)


async def prove_deposit_sweep(
    transaction_hash: str,
    main_utxo: BitcoinUtxo,
    bridge: Bridge,
    bitcoin_client: BitcoinClient,
    vault: Optional[str] = None,
) -> None:
    """
    Prove a mined deposit sweep transaction and submit the proof.

    Args:
        transaction_hash: Sweep transaction hash in display format
        main_utxo: Main UTXO of the wallet as currently known by the ledger,
            or a zero UTXO if the wallet has none yet
        vault: Optional vault the swept deposits are routed to
    """
    confirmations = await bridge.tx_proof_difficulty_factor()
    proof = await ProofBuilder(bitcoin_client).assemble_transaction_proof(
        transaction_hash, confirmations
    )
    raw_transaction = await bitcoin_client.get_raw_transaction(transaction_hash)

    await bridge.submit_deposit_sweep_proof(
        decompose_raw_transaction(raw_transaction), proof, main_utxo, vault
    )

    logger.info("deposit_sweep_proof_submitted", tx_hash=transaction_hash, vault=vault)
