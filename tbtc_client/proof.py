"""
SPV proof assembly for bridge transactions.

Builds proofs that can be verified by the ledger's Bitcoin relay: the
transaction's Merkle path plus a header chain that starts at the
transaction's block and is as long as the ledger's required confirmation
depth.
"""

from dataclasses import dataclass

import structlog
from eth_abi import encode

from .bitcoin import (
    BlockHeader,
    split_headers,
    txid_display_to_internal,
    verify_merkle_proof,
)
from .errors import InsufficientConfirmations
from .rpc import BitcoinClient

logger = structlog.get_logger()


@dataclass(frozen=True)
class SpvProof:
    """
    SPV proof for on-chain verification.

    Matches the BitcoinTx.Proof struct of the ledger:
    - merkleProof: bytes (concatenated 32-byte sibling hashes, internal order)
    - txIndexInBlock: uint256
    - bitcoinHeaders: bytes (concatenated 80-byte headers, tx block first)
    """

    merkle_proof: bytes
    tx_index_in_block: int
    bitcoin_headers: bytes

    def merkle_hashes(self) -> list[bytes]:
        return [self.merkle_proof[i : i + 32] for i in range(0, len(self.merkle_proof), 32)]

    def headers(self) -> list[bytes]:
        return split_headers(self.bitcoin_headers)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "merkleProof": self.merkle_proof.hex(),
            "txIndexInBlock": self.tx_index_in_block,
            "bitcoinHeaders": self.bitcoin_headers.hex(),
        }

    def encode_for_contract(self) -> bytes:
        """
        ABI-encode the proof as the BitcoinTx.Proof tuple:
        (bytes merkleProof, uint256 txIndexInBlock, bytes bitcoinHeaders)
        """
        return encode(
            ["(bytes,uint256,bytes)"],
            [(self.merkle_proof, self.tx_index_in_block, self.bitcoin_headers)],
        )


class ProofBuilder:
    """
    Builds SPV proofs for Bitcoin transactions.

    Usage:
        rpc = BitcoinRPC(config)
        builder = ProofBuilder(rpc)
        required = await bridge.tx_proof_difficulty_factor()
        proof = await builder.assemble_transaction_proof(tx_hash, required)
    """

    def __init__(self, bitcoin_client: BitcoinClient):
        self.bitcoin_client = bitcoin_client

    async def assemble_transaction_proof(
        self, tx_hash: str, required_confirmations: int
    ) -> SpvProof:
        """
        Assemble the proof of inclusion of the given transaction.

        Args:
            tx_hash: Transaction hash in display format
            required_confirmations: Depth required by the ledger, fetched
                fresh by the caller before each assembly

        Raises:
            InsufficientConfirmations: fewer than required_confirmations
                blocks are mined at and above the transaction's block.
                The caller should wait and retry.
        """
        if required_confirmations < 1:
            raise ValueError(
                f"required_confirmations must be positive, got {required_confirmations}"
            )

        confirmations = await self.bitcoin_client.get_transaction_confirmations(tx_hash)
        if confirmations < required_confirmations:
            raise InsufficientConfirmations(confirmations, required_confirmations)

        block_height = await self.bitcoin_client.get_transaction_block_height(tx_hash)

        headers = await self.bitcoin_client.get_headers_chain(
            block_height, required_confirmations - 1
        )
        branch = await self.bitcoin_client.get_transaction_merkle(tx_hash, block_height)

        proof = SpvProof(
            merkle_proof=b"".join(branch.merkle),
            tx_index_in_block=branch.position,
            bitcoin_headers=headers,
        )

        if not self.verify_proof_locally(tx_hash, proof, required_confirmations):
            raise ValueError(f"Assembled proof for {tx_hash} does not verify")

        logger.info(
            "transaction_proof_assembled",
            tx_hash=tx_hash,
            block_height=block_height,
            confirmations=confirmations,
            headers=len(headers) // 80,
            merkle_depth=len(branch.merkle),
        )

        return proof

    def verify_proof_locally(
        self, tx_hash: str, proof: SpvProof, required_confirmations: int
    ) -> bool:
        """
        Verify a proof locally before submission.
        Checks the same conditions as the on-chain relay, except the
        difficulty epoch, which only the ledger knows.
        """
        try:
            headers = [BlockHeader.from_bytes(h) for h in proof.headers()]
        except ValueError:
            return False

        if len(headers) < required_confirmations:
            return False

        prev_hash = None
        for i, header in enumerate(headers):
            if i > 0 and header.prev_block_hash != prev_hash:
                return False
            if not header.has_valid_pow():
                return False
            prev_hash = header.block_hash()

        if len(proof.merkle_proof) % 32 != 0:
            return False

        # The transaction is included in the first header of the chain
        return verify_merkle_proof(
            txid_display_to_internal(tx_hash),
            headers[0].merkle_root,
            proof.merkle_hashes(),
            proof.tx_index_in_block,
        )
