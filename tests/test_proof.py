"""
Tests for SPV proof assembly.
"""

from dataclasses import replace

import pytest
from eth_abi import decode

from conftest import create_funding_tx, mine_blocks
from tbtc_client.bitcoin import TxOutput, sha256d
from tbtc_client.errors import InsufficientConfirmations
from tbtc_client.proof import ProofBuilder
from tbtc_client.rpc import MockBitcoinRPC


def add_transactions(rpc: MockBitcoinRPC, count: int) -> list[str]:
    txids = []
    for i in range(count):
        tx = create_funding_tx(
            [TxOutput(value=1000 + i, script_pubkey=b"\x00\x14" + bytes([i]) * 20)],
            seed=bytes([i]),
        )
        rpc.add_transaction(tx.txid_hex(), tx.serialize().hex())
        txids.append(tx.txid_hex())
    return txids


@pytest.fixture
def mined_rpc(mock_rpc: MockBitcoinRPC) -> tuple[MockBitcoinRPC, list[str]]:
    """Five transactions in block 800000, followed by seven more blocks."""
    txids = add_transactions(mock_rpc, 5)
    mine_blocks(mock_rpc, 800000, 8, txids)
    return mock_rpc, txids


class TestAssembleTransactionProof:
    @pytest.mark.asyncio
    async def test_unconfirmed_transaction(self, mock_rpc: MockBitcoinRPC) -> None:
        (txid,) = add_transactions(mock_rpc, 1)

        with pytest.raises(InsufficientConfirmations) as exc_info:
            await ProofBuilder(mock_rpc).assemble_transaction_proof(txid, 6)

        assert exc_info.value.confirmations == 0
        assert exc_info.value.required == 6
        assert str(exc_info.value) == (
            "Transaction confirmations number [0] is not enough, required [6]"
        )

    @pytest.mark.asyncio
    async def test_header_chain_has_required_length(self, mined_rpc) -> None:
        rpc, txids = mined_rpc

        proof = await ProofBuilder(rpc).assemble_transaction_proof(txids[3], 6)

        headers = proof.headers()
        assert len(headers) == 6
        # The chain starts at the transaction's block
        first_hash = sha256d(headers[0])[::-1].hex()
        assert first_hash == await rpc.get_block_hash(800000)

    @pytest.mark.asyncio
    async def test_merkle_path(self, mined_rpc) -> None:
        rpc, txids = mined_rpc

        proof = await ProofBuilder(rpc).assemble_transaction_proof(txids[3], 6)

        assert proof.tx_index_in_block == 3
        # 5 transactions: three levels
        assert len(proof.merkle_hashes()) == 3

    @pytest.mark.asyncio
    async def test_exact_depth(self, mined_rpc) -> None:
        rpc, txids = mined_rpc

        proof = await ProofBuilder(rpc).assemble_transaction_proof(txids[0], 8)

        assert len(proof.headers()) == 8

    @pytest.mark.asyncio
    async def test_one_block_short(self, mined_rpc) -> None:
        rpc, txids = mined_rpc

        with pytest.raises(InsufficientConfirmations):
            await ProofBuilder(rpc).assemble_transaction_proof(txids[0], 9)

    @pytest.mark.asyncio
    async def test_rejects_non_positive_depth(self, mined_rpc) -> None:
        rpc, txids = mined_rpc

        with pytest.raises(ValueError):
            await ProofBuilder(rpc).assemble_transaction_proof(txids[0], 0)


class TestVerifyProofLocally:
    @pytest.mark.asyncio
    async def test_valid_proof(self, mined_rpc) -> None:
        rpc, txids = mined_rpc
        builder = ProofBuilder(rpc)
        proof = await builder.assemble_transaction_proof(txids[1], 6)

        assert builder.verify_proof_locally(txids[1], proof, 6)

    @pytest.mark.asyncio
    async def test_wrong_transaction(self, mined_rpc) -> None:
        rpc, txids = mined_rpc
        builder = ProofBuilder(rpc)
        proof = await builder.assemble_transaction_proof(txids[1], 6)

        assert not builder.verify_proof_locally(txids[2], proof, 6)

    @pytest.mark.asyncio
    async def test_broken_header_chain(self, mined_rpc) -> None:
        rpc, txids = mined_rpc
        builder = ProofBuilder(rpc)
        proof = await builder.assemble_transaction_proof(txids[1], 6)

        headers = proof.headers()
        shuffled = replace(proof, bitcoin_headers=b"".join([headers[0], headers[2]] + headers[3:]))

        assert not builder.verify_proof_locally(txids[1], shuffled, 5)

    @pytest.mark.asyncio
    async def test_too_few_headers(self, mined_rpc) -> None:
        rpc, txids = mined_rpc
        builder = ProofBuilder(rpc)
        proof = await builder.assemble_transaction_proof(txids[1], 6)

        assert not builder.verify_proof_locally(txids[1], proof, 7)

    @pytest.mark.asyncio
    async def test_encode_for_contract(self, mined_rpc) -> None:
        rpc, txids = mined_rpc
        proof = await ProofBuilder(rpc).assemble_transaction_proof(txids[4], 6)

        ((merkle_proof, index, headers),) = decode(
            ["(bytes,uint256,bytes)"], proof.encode_for_contract()
        )

        assert merkle_proof == proof.merkle_proof
        assert index == 4
        assert headers == proof.bitcoin_headers
