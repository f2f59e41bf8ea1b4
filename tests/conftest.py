"""
Shared fixtures: wallet keys, mined transactions and an in-memory Bridge.
"""

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional

import pytest
from coincurve import PrivateKey

from tbtc_client.bitcoin import (
    BitcoinUtxo,
    BlockHeader,
    RawTransactionVectors,
    Transaction,
    TxInput,
    TxOutput,
    compute_merkle_root,
    hash160,
    hex_le_to_bytes,
    sha256d,
)
from tbtc_client.chain import (
    DepositReceipt,
    DepositRequest,
    EventQueryOptions,
    RedemptionRequest,
    Wallet,
)
from tbtc_client.errors import NotFound
from tbtc_client.keys import build_deposit_key, build_redemption_key, build_utxo_hash
from tbtc_client.proof import SpvProof
from tbtc_client.rpc import MockBitcoinRPC
from tbtc_client.signing import WalletKey

REGTEST_BITS = 0x207FFFFF


def create_mock_header(
    prev_hash: bytes,
    merkle_root: bytes,
    timestamp: int = 1690000000,
    bits: int = REGTEST_BITS,
) -> bytes:
    """Create an 80-byte header whose hash meets its own target."""
    header = BlockHeader(
        version=1,
        prev_block_hash=prev_hash,
        merkle_root=merkle_root,
        timestamp=timestamp,
        bits=bits,
        nonce=0,
    )
    while not header.has_valid_pow():
        header.nonce += 1
    return header.to_bytes()


def create_funding_tx(outputs: list[TxOutput], seed: bytes = b"funding") -> Transaction:
    """Transaction with a single dummy input paying the given outputs."""
    return Transaction(
        version=1,
        inputs=[TxInput(prev_txid=sha256d(seed), prev_vout=0)],
        outputs=outputs,
    )


def mine_blocks(
    rpc: MockBitcoinRPC,
    start_height: int,
    count: int,
    txids: list[str],
    prev_hash: bytes = b"\x00" * 32,
) -> list[bytes]:
    """
    Add `count` linked blocks starting at start_height; the first block
    contains txids (display format), the others are empty.
    """
    headers = []
    for i in range(count):
        block_txids = txids if i == 0 else []
        if block_txids:
            merkle_root = compute_merkle_root([hex_le_to_bytes(t) for t in block_txids])
        else:
            merkle_root = sha256d(f"block {start_height + i}".encode())
        header = create_mock_header(prev_hash, merkle_root, timestamp=1690000000 + 600 * i)
        prev_hash = sha256d(header)
        rpc.add_block(start_height + i, prev_hash[::-1].hex(), header.hex(), block_txids)
        headers.append(header)
    return headers


@pytest.fixture
def wallet_key() -> WalletKey:
    return WalletKey(PrivateKey(bytes.fromhex("11" * 32)))


@pytest.fixture
def wallet_wif(wallet_key: WalletKey) -> str:
    return wallet_key.to_wif()


@pytest.fixture
def redeemer_script() -> bytes:
    return b"\x00\x14" + bytes.fromhex("751e76e8199196d454941c45d1b3a323f1433bd6")


@pytest.fixture
def mock_rpc() -> MockBitcoinRPC:
    return MockBitcoinRPC()


@dataclass
class FakeBridge:
    """In-memory Bridge recording every submission."""

    difficulty_factor: int = 6
    redemptions: dict[bytes, RedemptionRequest] = field(default_factory=dict)
    revealed: dict[bytes, DepositRequest] = field(default_factory=dict)
    wallet_records: dict[bytes, Wallet] = field(default_factory=dict)
    active_wallet_public_key_hash: Optional[bytes] = None
    reveals: list[tuple] = field(default_factory=list)
    sweep_proofs: list[tuple] = field(default_factory=list)
    redemption_proofs: list[tuple] = field(default_factory=list)
    redemption_requests: list[tuple] = field(default_factory=list)

    def add_redemption(self, wallet_public_key: bytes, request: RedemptionRequest) -> None:
        key = build_redemption_key(hash160(wallet_public_key), request.redeemer_output_script)
        self.redemptions[key] = request

    async def pending_redemptions(
        self, wallet_public_key: bytes, redeemer_output_script: bytes
    ) -> RedemptionRequest:
        key = build_redemption_key(hash160(wallet_public_key), redeemer_output_script)
        if key not in self.redemptions:
            raise NotFound("No pending redemption request")
        return self.redemptions[key]

    async def timed_out_redemptions(
        self, wallet_public_key: bytes, redeemer_output_script: bytes
    ) -> RedemptionRequest:
        raise NotFound("No timed out redemption request")

    async def reveal_deposit(
        self,
        deposit_tx: RawTransactionVectors,
        deposit_output_index: int,
        deposit: DepositReceipt,
        vault: Optional[str] = None,
    ) -> Optional[str]:
        self.reveals.append((deposit_tx, deposit_output_index, deposit, vault))
        return "0x" + "ab" * 32

    async def submit_deposit_sweep_proof(
        self,
        sweep_tx: RawTransactionVectors,
        sweep_proof: SpvProof,
        main_utxo: BitcoinUtxo,
        vault: Optional[str] = None,
    ) -> None:
        self.sweep_proofs.append((sweep_tx, sweep_proof, main_utxo, vault))

    async def submit_redemption_proof(
        self,
        redemption_tx: RawTransactionVectors,
        redemption_proof: SpvProof,
        main_utxo: BitcoinUtxo,
        wallet_public_key: bytes,
    ) -> None:
        self.redemption_proofs.append((redemption_tx, redemption_proof, main_utxo, wallet_public_key))

    async def request_redemption(
        self,
        wallet_public_key: bytes,
        main_utxo: BitcoinUtxo,
        redeemer_output_script: bytes,
        amount: int,
    ) -> None:
        self.redemption_requests.append((wallet_public_key, main_utxo, redeemer_output_script, amount))

    async def tx_proof_difficulty_factor(self) -> int:
        return self.difficulty_factor

    async def deposits(self, deposit_tx_hash: str, deposit_output_index: int) -> DepositRequest:
        key = build_deposit_key(deposit_tx_hash, deposit_output_index)
        if key not in self.revealed:
            raise NotFound("Deposit not revealed")
        return self.revealed[key]

    async def wallets(self, wallet_public_key_hash: bytes) -> Wallet:
        if wallet_public_key_hash not in self.wallet_records:
            raise NotFound("Wallet not registered")
        return self.wallet_records[wallet_public_key_hash]

    async def active_wallet_public_key(self) -> Optional[bytes]:
        if self.active_wallet_public_key_hash is None:
            return None
        wallet = await self.wallets(self.active_wallet_public_key_hash)
        return wallet.wallet_public_key

    async def wallet_registry(self) -> Any:
        raise NotImplementedError("FakeBridge keeps wallet public keys on the records")

    def get_chain_identifier(self) -> str:
        return "0x" + "5e" * 20

    def build_utxo_hash(self, utxo: BitcoinUtxo) -> bytes:
        return build_utxo_hash(utxo)

    async def _no_events(self) -> AsyncIterator[Any]:
        for event in ():
            yield event

    def get_deposit_revealed_events(self, options: EventQueryOptions, **filters: Any):
        return self._no_events()

    def get_redemption_requested_events(self, options: EventQueryOptions, **filters: Any):
        return self._no_events()

    def get_new_wallet_registered_events(self, options: EventQueryOptions, **filters: Any):
        return self._no_events()


@pytest.fixture
def bridge() -> FakeBridge:
    return FakeBridge()
